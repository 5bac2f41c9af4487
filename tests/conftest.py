#!/usr/bin/env python3
"""
pytest共通設定とフィクスチャ

テスト実行時の共通ロギング設定と、箱形オブジェクトなどの
テストデータ生成器を提供します。
"""

import os
import sys
from typing import Callable, Sequence

import numpy as np
import pytest

# プロジェクトルートのパス追加
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bimclash import setup_logging, get_logger
from bimclash.clash import GeometryRecord, ModelObject

# =============================================================================
# テストロギング設定
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """テスト全体のロギング設定"""
    setup_logging(level="DEBUG")
    logger = get_logger("test")
    logger.info("=== テストセッション開始 ===")
    yield
    logger.info("=== テストセッション終了 ===")


@pytest.fixture
def test_logger():
    """テスト用ロガー"""
    return get_logger("test")


# =============================================================================
# テストデータ生成
# =============================================================================

# 立方体の6面（頂点番号 = 4*ix + 2*iy + iz）
_BOX_QUADS = (
    (0, 1, 3, 2),  # x-
    (4, 6, 7, 5),  # x+
    (0, 4, 5, 1),  # y-
    (2, 3, 7, 6),  # y+
    (0, 2, 6, 4),  # z-
    (1, 5, 7, 3),  # z+
)


def translation_transform(offset: Sequence[float]) -> np.ndarray:
    """平行移動のみの変換行列（行ベクトル規約: 平行移動は最終行）"""
    matrix = np.eye(4, dtype=np.float64)
    matrix[3, :3] = offset
    return matrix


def box_geometry(center: Sequence[float] = (0.0, 0.0, 0.0), size: float = 1.0) -> GeometryRecord:
    """原点中心のローカル立方体を center へ平行移動したジオメトリ"""
    half = size / 2.0
    vertices = np.array(
        [[x, y, z] for x in (-half, half) for y in (-half, half) for z in (-half, half)],
        dtype=np.float32,
    )
    indices = []
    for a, b, c, d in _BOX_QUADS:
        indices.extend([a, b, c, a, c, d])

    center_array = np.asarray(center, dtype=np.float64)
    return GeometryRecord(
        indices=np.array(indices, dtype=np.int32),
        vertices=vertices,
        transform=translation_transform(center_array),
        min_bounds=center_array - half,
        max_bounds=center_array + half,
    )


@pytest.fixture
def make_box() -> Callable[..., ModelObject]:
    """箱形オブジェクト生成器"""
    def _make_box(
        object_id,
        type_name: str = "IfcBeam",
        center: Sequence[float] = (0.0, 0.0, 0.0),
        size: float = 1.0
    ) -> ModelObject:
        return ModelObject(object_id=object_id, type_name=type_name,
                           geometry=box_geometry(center, size))

    return _make_box


@pytest.fixture
def box_row(make_box) -> Callable[..., list]:
    """x軸方向に並んだ箱の列（隣同士が半分重なる）"""
    def _box_row(count: int, spacing: float = 0.5, type_name: str = "IfcBeam") -> list:
        return [make_box(f"box-{i}", type_name, center=(i * spacing, 0.0, 0.0))
                for i in range(count)]

    return _box_row
