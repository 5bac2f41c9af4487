#!/usr/bin/env python3
"""
干渉チェック - ジオメトリアクセサ

ジオメトリストアが出力する生バイト列（リトルエンディアン）を
numpy配列へデコードし、三角形判定とバウンディングボックス判定で
使用できる形に整えます。

バイトレイアウト:
    インデックス: int32 LE, 三角形あたり 3 × 4 = 12 バイト
    頂点:         float32 LE, (x, y, z) あたり 12 バイト（オブジェクトローカル座標）
    変換行列:     float64 LE, 16 値 = 128 バイト
                  行優先で 4x4 行列 M に読み込み、行ベクトルに右から掛ける
                  p_world = [x, y, z, 1] · M  （平行移動は 12, 13, 14 番目）
    バウンディングボックス: ワールド座標の (min, max)。再計算せずそのまま信頼する
"""

from dataclasses import dataclass
from typing import Optional, Union, Sequence, Hashable
import numpy as np

from ..constants import (
    INDEX_DTYPE,
    VERTEX_DTYPE,
    TRANSFORM_DTYPE,
    INDEX_STRIDE_BYTES,
    VERTEX_STRIDE_BYTES,
    TRANSFORM_VALUE_COUNT,
    TRANSFORM_BYTES,
)
from ..errors import MalformedGeometryError

BufferLike = Union[bytes, bytearray, memoryview]


@dataclass
class GeometryRecord:
    """オブジェクト1つ分のジオメトリ"""
    indices: np.ndarray        # 三角形頂点インデックス (3M,) int32
    vertices: np.ndarray       # ローカル頂点座標 (N, 3) float32
    transform: np.ndarray      # ローカル→ワールド変換 (4, 4) float64
    min_bounds: np.ndarray     # ワールドAABB最小点 (3,)
    max_bounds: np.ndarray     # ワールドAABB最大点 (3,)

    @property
    def num_triangles(self) -> int:
        """三角形数を取得"""
        return len(self.indices) // 3

    @property
    def num_vertices(self) -> int:
        """頂点数を取得"""
        return len(self.vertices)

    def validate(self, object_id: Optional[Hashable] = None) -> None:
        """
        構造的な整合性を検証

        Raises:
            MalformedGeometryError: 形状・ストライド・インデックス範囲が不正な場合
        """
        if self.indices.ndim != 1 or len(self.indices) % 3 != 0:
            raise MalformedGeometryError(
                f"index count {self.indices.size} is not divisible by 3", object_id
            )
        if self.vertices.ndim != 2 or self.vertices.shape[1] != 3:
            raise MalformedGeometryError(
                f"vertices must have shape (N, 3), got {self.vertices.shape}", object_id
            )
        if self.transform.shape != (4, 4):
            raise MalformedGeometryError(
                f"transform must be 4x4, got {self.transform.shape}", object_id
            )
        if self.min_bounds.shape != (3,) or self.max_bounds.shape != (3,):
            raise MalformedGeometryError("bounding box corners must be 3D points", object_id)
        if len(self.indices) > 0:
            lowest = int(self.indices.min())
            highest = int(self.indices.max())
            if lowest < 0 or highest >= self.num_vertices:
                raise MalformedGeometryError(
                    f"index range [{lowest}, {highest}] outside vertex count {self.num_vertices}",
                    object_id
                )

    def world_vertices(self) -> np.ndarray:
        """全頂点をワールド座標へ変換 (N, 3) float64"""
        local = self.vertices.astype(np.float64, copy=False)
        return local @ self.transform[:3, :3] + self.transform[3, :3]

    def world_triangles(self) -> np.ndarray:
        """ワールド座標の三角形配列 (M, 3, 3) を取得"""
        return self.world_vertices()[self.indices.reshape(-1, 3)]

    @classmethod
    def from_arrays(
        cls,
        indices: Sequence[int],
        vertices: Sequence,
        transform: Optional[Sequence] = None,
        min_bounds: Optional[Sequence[float]] = None,
        max_bounds: Optional[Sequence[float]] = None,
    ) -> 'GeometryRecord':
        """
        数値配列からジオメトリを作成

        バウンディングボックスが省略された場合のみ、変換後の頂点から算出します
        （ローダ側の便宜。検出器自身は再計算しません）。
        """
        index_array = np.asarray(indices, dtype=np.int32).reshape(-1)
        vertex_array = np.asarray(vertices, dtype=np.float32)
        if vertex_array.ndim == 1:
            if vertex_array.size % 3 != 0:
                raise MalformedGeometryError(
                    f"vertex coordinate count {vertex_array.size} is not divisible by 3"
                )
            vertex_array = vertex_array.reshape(-1, 3)

        if transform is None:
            matrix = np.eye(4, dtype=np.float64)
        else:
            values = np.asarray(transform, dtype=np.float64)
            if values.size != TRANSFORM_VALUE_COUNT:
                raise MalformedGeometryError(
                    f"transform must have {TRANSFORM_VALUE_COUNT} values, got {values.size}"
                )
            matrix = values.reshape(4, 4)

        record = cls(
            indices=index_array,
            vertices=vertex_array,
            transform=matrix,
            min_bounds=np.zeros(3),
            max_bounds=np.zeros(3),
        )

        if min_bounds is None or max_bounds is None:
            if record.num_vertices == 0:
                raise MalformedGeometryError("cannot derive bounds from an empty vertex buffer")
            world = record.world_vertices()
            record.min_bounds = world.min(axis=0)
            record.max_bounds = world.max(axis=0)
        else:
            record.min_bounds = np.asarray(min_bounds, dtype=np.float64).reshape(-1)
            record.max_bounds = np.asarray(max_bounds, dtype=np.float64).reshape(-1)

        record.validate()
        return record


def decode_indices(data: BufferLike) -> np.ndarray:
    """インデックスバッファ（int32 LE）をデコード"""
    if len(data) % INDEX_STRIDE_BYTES != 0:
        raise MalformedGeometryError(
            f"index buffer length {len(data)} is not a multiple of {INDEX_STRIDE_BYTES} bytes"
        )
    return np.frombuffer(data, dtype=INDEX_DTYPE).astype(np.int32)


def decode_vertices(data: BufferLike) -> np.ndarray:
    """頂点バッファ（float32 LE, xyz）をデコード (N, 3)"""
    if len(data) % VERTEX_STRIDE_BYTES != 0:
        raise MalformedGeometryError(
            f"vertex buffer length {len(data)} is not a multiple of {VERTEX_STRIDE_BYTES} bytes"
        )
    return np.frombuffer(data, dtype=VERTEX_DTYPE).astype(np.float32).reshape(-1, 3)


def decode_transform(data: BufferLike) -> np.ndarray:
    """変換行列バッファ（float64 LE × 16）をデコード (4, 4)"""
    if len(data) != TRANSFORM_BYTES:
        raise MalformedGeometryError(
            f"transform buffer must be exactly {TRANSFORM_BYTES} bytes, got {len(data)}"
        )
    return np.frombuffer(data, dtype=TRANSFORM_DTYPE).astype(np.float64).reshape(4, 4)


def decode_geometry(
    index_buffer: BufferLike,
    vertex_buffer: BufferLike,
    transform_buffer: BufferLike,
    min_bounds: Sequence[float],
    max_bounds: Sequence[float],
    object_id: Optional[Hashable] = None,
) -> GeometryRecord:
    """
    生バッファ一式からジオメトリレコードを作成

    Args:
        index_buffer: インデックスバッファ
        vertex_buffer: 頂点バッファ
        transform_buffer: 変換行列バッファ
        min_bounds: ワールドAABB最小点
        max_bounds: ワールドAABB最大点
        object_id: エラーメッセージ用のオブジェクト識別子

    Returns:
        検証済みジオメトリレコード
    """
    try:
        record = GeometryRecord(
            indices=decode_indices(index_buffer),
            vertices=decode_vertices(vertex_buffer),
            transform=decode_transform(transform_buffer),
            min_bounds=np.asarray(min_bounds, dtype=np.float64).reshape(-1),
            max_bounds=np.asarray(max_bounds, dtype=np.float64).reshape(-1),
        )
    except MalformedGeometryError as e:
        if object_id is None:
            raise
        raise MalformedGeometryError(str(e), object_id) from e

    record.validate(object_id)
    return record


def encode_geometry(record: GeometryRecord) -> tuple:
    """ジオメトリを生バッファ (indices, vertices, transform) へエンコード"""
    return (
        np.asarray(record.indices, dtype=INDEX_DTYPE).tobytes(),
        np.asarray(record.vertices, dtype=VERTEX_DTYPE).tobytes(),
        np.asarray(record.transform, dtype=TRANSFORM_DTYPE).tobytes(),
    )
