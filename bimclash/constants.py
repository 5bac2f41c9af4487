#!/usr/bin/env python3
"""
共通定数・設定値

干渉チェック全体で使用される定数や閾値、既定の除外テーブルを一元管理し、
モジュール間の循環依存を解消します。
"""

from typing import Final, Tuple

# =============================================================================
# 数値精度・許容誤差
# =============================================================================

# 既定の干渉許容距離（モデル座標と同じ単位）
DEFAULT_EPSILON: Final[float] = 0.0

# 三角形の退化判定（外積ノルムの二乗に対する相対閾値）
DEGENERATE_AREA_TOLERANCE: Final[float] = 1e-20

# 平行平面判定（交線方向ベクトルの相対長さ）
PARALLEL_TOLERANCE: Final[float] = 1e-12

# =============================================================================
# ジオメトリバッファ（リトルエンディアン）
# =============================================================================

INDEX_DTYPE: Final[str] = "<i4"
VERTEX_DTYPE: Final[str] = "<f4"
TRANSFORM_DTYPE: Final[str] = "<f8"

# 三角形1枚 = インデックス3個 × 4バイト
INDEX_STRIDE_BYTES: Final[int] = 12
# 頂点1個 = float32 × 3
VERTEX_STRIDE_BYTES: Final[int] = 12
# 4x4 行列 = float64 × 16
TRANSFORM_VALUE_COUNT: Final[int] = 16
TRANSFORM_BYTES: Final[int] = 128

# =============================================================================
# 実行・進捗
# =============================================================================

# 進捗コールバックの最小間隔（秒）
DEFAULT_PROGRESS_INTERVAL_S: Final[float] = 5.0
DEFAULT_MAX_WORKERS: Final[int] = 1

# =============================================================================
# 既定の除外テーブル（IFC型名）
# =============================================================================

# 型名は IFC のクラス名（"IfcWall" など）と完全一致で比較する。
# "Wall" / "OpeningElement" のような接頭辞なしの名前を使うモデルでは
# 設定ファイルでテーブルを差し替えること。

# 同じ型同士でのみ比較する型（空間・敷地などのコンテナ）
DEFAULT_SELF_ONLY_TYPES: Final[Tuple[str, ...]] = (
    "IfcSpace",
    "IfcSite",
)

# 構造上重なるのが当然の型の組み合わせ（壁と開口、開口と建具など）
DEFAULT_IGNORED_COMBINATIONS: Final[Tuple[Tuple[str, str], ...]] = (
    ("IfcWall", "IfcOpeningElement"),
    ("IfcWallStandardCase", "IfcOpeningElement"),
    ("IfcSlab", "IfcOpeningElement"),
    ("IfcWall", "IfcWindow"),
    ("IfcWallStandardCase", "IfcWindow"),
    ("IfcWall", "IfcDoor"),
    ("IfcWallStandardCase", "IfcDoor"),
    ("IfcOpeningElement", "IfcWindow"),
    ("IfcOpeningElement", "IfcDoor"),
)
