"""
bimclash 干渉チェック

このパッケージは建築モデルのオブジェクト同士の三角形メッシュ干渉を判定し、
干渉しているオブジェクトペアの一覧を生成する機能を提供します。

処理フロー:
1. ジオメトリ取得 (geometry.py) - 生バッファのデコードと検証
2. ペアフィルタ (pair_filter.py) - 型名による除外テーブル
3. 検出器 (detector.py) - AABB枝刈りと三角形ごとの枝刈り
4. 三角形判定 (triangle.py) - 許容距離付き三角形-三角形交差判定
"""

# ジオメトリ
from .geometry import (
    GeometryRecord,
    decode_indices,
    decode_vertices,
    decode_transform,
    decode_geometry,
    encode_geometry
)

# 三角形
from .triangle import (
    Triangle,
    point_triangle_distance,
    segment_segment_distance,
    triangle_distance
)

# ペアフィルタ
from .pair_filter import (
    Combination,
    ExemptionTables,
    PairFilter
)

# 検出器
from .types import ModelObject, Clash, DetectionResult, ProgressInfo
from .progress import ProgressReporter, log_progress
from .detector import (
    ClashDetector,
    find_clashes,
    boxes_overlap,
    triangles_touching_box
)

__all__ = [
    # ジオメトリ
    'GeometryRecord',
    'decode_indices',
    'decode_vertices',
    'decode_transform',
    'decode_geometry',
    'encode_geometry',

    # 三角形
    'Triangle',
    'point_triangle_distance',
    'segment_segment_distance',
    'triangle_distance',

    # ペアフィルタ
    'Combination',
    'ExemptionTables',
    'PairFilter',

    # 検出器
    'ModelObject',
    'Clash',
    'DetectionResult',
    'ProgressInfo',
    'ProgressReporter',
    'log_progress',
    'ClashDetector',
    'find_clashes',
    'boxes_overlap',
    'triangles_touching_box'
]
