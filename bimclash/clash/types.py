#!/usr/bin/env python3
"""
干渉チェックの共通データ構造

このモジュールは、干渉チェックに関連するdataclassを定義し、
モジュール間の循環参照を防ぐために使用されます。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional

from .geometry import GeometryRecord


@dataclass(eq=False)
class ModelObject:
    """建築モデルのオブジェクト（読み取り専用入力、同一性で比較）"""
    object_id: Hashable
    type_name: str
    geometry: Optional[GeometryRecord] = None

    @property
    def has_geometry(self) -> bool:
        return self.geometry is not None


@dataclass(frozen=True)
class Clash:
    """干渉しているオブジェクトのペア（順序は発見順、正規化しない）"""
    object_a: ModelObject
    object_b: ModelObject

    @property
    def ids(self) -> tuple:
        return (self.object_a.object_id, self.object_b.object_id)

    @property
    def id_set(self) -> frozenset:
        """順序を無視した比較用キー"""
        return frozenset(self.ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'object_a': self.object_a.object_id,
            'object_b': self.object_b.object_id,
            'type_a': self.object_a.type_name,
            'type_b': self.object_b.type_name,
        }


@dataclass
class ProgressInfo:
    """進捗情報"""
    pairs_done: int
    pairs_total: int
    elapsed_s: float
    triangle_time_s: float

    @property
    def ratio(self) -> float:
        """完了率 (0.0-1.0)"""
        if self.pairs_total == 0:
            return 1.0
        return self.pairs_done / self.pairs_total

    @property
    def triangle_time_ratio(self) -> float:
        """三角形判定に費やした時間の割合"""
        if self.elapsed_s <= 0.0:
            return 0.0
        return self.triangle_time_s / self.elapsed_s


@dataclass
class DetectionResult:
    """干渉チェック結果と診断カウンタ"""
    clashes: List[Clash] = field(default_factory=list)
    num_objects: int = 0
    objects_without_geometry: int = 0
    pairs_considered: int = 0
    pairs_filtered: int = 0
    pairs_box_overlap: int = 0
    triangle_tests: int = 0
    degenerate_triangles: int = 0
    elapsed_ms: float = 0.0
    triangle_time_ms: float = 0.0
    cancelled: bool = False

    @property
    def num_clashes(self) -> int:
        return len(self.clashes)

    @property
    def triangle_time_ratio(self) -> float:
        if self.elapsed_ms <= 0.0:
            return 0.0
        return self.triangle_time_ms / self.elapsed_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            'clashes': [clash.to_dict() for clash in self.clashes],
            'num_objects': self.num_objects,
            'objects_without_geometry': self.objects_without_geometry,
            'pairs_considered': self.pairs_considered,
            'pairs_filtered': self.pairs_filtered,
            'pairs_box_overlap': self.pairs_box_overlap,
            'triangle_tests': self.triangle_tests,
            'degenerate_triangles': self.degenerate_triangles,
            'elapsed_ms': self.elapsed_ms,
            'triangle_time_ms': self.triangle_time_ms,
            'cancelled': self.cancelled,
        }
