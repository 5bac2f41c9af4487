#!/usr/bin/env python3
"""
干渉チェック - クラッシュ検出器

オブジェクトの全ペアを走査し、以下の順で候補を絞り込みます。

1. ジオメトリを持たないオブジェクトを除外（件数のみ記録）
2. ペアフィルタ（型名による除外テーブル）
3. ワールドAABBの重なり判定（厳密不等号、面・辺・頂点の接触は重なりとしない）
4. 三角形ごとの頂点-AABB包含判定
5. 三角形-三角形交差判定（最初に交差した時点でそのペアは打ち切り）

許容距離 ε > 0 の場合、3 と 4 のボックスは許容距離だけ広げて判定します
（ε = 0 では上記の厳密／包含判定そのもの）。

外側ループの行単位でワーカーへ分割でき、各ワーカーは自分専用の
結果リストとカウンタを持ち、最後に1回だけマージします。
"""

import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

import numpy as np

from .. import get_logger
from ..config import ClashConfig, validate_epsilon
from ..constants import DEFAULT_MAX_WORKERS, DEFAULT_PROGRESS_INTERVAL_S
from ..errors import InvalidConfigurationError
from .geometry import GeometryRecord
from .pair_filter import ExemptionTables, PairFilter
from .progress import ProgressCallback, ProgressReporter, log_progress
from .triangle import Triangle, plane_separated_mask, unit_normals
from .types import Clash, DetectionResult, ModelObject

logger = get_logger(__name__)


def boxes_overlap(geometry_a: GeometryRecord, geometry_b: GeometryRecord, margin: float = 0.0) -> bool:
    """
    AABB重なり判定（全3軸で厳密不等号）

    Args:
        geometry_a: オブジェクトAのジオメトリ
        geometry_b: オブジェクトBのジオメトリ
        margin: 2つのボックスの許容間隔（εA + εB）
    """
    return bool(
        np.all(geometry_a.max_bounds + margin > geometry_b.min_bounds)
        and np.all(geometry_a.min_bounds - margin < geometry_b.max_bounds)
    )


def triangles_touching_box(
    triangles: np.ndarray,
    min_bounds: np.ndarray,
    max_bounds: np.ndarray,
    margin: float = 0.0
) -> np.ndarray:
    """
    いずれかの頂点がAABB内（境界含む）にある三角形のマスク

    三角形の面だけがボックスを横切り、頂点が全て外にある場合は対象外になります。
    """
    lower = min_bounds - margin
    upper = max_bounds + margin
    inside = np.all((triangles >= lower) & (triangles <= upper), axis=2)
    return inside.any(axis=1)


@dataclass
class _PartialScan:
    """ワーカー専用の部分結果"""
    clashes: List[Tuple[int, int, Clash]] = field(default_factory=list)
    pairs_considered: int = 0
    pairs_filtered: int = 0
    pairs_box_overlap: int = 0
    triangle_tests: int = 0
    degenerate_triangles: int = 0
    triangle_time_s: float = 0.0
    cancelled: bool = False
    validated: Set[int] = field(default_factory=set)


class ClashDetector:
    """全ペア走査によるクラッシュ検出"""

    def __init__(
        self,
        tables: Optional[ExemptionTables] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        progress_callback: Optional[ProgressCallback] = None,
        progress_interval_s: float = DEFAULT_PROGRESS_INTERVAL_S,
    ):
        """
        初期化

        Args:
            tables: 除外テーブル（Noneの場合は既定のIFCテーブル）
            max_workers: 外側ループを分割するワーカー数（1なら逐次）
            progress_callback: 進捗コールバック
            progress_interval_s: 進捗コールバックの最小間隔（秒）
        """
        if not isinstance(max_workers, int) or max_workers < 1:
            raise InvalidConfigurationError(
                f"max_workers must be a positive integer, got {max_workers!r}"
            )
        self.pair_filter = PairFilter(tables)
        self.max_workers = max_workers
        self.progress_callback = progress_callback
        self.progress_interval_s = progress_interval_s

    @classmethod
    def from_config(
        cls,
        clash_config: ClashConfig,
        progress_callback: Optional[ProgressCallback] = log_progress
    ) -> 'ClashDetector':
        """設定から検出器を作成"""
        clash_config.validate()
        return cls(
            tables=ExemptionTables.from_config(clash_config),
            max_workers=clash_config.max_workers,
            progress_callback=progress_callback,
            progress_interval_s=clash_config.progress_interval_s,
        )

    def find_clashes(
        self,
        objects: Iterable[ModelObject],
        epsilon: float = 0.0,
        cancel_event: Optional[threading.Event] = None
    ) -> DetectionResult:
        """
        干渉ペアを検出

        Args:
            objects: オブジェクト列（順序は結果の列挙順にのみ影響）
            epsilon: 許容距離（両三角形に同じ値を使用）
            cancel_event: セットされると走査を途中で打ち切る

        Returns:
            検出結果（打ち切られた場合は cancelled=True と途中までの結果）

        Raises:
            InvalidConfigurationError: epsilon が負または非有限
            MalformedGeometryError: 判定対象ペアのジオメトリが不正
        """
        epsilon = validate_epsilon(epsilon)
        objects = list(objects)
        start_time = time.perf_counter()

        items = [obj for obj in objects if obj.has_geometry]
        result = DetectionResult(
            num_objects=len(objects),
            objects_without_geometry=len(objects) - len(items),
        )

        count = len(items)
        reporter = ProgressReporter(
            pairs_total=count * (count - 1) // 2,
            callback=self.progress_callback,
            interval_s=self.progress_interval_s,
        )
        abort_event = threading.Event()

        def should_stop() -> bool:
            return abort_event.is_set() or (cancel_event is not None and cancel_event.is_set())

        rows = list(range(count))
        workers = min(self.max_workers, max(count, 1))
        if workers == 1:
            partials = [self._scan_rows(rows, items, epsilon, reporter, should_stop)]
        else:
            # 行ごとの計算量が偏らないよう交互に割り当てる
            chunks = [rows[k::workers] for k in range(workers)]
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clash_scan") as executor:
                futures = [
                    executor.submit(self._scan_rows, chunk, items, epsilon, reporter, should_stop)
                    for chunk in chunks
                ]
                try:
                    done, _ = wait(futures, return_when=FIRST_EXCEPTION)
                    if any(future.exception() is not None for future in done):
                        # 残りのワーカーを止めてから例外を伝播させる
                        abort_event.set()
                    partials = [future.result() for future in futures]
                except BaseException:
                    abort_event.set()
                    raise

        merged = []
        for partial in partials:
            merged.extend(partial.clashes)
            result.pairs_considered += partial.pairs_considered
            result.pairs_filtered += partial.pairs_filtered
            result.pairs_box_overlap += partial.pairs_box_overlap
            result.triangle_tests += partial.triangle_tests
            result.degenerate_triangles += partial.degenerate_triangles
            result.triangle_time_ms += partial.triangle_time_s * 1000.0
            result.cancelled = result.cancelled or partial.cancelled

        # 発見順（外側 i, 内側 j）に並べ直す
        merged.sort(key=lambda entry: (entry[0], entry[1]))
        result.clashes = [clash for _, _, clash in merged]
        result.elapsed_ms = (time.perf_counter() - start_time) * 1000.0

        reporter.finish()
        self._log_summary(result)
        return result

    def _scan_rows(
        self,
        rows: List[int],
        items: List[ModelObject],
        epsilon: float,
        reporter: ProgressReporter,
        should_stop
    ) -> _PartialScan:
        """外側ループの指定行を走査"""
        partial = _PartialScan()
        count = len(items)

        for i in rows:
            if should_stop():
                partial.cancelled = True
                break

            object_a = items[i]
            pairs_done = 0
            triangle_time_s = 0.0

            for j in range(i + 1, count):
                if should_stop():
                    partial.cancelled = True
                    break

                pairs_done += 1
                object_b = items[j]

                if not self.pair_filter.should_check(object_a.type_name, object_b.type_name):
                    partial.pairs_filtered += 1
                    continue

                if not boxes_overlap(object_a.geometry, object_b.geometry, 2.0 * epsilon):
                    continue
                partial.pairs_box_overlap += 1

                self._validate(i, object_a, partial)
                self._validate(j, object_b, partial)

                start = time.perf_counter()
                hit = self._triangles_clash(object_a.geometry, object_b.geometry, epsilon, partial)
                triangle_time_s += time.perf_counter() - start

                if hit:
                    partial.clashes.append((i, j, Clash(object_a, object_b)))
                    logger.debug(
                        f"Clash: {object_a.type_name} {object_a.object_id!r} / "
                        f"{object_b.type_name} {object_b.object_id!r}"
                    )

            partial.pairs_considered += pairs_done
            partial.triangle_time_s += triangle_time_s
            reporter.advance(pairs_done, triangle_time_s)

            if partial.cancelled:
                break

        return partial

    @staticmethod
    def _validate(index: int, obj: ModelObject, partial: _PartialScan) -> None:
        """ジオメトリ検証（ワーカー内で1オブジェクト1回）"""
        if index in partial.validated:
            return
        obj.geometry.validate(obj.object_id)
        partial.validated.add(index)

    @staticmethod
    def _triangles_clash(
        geometry_a: GeometryRecord,
        geometry_b: GeometryRecord,
        epsilon: float,
        partial: _PartialScan
    ) -> bool:
        """三角形レベルの干渉判定（最初の交差で打ち切り）"""
        triangles_a = geometry_a.world_triangles()
        triangles_b = geometry_b.world_triangles()
        if len(triangles_a) == 0 or len(triangles_b) == 0:
            return False

        tolerance = 2.0 * epsilon
        candidates = np.flatnonzero(
            triangles_touching_box(triangles_a, geometry_b.min_bounds, geometry_b.max_bounds, tolerance)
        )
        if len(candidates) == 0:
            return False

        normals_b = unit_normals(triangles_b)

        for k in candidates:
            triangle = Triangle(triangles_a[k])
            if triangle.is_degenerate:
                partial.degenerate_triangles += 1

            separated = plane_separated_mask(triangle, triangles_b, normals_b, tolerance)
            for idx in np.flatnonzero(~separated):
                partial.triangle_tests += 1
                if triangle.intersects(Triangle(triangles_b[idx]), epsilon, epsilon):
                    return True

        return False

    @staticmethod
    def _log_summary(result: DetectionResult) -> None:
        logger.info(
            f"Clash detection finished: {result.num_objects} objects, "
            f"{result.objects_without_geometry} without geometry, "
            f"{result.num_clashes} clashes in {result.elapsed_ms:.1f}ms "
            f"(triangle tests {result.triangle_time_ratio * 100.0:.1f}%)"
        )
        if result.degenerate_triangles:
            logger.warning(
                f"{result.degenerate_triangles} degenerate candidate triangles "
                f"were tested by vertex distance only"
            )
        if result.cancelled:
            logger.warning("Clash detection cancelled; result is partial")


def find_clashes(
    objects: Iterable[ModelObject],
    epsilon: float = 0.0,
    tables: Optional[ExemptionTables] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None
) -> List[Clash]:
    """
    干渉ペアを検出（簡単なインターフェース）

    Args:
        objects: オブジェクト列
        epsilon: 許容距離
        tables: 除外テーブル
        max_workers: ワーカー数
        cancel_event: 打ち切り用イベント

    Returns:
        干渉ペアのリスト
    """
    detector = ClashDetector(tables=tables, max_workers=max_workers)
    return detector.find_clashes(objects, epsilon, cancel_event).clashes
