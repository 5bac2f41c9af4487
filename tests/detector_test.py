#!/usr/bin/env python3
"""
クラッシュ検出器のテストスイート

箱形オブジェクトの重なり・接触・許容距離、除外テーブル、
並列実行の決定性、打ち切り、進捗通知、不正ジオメトリをテストします。
"""

import threading
import time

import numpy as np
import pytest

from bimclash.clash import (
    ClashDetector,
    ExemptionTables,
    GeometryRecord,
    ModelObject,
    boxes_overlap,
    find_clashes,
    triangles_touching_box,
)
from bimclash.config import ClashConfig
from bimclash.errors import InvalidConfigurationError, MalformedGeometryError

from conftest import box_geometry


def _ids(clashes):
    return {clash.id_set for clash in clashes}


# =============================================================================
# ボックス枝刈り
# =============================================================================

class TestBoxPruning:
    """AABB重なりと頂点包含のテスト"""

    def test_touching_faces_do_not_overlap(self, make_box):
        a = make_box("a").geometry
        b = make_box("b", center=(1.0, 0.0, 0.0)).geometry
        assert not boxes_overlap(a, b)
        assert boxes_overlap(a, b, margin=1e-6)

    def test_overlap_symmetric(self, make_box):
        a = make_box("a").geometry
        b = make_box("b", center=(0.5, 0.5, 0.5)).geometry
        assert boxes_overlap(a, b)
        assert boxes_overlap(b, a)

    def test_vertex_on_boundary_counts_as_inside(self, make_box):
        a = make_box("a").geometry
        b = make_box("b", center=(1.0, 0.0, 0.0)).geometry
        mask = triangles_touching_box(a.world_triangles(), b.min_bounds, b.max_bounds)
        # x+ 面の2枚と、x+ 側の頂点を持つ側面の三角形
        assert mask.any()
        assert not mask.all()

    def test_face_crossing_box_without_vertices_is_pruned(self):
        """頂点が全てボックス外の三角形は対象外"""
        large = np.array([[[-10.0, -10.0, 0.0], [10.0, -10.0, 0.0], [0.0, 10.0, 0.0]]])
        mask = triangles_touching_box(large, np.array([-1.0, -1.0, -1.0]), np.array([1.0, 1.0, 1.0]))
        assert not mask[0]


# =============================================================================
# 検出シナリオ
# =============================================================================

def test_overlapping_cubes_clash(make_box):
    objects = [make_box("A"), make_box("B", center=(0.5, 0.0, 0.0))]
    result = ClashDetector().find_clashes(objects, epsilon=0.0)

    assert result.num_clashes == 1
    assert result.clashes[0].ids == ("A", "B")
    assert result.pairs_considered == 1
    assert result.pairs_box_overlap == 1
    assert result.triangle_tests >= 1
    assert not result.cancelled


def test_face_touching_cubes_do_not_clash(make_box):
    objects = [make_box("A"), make_box("B", center=(1.0, 0.0, 0.0))]
    result = ClashDetector().find_clashes(objects, epsilon=0.0)

    assert result.num_clashes == 0
    assert result.pairs_box_overlap == 0
    assert result.triangle_tests == 0


def test_near_touch_within_tolerance(make_box):
    """1e-7 の隙間は ε = 1e-6 では干渉、ε = 0 では非干渉"""
    objects = [make_box("A"), make_box("B", center=(1.0 + 1e-7, 0.0, 0.0))]
    detector = ClashDetector()

    assert detector.find_clashes(objects, epsilon=0.0).num_clashes == 0
    assert detector.find_clashes(objects, epsilon=1e-6).num_clashes == 1


def test_exempt_combination_skipped(make_box):
    objects = [
        make_box("wall", "IfcWall"),
        make_box("opening", "IfcOpeningElement", center=(0.2, 0.0, 0.0)),
    ]
    result = ClashDetector().find_clashes(objects)

    assert result.num_clashes == 0
    assert result.pairs_filtered == 1
    assert result.triangle_tests == 0


def test_self_only_type_compared_with_same_type(make_box):
    objects = [
        make_box("space-1", "IfcSpace"),
        make_box("space-2", "IfcSpace", center=(0.5, 0.0, 0.0)),
        make_box("beam", "IfcBeam", center=(0.25, 0.0, 0.0)),
    ]
    clashes = ClashDetector().find_clashes(objects).clashes
    assert _ids(clashes) == {frozenset(("space-1", "space-2"))}


def test_objects_without_geometry_counted(make_box):
    objects = [
        ModelObject(object_id="site", type_name="IfcSite"),
        make_box("A"),
        ModelObject(object_id="annotation", type_name="IfcAnnotation"),
        make_box("B", center=(0.5, 0.0, 0.0)),
    ]
    result = ClashDetector().find_clashes(objects)

    assert result.num_objects == 4
    assert result.objects_without_geometry == 2
    assert result.num_clashes == 1


def test_empty_and_single_inputs(make_box):
    detector = ClashDetector()
    assert detector.find_clashes([]).num_clashes == 0
    result = detector.find_clashes([make_box("only")])
    assert result.num_clashes == 0
    assert result.pairs_considered == 0


def test_identical_objects_clash(make_box):
    objects = [make_box("A"), make_box("B")]
    assert ClashDetector().find_clashes(objects).num_clashes == 1


def test_row_of_boxes_unique_pairs(box_row):
    objects = box_row(6)
    clashes = ClashDetector().find_clashes(objects).clashes

    n = len(objects)
    assert len(clashes) <= n * (n - 1) // 2
    assert len(_ids(clashes)) == len(clashes)
    assert all(clash.object_a is not clash.object_b for clash in clashes)
    # 隣同士だけが重なり、1つ飛ばしは面で接するだけ
    assert _ids(clashes) == {frozenset((f"box-{i}", f"box-{i + 1}")) for i in range(n - 1)}


def test_clashes_in_discovery_order(box_row):
    objects = box_row(5)
    clashes = ClashDetector().find_clashes(objects).clashes
    positions = {obj.object_id: index for index, obj in enumerate(objects)}
    keys = [(positions[c.object_a.object_id], positions[c.object_b.object_id]) for c in clashes]
    assert keys == sorted(keys)
    assert all(a < b for a, b in keys)


def test_parallel_matches_sequential(box_row, make_box, test_logger):
    objects = box_row(7) + [
        make_box("wall", "IfcWall", center=(1.2, 0.3, 0.0)),
        make_box("opening", "IfcOpeningElement", center=(1.2, 0.3, 0.2)),
    ]
    sequential = ClashDetector(max_workers=1).find_clashes(objects)
    parallel = ClashDetector(max_workers=3).find_clashes(objects)
    test_logger.info(f"sequential {sequential.num_clashes} clashes, "
                     f"parallel {parallel.num_clashes} clashes")

    assert _ids(parallel.clashes) == _ids(sequential.clashes)
    assert [c.ids for c in parallel.clashes] == [c.ids for c in sequential.clashes]
    assert parallel.pairs_considered == sequential.pairs_considered
    assert parallel.pairs_filtered == sequential.pairs_filtered


def test_more_workers_than_objects(make_box):
    objects = [make_box("A"), make_box("B", center=(0.5, 0.0, 0.0))]
    assert ClashDetector(max_workers=8).find_clashes(objects).num_clashes == 1


def test_epsilon_monotonic(box_row):
    """許容距離を増やしても干渉ペアは減らない"""
    objects = box_row(5, spacing=1.0 + 1e-4)
    detector = ClashDetector()
    previous = set()
    for epsilon in (0.0, 1e-5, 1e-4, 1e-3, 0.5):
        current = _ids(detector.find_clashes(objects, epsilon).clashes)
        assert previous <= current
        previous = current
    assert len(previous) > 0


def test_degenerate_triangles_counted(make_box):
    """退化三角形は頂点距離だけで判定し、候補数として計上"""
    sliver = ModelObject(
        object_id="sliver",
        type_name="IfcMember",
        geometry=GeometryRecord.from_arrays(
            [0, 1, 2],
            [[-0.25, 0.0, 0.0], [0.0, 0.0, 0.0], [0.25, 0.0, 0.0]],
        ),
    )
    result = ClashDetector().find_clashes([sliver, make_box("A")])

    assert result.num_clashes == 0
    assert result.degenerate_triangles >= 1


# =============================================================================
# 打ち切りと進捗
# =============================================================================

def test_cancel_before_start(box_row):
    cancel_event = threading.Event()
    cancel_event.set()
    result = ClashDetector().find_clashes(box_row(4), cancel_event=cancel_event)

    assert result.cancelled
    assert result.num_clashes == 0


def test_cancel_from_progress_callback(box_row):
    """進捗コールバックから打ち切ると途中までの結果が返る"""
    cancel_event = threading.Event()
    calls = []

    def on_progress(info):
        calls.append(info)
        cancel_event.set()

    detector = ClashDetector(progress_callback=on_progress, progress_interval_s=0.0)
    objects = box_row(6)
    result = detector.find_clashes(objects, cancel_event=cancel_event)

    assert result.cancelled
    assert result.pairs_considered == len(objects) - 1
    assert result.num_clashes <= 1
    assert calls


@pytest.mark.parametrize("workers", [2, 3])
def test_cancel_before_start_parallel(box_row, workers):
    cancel_event = threading.Event()
    cancel_event.set()
    result = ClashDetector(max_workers=workers).find_clashes(box_row(6), cancel_event=cancel_event)

    assert result.cancelled
    assert result.num_clashes == 0
    assert result.pairs_considered == 0


def test_cancel_from_progress_callback_parallel(box_row):
    """各ワーカーは最初の行を終えた時点で止まる"""
    cancel_event = threading.Event()
    detector = ClashDetector(
        max_workers=2,
        progress_callback=lambda info: cancel_event.set(),
        progress_interval_s=0.0,
    )
    objects = box_row(8)
    result = detector.find_clashes(objects, cancel_event=cancel_event)

    n = len(objects)
    assert result.cancelled
    # 行0 (7ペア) と行1 (6ペア) が上限
    assert result.pairs_considered <= (n - 1) + (n - 2)
    assert result.pairs_considered < n * (n - 1) // 2
    adjacent = {frozenset((f"box-{i}", f"box-{i + 1}")) for i in range(n - 1)}
    assert _ids(result.clashes) <= adjacent


def test_progress_callback_cadence(box_row):
    calls = []
    detector = ClashDetector(progress_callback=calls.append, progress_interval_s=0.0)
    detector.find_clashes(box_row(3))

    # 行ごとに1回 + 完了時に1回
    assert len(calls) == 4
    assert [info.pairs_done for info in calls] == [2, 3, 3, 3]
    assert calls[-1].pairs_total == 3
    assert calls[-1].ratio == 1.0


def test_progress_interval_throttles(box_row):
    calls = []
    detector = ClashDetector(progress_callback=calls.append, progress_interval_s=3600.0)
    detector.find_clashes(box_row(4))
    assert len(calls) == 1
    assert calls[0].ratio == 1.0


# =============================================================================
# エラー処理
# =============================================================================

def _broken_object(object_id="broken", type_name="IfcBeam"):
    """範囲外インデックスを持つジオメトリ（ボックスは原点付近）"""
    return ModelObject(
        object_id=object_id,
        type_name=type_name,
        geometry=GeometryRecord(
            indices=np.array([0, 1, 99], dtype=np.int32),
            vertices=np.zeros((3, 3), dtype=np.float32),
            transform=np.eye(4),
            min_bounds=np.array([-0.2, -0.2, -0.2]),
            max_bounds=np.array([0.2, 0.2, 0.2]),
        ),
    )


def test_malformed_geometry_raises(make_box):
    with pytest.raises(MalformedGeometryError) as excinfo:
        ClashDetector().find_clashes([make_box("A"), _broken_object()])
    assert excinfo.value.object_id == "broken"


@pytest.mark.parametrize("workers", [2, 3])
def test_malformed_geometry_raises_in_parallel(box_row, workers):
    objects = box_row(4) + [_broken_object()]
    with pytest.raises(MalformedGeometryError):
        ClashDetector(max_workers=workers).find_clashes(objects)


def test_worker_failure_stops_other_workers(make_box):
    """後続ワーカーの例外で先行ワーカーの走査も打ち切られる"""
    failed = threading.Event()
    calls = []

    class _CorruptGeometry(GeometryRecord):
        def validate(self, object_id=None):
            failed.set()
            raise MalformedGeometryError("corrupt buffer", object_id)

    def on_progress(info):
        calls.append(info)
        # 例外が呼び出し側へ届くまで行0のワーカーを待たせる
        failed.wait(timeout=5.0)
        time.sleep(0.1)

    corrupt = ModelObject(
        object_id="corrupt",
        type_name="IfcBeam",
        geometry=_CorruptGeometry(**vars(box_geometry((0.0, 0.0, 0.0)))),
    )
    # 行0 は単独で遠くにあり、行1 (corrupt) はワーカー1が担当する
    objects = [make_box("far", center=(100.0, 0.0, 0.0)), corrupt] + [
        make_box(f"box-{i}", center=(0.5 * i, 0.0, 0.0)) for i in range(1, 39)
    ]
    detector = ClashDetector(max_workers=2, progress_callback=on_progress, progress_interval_s=0.0)

    with pytest.raises(MalformedGeometryError):
        detector.find_clashes(objects)
    # ワーカー0は20行を担当するが、最初の行で止まる
    assert len(calls) < 5


def test_malformed_geometry_ignored_when_pair_filtered(make_box):
    """判定対象にならないペアのジオメトリは検証しない"""
    objects = [make_box("wall", "IfcWall"), _broken_object(type_name="IfcOpeningElement")]
    assert ClashDetector().find_clashes(objects).num_clashes == 0


@pytest.mark.parametrize("epsilon", [-1e-3, float("nan"), float("inf"), "abc"])
def test_invalid_epsilon(make_box, epsilon):
    with pytest.raises(InvalidConfigurationError):
        ClashDetector().find_clashes([make_box("A")], epsilon=epsilon)


@pytest.mark.parametrize("workers", [0, -2, 1.5])
def test_invalid_worker_count(workers):
    with pytest.raises(InvalidConfigurationError):
        ClashDetector(max_workers=workers)


# =============================================================================
# 簡単なインターフェースと設定
# =============================================================================

def test_find_clashes_function(make_box):
    objects = [
        make_box("A", "IfcWall"),
        make_box("B", "IfcDoor", center=(0.5, 0.0, 0.0)),
        make_box("C", "IfcBeam", center=(0.5, 0.0, 0.0)),
    ]
    assert _ids(find_clashes(objects)) == {frozenset(("A", "C")), frozenset(("B", "C"))}

    open_tables = ExemptionTables()
    assert len(find_clashes(objects, tables=open_tables, max_workers=2)) == 3


def test_detector_from_config(make_box):
    config = ClashConfig(max_workers=2, self_only_types=[], ignored_combinations=[])
    detector = ClashDetector.from_config(config, progress_callback=None)

    assert detector.max_workers == 2
    objects = [make_box("wall", "IfcWall"), make_box("opening", "IfcOpeningElement")]
    assert detector.find_clashes(objects).num_clashes == 1


def test_result_to_dict(make_box):
    objects = [make_box("A", "IfcWall"), make_box("B", "IfcSlab", center=(0.5, 0.0, 0.0))]
    data = ClashDetector().find_clashes(objects).to_dict()
    assert data['clashes'] == [
        {'object_a': "A", 'object_b': "B", 'type_a': "IfcWall", 'type_b': "IfcSlab"}
    ]
    assert data['num_objects'] == 2
    assert data['cancelled'] is False
