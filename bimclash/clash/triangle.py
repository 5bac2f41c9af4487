#!/usr/bin/env python3
"""
干渉チェック - 三角形プリミティブ

インデックス付きメッシュから取り出したワールド座標の三角形と、
許容距離付きの三角形-三角形交差判定を提供します。

判定の流れ:
1. 非有限値を含む三角形は非交差として扱う
2. 退化三角形（面積ゼロ）は、その頂点が相手三角形上（許容距離内）にある場合のみ交差
3. 相手平面からの符号付き距離による分離判定（許容距離を超えて片側なら非交差）
4. 両平面の交線上の区間重なり判定（貫通する交差）
5. 三角形間の最短距離が εA + εB 以下なら交差（同一平面・近接・平行面）
"""

from typing import List, Tuple
import numpy as np

from ..constants import DEGENERATE_AREA_TOLERANCE, PARALLEL_TOLERANCE


class Triangle:
    """ワールド座標の三角形"""

    __slots__ = ('vertices', '_normal')

    def __init__(self, vertices: np.ndarray):
        """
        初期化

        Args:
            vertices: ワールド座標の頂点 (3, 3)
        """
        self.vertices = np.asarray(vertices, dtype=np.float64).reshape(3, 3)
        self._normal = None

    @classmethod
    def from_indexed(
        cls,
        indices: np.ndarray,
        world_vertices: np.ndarray,
        offset: int
    ) -> 'Triangle':
        """インデックスバッファの offset 位置から三角形を作成"""
        return cls(world_vertices[indices[offset:offset + 3]])

    def get_vertices(self) -> List[np.ndarray]:
        """3頂点を取得"""
        return [self.vertices[0], self.vertices[1], self.vertices[2]]

    @property
    def normal(self) -> np.ndarray:
        """正規化していない法線（外積）"""
        if self._normal is None:
            v0, v1, v2 = self.vertices
            self._normal = np.cross(v1 - v0, v2 - v0)
        return self._normal

    @property
    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.vertices)))

    @property
    def is_degenerate(self) -> bool:
        """面積ゼロ（共線・重複頂点）か、非有限値を含むか"""
        if not self.is_finite:
            return True
        v0, v1, v2 = self.vertices
        e1 = v1 - v0
        e2 = v2 - v0
        cross_sq = float(np.dot(self.normal, self.normal))
        scale = float(np.dot(e1, e1)) * float(np.dot(e2, e2))
        return cross_sq <= DEGENERATE_AREA_TOLERANCE * scale

    def unit_normal(self) -> np.ndarray:
        return self.normal / np.linalg.norm(self.normal)

    def intersects(
        self,
        other: 'Triangle',
        epsilon_self: float = 0.0,
        epsilon_other: float = 0.0
    ) -> bool:
        """
        許容距離付き三角形-三角形交差判定

        各三角形をそれぞれの許容距離だけ厚みを持たせたものとみなし、
        間隔が epsilon_self + epsilon_other 以下なら交差とします。

        Args:
            other: 相手三角形
            epsilon_self: この三角形の許容距離
            epsilon_other: 相手三角形の許容距離

        Returns:
            交差しているかどうか
        """
        tolerance = epsilon_self + epsilon_other

        if not (self.is_finite and other.is_finite):
            return False

        a = self.vertices
        b = other.vertices

        degenerate_self = self.is_degenerate
        degenerate_other = other.is_degenerate
        if degenerate_self or degenerate_other:
            if degenerate_self and degenerate_other:
                return False
            flat, solid = (a, b) if degenerate_self else (b, a)
            return any(point_triangle_distance(v, solid) <= tolerance for v in flat)

        # 相手平面に対する符号付き距離
        normal_self = self.unit_normal()
        normal_other = other.unit_normal()
        dist_self = (a - b[0]) @ normal_other
        if dist_self.min() > tolerance or dist_self.max() < -tolerance:
            return False
        dist_other = (b - a[0]) @ normal_self
        if dist_other.min() > tolerance or dist_other.max() < -tolerance:
            return False

        # 両三角形が互いの平面をまたぐ場合は交線上の区間で判定
        if dist_self.min() <= 0.0 <= dist_self.max() and dist_other.min() <= 0.0 <= dist_other.max():
            direction = np.cross(normal_self, normal_other)
            if float(np.dot(direction, direction)) > PARALLEL_TOLERANCE:
                lo_self, hi_self = _plane_crossing_interval(a, dist_self, direction)
                lo_other, hi_other = _plane_crossing_interval(b, dist_other, direction)
                if lo_self <= hi_other and lo_other <= hi_self:
                    return True

        return triangle_distance(a, b) <= tolerance

    def __repr__(self) -> str:
        return f"Triangle({self.vertices.tolist()!r})"


def _plane_crossing_interval(
    vertices: np.ndarray,
    distances: np.ndarray,
    direction: np.ndarray
) -> Tuple[float, float]:
    """三角形が相手平面と交わる線分を交線方向へ射影した区間"""
    params = []
    for i in range(3):
        j = (i + 1) % 3
        di = distances[i]
        dj = distances[j]
        if di == 0.0:
            params.append(float(np.dot(vertices[i], direction)))
        if di * dj < 0.0:
            point = vertices[i] + (vertices[j] - vertices[i]) * (di / (di - dj))
            params.append(float(np.dot(point, direction)))
    return min(params), max(params)


def closest_point_on_triangle(point: np.ndarray, triangle: np.ndarray) -> np.ndarray:
    """
    点から三角形への最近接点（ボロノイ領域による場合分け）

    退化していない三角形を前提とします。
    """
    a, b, c = triangle
    ab = b - a
    ac = c - a

    # 頂点 a の領域
    ap = point - a
    d1 = np.dot(ab, ap)
    d2 = np.dot(ac, ap)
    if d1 <= 0.0 and d2 <= 0.0:
        return a

    # 頂点 b の領域
    bp = point - b
    d3 = np.dot(ab, bp)
    d4 = np.dot(ac, bp)
    if d3 >= 0.0 and d4 <= d3:
        return b

    # 辺 ab の領域
    vc = d1 * d4 - d3 * d2
    if vc <= 0.0 and d1 >= 0.0 and d3 <= 0.0:
        return a + ab * (d1 / (d1 - d3))

    # 頂点 c の領域
    cp = point - c
    d5 = np.dot(ab, cp)
    d6 = np.dot(ac, cp)
    if d6 >= 0.0 and d5 <= d6:
        return c

    # 辺 ac の領域
    vb = d5 * d2 - d1 * d6
    if vb <= 0.0 and d2 >= 0.0 and d6 <= 0.0:
        return a + ac * (d2 / (d2 - d6))

    # 辺 bc の領域
    va = d3 * d6 - d5 * d4
    if va <= 0.0 and (d4 - d3) >= 0.0 and (d5 - d6) >= 0.0:
        w = (d4 - d3) / ((d4 - d3) + (d5 - d6))
        return b + (c - b) * w

    # 面の内部
    denom = 1.0 / (va + vb + vc)
    return a + ab * (vb * denom) + ac * (vc * denom)


def point_triangle_distance(point: np.ndarray, triangle: np.ndarray) -> float:
    """点-三角形間の最短距離"""
    closest = closest_point_on_triangle(point, triangle)
    return float(np.linalg.norm(point - closest))


def segment_segment_distance(
    p1: np.ndarray,
    q1: np.ndarray,
    p2: np.ndarray,
    q2: np.ndarray
) -> float:
    """線分 p1-q1 と線分 p2-q2 の最短距離（長さゼロの線分も可）"""
    d1 = q1 - p1
    d2 = q2 - p2
    r = p1 - p2
    a = np.dot(d1, d1)
    e = np.dot(d2, d2)
    f = np.dot(d2, r)

    if a == 0.0 and e == 0.0:
        return float(np.linalg.norm(r))

    if a == 0.0:
        s = 0.0
        t = min(max(f / e, 0.0), 1.0)
    else:
        c = np.dot(d1, r)
        if e == 0.0:
            t = 0.0
            s = min(max(-c / a, 0.0), 1.0)
        else:
            b = np.dot(d1, d2)
            denom = a * e - b * b
            # 平行な線分は s=0 から開始
            s = min(max((b * f - c * e) / denom, 0.0), 1.0) if denom != 0.0 else 0.0
            t = (b * s + f) / e
            if t < 0.0:
                t = 0.0
                s = min(max(-c / a, 0.0), 1.0)
            elif t > 1.0:
                t = 1.0
                s = min(max((b - c) / a, 0.0), 1.0)

    return float(np.linalg.norm((p1 + d1 * s) - (p2 + d2 * t)))


def triangle_distance(a: np.ndarray, b: np.ndarray) -> float:
    """
    三角形間の最短距離

    交差していない三角形に対して正しい値を返します
    （貫通している場合は交線判定側で検出済みであること）。
    """
    best = min(
        min(point_triangle_distance(v, b) for v in a),
        min(point_triangle_distance(v, a) for v in b),
    )
    if best == 0.0:
        return best

    for i in range(3):
        p1, q1 = a[i], a[(i + 1) % 3]
        for j in range(3):
            p2, q2 = b[j], b[(j + 1) % 3]
            best = min(best, segment_segment_distance(p1, q1, p2, q2))
    return best


def unit_normals(triangles: np.ndarray) -> np.ndarray:
    """三角形配列 (M, 3, 3) の単位法線 (M, 3)。退化三角形はゼロベクトル"""
    e1 = triangles[:, 1] - triangles[:, 0]
    e2 = triangles[:, 2] - triangles[:, 0]
    normals = np.cross(e1, e2)
    cross_sq = np.einsum('ij,ij->i', normals, normals)
    scale = np.einsum('ij,ij->i', e1, e1) * np.einsum('ij,ij->i', e2, e2)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        result = normals / np.sqrt(cross_sq)[:, None]
        # Triangle.is_degenerate と同じ基準
        degenerate = ~(cross_sq > DEGENERATE_AREA_TOLERANCE * scale)
    degenerate |= ~np.all(np.isfinite(triangles.reshape(len(triangles), 9)), axis=1)
    result[degenerate] = 0.0
    return result


def plane_separated_mask(
    triangle: Triangle,
    triangles: np.ndarray,
    normals: np.ndarray,
    tolerance: float
) -> np.ndarray:
    """
    三角形1枚と三角形配列の平面分離判定（ベクトル化）

    いずれかの平面に対して片側へ許容距離を超えて離れている組を True とします。
    True の組は Triangle.intersects でも必ず非交差になるため、判定を省略できます。

    Args:
        triangle: 判定元の三角形
        triangles: 相手三角形配列 (M, 3, 3)
        normals: 相手三角形の単位法線 (M, 3)
        tolerance: εA + εB

    Returns:
        分離している組のマスク (M,)
    """
    if triangle.is_degenerate:
        # 退化三角形は点-三角形判定に任せる
        return np.zeros(len(triangles), dtype=bool)

    # 判定元の頂点 → 各相手平面 (M, 3)
    offsets = np.einsum('ij,ij->i', normals, triangles[:, 0])
    dist_self = triangle.vertices @ normals.T - offsets
    separated = (dist_self.min(axis=0) > tolerance) | (dist_self.max(axis=0) < -tolerance)

    # 相手の頂点 → 判定元平面 (M, 3)
    normal_self = triangle.unit_normal()
    dist_other = triangles @ normal_self - np.dot(normal_self, triangle.vertices[0])
    separated |= (dist_other.min(axis=1) > tolerance) | (dist_other.max(axis=1) < -tolerance)

    # 相手が退化している場合は平面が定まらない
    degenerate = ~np.any(normals != 0.0, axis=1)
    if np.any(degenerate):
        separated[degenerate] = False
    return separated
