"""連続衝突判定（CCD）と静的交差判定（2D 点–エッジ）.

点 p(t) とエッジ (a(t), b(t)) を t ∈ [0, 1] で線形補間したとき、
接触は R(t) = p - a と E(t) = b - a が平行（外積ゼロ）かつ
辺パラメータ s = R·E / E·E ∈ [0, 1] となる時刻。外積は t の 2 次式:

    c(t) = E0×R0 + t (E0×dR + dE×R0) + t² dE×dR

全時刻で外積ゼロ（共線運動）の場合は s = 0, 1 となる時刻を調べる。
"""

from __future__ import annotations

import numpy as np

from ipc_fem.contact.broadphase import (
    broadphase_aabb,
    compute_edge_aabb,
    point_edge_candidates,
)
from ipc_fem.contact.geometry import point_edge_distance, segments_intersect

# 初期ステップをこの割合だけ衝突時刻の手前に取る
CONSERVATIVE_RESCALING = 0.8


def _cross(u: np.ndarray, v: np.ndarray) -> float:
    return float(u[0] * v[1] - u[1] * v[0])


def _roots_in_unit_interval(c2: float, c1: float, c0: float) -> list[float] | None:
    """c2 t² + c1 t + c0 = 0 の [0, 1] 内の根（昇順）. 恒等的にゼロなら None."""
    scale = max(abs(c0), abs(c1), abs(c2))
    if scale == 0.0:
        return None
    slack = 1e-12
    roots: list[float] = []
    if c2 == 0.0:
        if c1 != 0.0:
            roots.append(-c0 / c1)
    else:
        disc = c1 * c1 - 4.0 * c2 * c0
        if disc < 0.0:
            # 接するだけの重根（丸め誤差で負になる）
            if disc >= -1e-12 * (c1 * c1 + abs(4.0 * c2 * c0)):
                roots.append(-c1 / (2.0 * c2))
        else:
            sq = np.sqrt(disc)
            q = -0.5 * (c1 + np.copysign(sq, c1))
            roots.append(q / c2)
            if q != 0.0:
                roots.append(c0 / q)
    out = sorted(min(max(t, 0.0), 1.0) for t in roots if -slack <= t <= 1.0 + slack)
    return out


def point_edge_ccd(
    p0: np.ndarray,
    a0: np.ndarray,
    b0: np.ndarray,
    p1: np.ndarray,
    a1: np.ndarray,
    b1: np.ndarray,
    *,
    tolerance: float = 1e-9,
) -> float:
    """点–エッジの最初の接触時刻 t ∈ [0, 1]（接触しなければ inf）.

    Args:
        p0, a0, b0: 開始配置の点・エッジ端点 (2,)
        p1, a1, b1: 終了配置
        tolerance: 辺パラメータ s の許容幅

    Returns:
        接触時刻（なければ np.inf）
    """
    R0 = p0 - a0
    E0 = b0 - a0
    dR = (p1 - a1) - R0
    dE = (b1 - a1) - E0

    def inside(t: float) -> bool:
        R = R0 + t * dR
        E = E0 + t * dE
        len2 = float(E @ E)
        if len2 <= 0.0:
            return float(R @ R) <= tolerance * tolerance
        s = float(R @ E) / len2
        return -tolerance <= s <= 1.0 + tolerance

    c0 = _cross(E0, R0)
    c1 = _cross(E0, dR) + _cross(dE, R0)
    c2 = _cross(dE, dR)
    roots = _roots_in_unit_interval(c2, c1, c0)
    if roots is None:
        return _collinear_ccd(R0, dR, E0, dE, tolerance)
    for t in roots:
        if inside(t):
            return t
    return np.inf


def _collinear_ccd(
    R0: np.ndarray, dR: np.ndarray, E0: np.ndarray, dE: np.ndarray, tolerance: float
) -> float:
    """共線運動での接触時刻（s が [0, 1] に入る最初の時刻）."""
    g = (float(dR @ dE), float(R0 @ dE + dR @ E0), float(R0 @ E0))
    ee = (float(dE @ dE), float(2.0 * (E0 @ dE)), float(E0 @ E0))
    h = (ee[0] - g[0], ee[1] - g[1], ee[2] - g[2])

    candidates = [0.0]
    for coeffs in (g, h):
        r = _roots_in_unit_interval(*coeffs)
        if r:
            candidates.extend(r)
    for t in sorted(candidates):
        E2 = ee[0] * t * t + ee[1] * t + ee[2]
        gt = g[0] * t * t + g[1] * t + g[2]
        ht = h[0] * t * t + h[1] * t + h[2]
        if gt >= -tolerance * E2 and ht >= -tolerance * E2:
            return t
    return np.inf


# ====================================================================
# メッシュ単位のクエリ
# ====================================================================


def compute_collision_free_step(
    V0: np.ndarray,
    V1: np.ndarray,
    edges: np.ndarray,
    vertices: np.ndarray,
    *,
    tolerance: float = 1e-9,
) -> float:
    """V0 → V1 の経路で最初に接触する時刻（接触しなければ 1.0 より大: inf）."""
    v_ids, e_ids = point_edge_candidates(V0, edges, vertices, V1)
    toi = np.inf
    for v, e in zip(v_ids, e_ids, strict=True):
        a, b = edges[e]
        t = point_edge_ccd(V0[v], V0[a], V0[b], V1[v], V1[a], V1[b], tolerance=tolerance)
        if t < toi:
            toi = t
            if toi == 0.0:
                break
    return toi


def is_step_collision_free(
    V0: np.ndarray,
    V1: np.ndarray,
    edges: np.ndarray,
    vertices: np.ndarray,
    *,
    tolerance: float = 1e-9,
) -> bool:
    """V0 → V1 の線形経路上で点–エッジ接触が起きないか."""
    return bool(compute_collision_free_step(V0, V1, edges, vertices, tolerance=tolerance) > 1.0)


def max_step_size(
    V0: np.ndarray,
    V1: np.ndarray,
    edges: np.ndarray,
    vertices: np.ndarray,
    *,
    tolerance: float = 1e-9,
) -> float:
    """ライン探索の初期ステップ上限 (0, 1]（衝突時刻の手前）."""
    toi = compute_collision_free_step(V0, V1, edges, vertices, tolerance=tolerance)
    if toi > 1.0:
        return 1.0
    return CONSERVATIVE_RESCALING * toi


def compute_min_distance(
    V: np.ndarray,
    edges: np.ndarray,
    vertices: np.ndarray,
    dhat: float,
) -> float:
    """d̂ 以内の点–エッジ対の最小距離（該当なしは inf）."""
    v_ids, e_ids = point_edge_candidates(V, edges, vertices, inflation=dhat)
    if len(v_ids) == 0:
        return np.inf
    d = point_edge_distance(V[v_ids], V[edges[e_ids, 0]], V[edges[e_ids, 1]])
    d = d[d < dhat]
    return float(d.min()) if len(d) else np.inf


def has_intersections(V: np.ndarray, edges: np.ndarray) -> bool:
    """端点を共有しないエッジ同士が交差（接触を含む）するか."""
    if len(edges) < 2:
        return False
    lo, hi = compute_edge_aabb(V, edges)
    pairs = broadphase_aabb(lo, hi, lo, hi)
    pairs = pairs[pairs[:, 0] < pairs[:, 1]]
    if len(pairs) == 0:
        return False
    ea = edges[pairs[:, 0]]
    eb = edges[pairs[:, 1]]
    shares = (
        (ea[:, 0] == eb[:, 0]) | (ea[:, 0] == eb[:, 1]) | (ea[:, 1] == eb[:, 0]) | (ea[:, 1] == eb[:, 1])
    )
    ea = ea[~shares]
    eb = eb[~shares]
    if len(ea) == 0:
        return False
    return bool(np.any(segments_intersect(V[ea[:, 0]], V[ea[:, 1]], V[eb[:, 0]], V[eb[:, 1]])))
