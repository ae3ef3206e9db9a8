"""点–エッジ（2D）の最近接点・距離・勾配.

すべて候補ペアについてベクトル化されている。

最近接点パラメータ α = clip(((p - a)·e) / |e|², 0, 1), e = b - a
距離 d = |p - q|, q = a + α e, 法線 n = (p - q) / d

距離の勾配（6 成分: p, a, b の順）は α の最適性（端点では固定）により
    ∂d/∂p = n,  ∂d/∂a = -(1 - α) n,  ∂d/∂b = -α n
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np


class PointEdgeResult(NamedTuple):
    """点–エッジ最近接の結果（k 個の候補ペア）.

    Attributes:
        distance: (k,) 距離
        alpha: (k,) エッジ上の最近接点パラメータ [0, 1]
        normal: (k, 2) エッジ → 点 の単位法線（距離 0 ではゼロ）
        tangent: (k, 2) 法線を 90° 回転した接線
    """

    distance: np.ndarray
    alpha: np.ndarray
    normal: np.ndarray
    tangent: np.ndarray


def point_edge_closest(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> PointEdgeResult:
    """点 p とエッジ (a, b) の最近接情報.

    Args:
        p: (k, 2) 点
        a: (k, 2) エッジ始点
        b: (k, 2) エッジ終点

    Returns:
        PointEdgeResult
    """
    p = np.atleast_2d(np.asarray(p, dtype=float))
    a = np.atleast_2d(np.asarray(a, dtype=float))
    b = np.atleast_2d(np.asarray(b, dtype=float))
    e = b - a
    len2 = np.einsum("ij,ij->i", e, e)
    proj = np.einsum("ij,ij->i", p - a, e)
    # 縮退エッジ（長さゼロ）は始点への点–点距離
    safe = np.where(len2 > 0.0, len2, 1.0)
    alpha = np.where(len2 > 0.0, np.clip(proj / safe, 0.0, 1.0), 0.0)
    diff = p - (a + alpha[:, None] * e)
    d = np.sqrt(np.einsum("ij,ij->i", diff, diff))
    normal = np.zeros_like(diff)
    pos = d > 0.0
    normal[pos] = diff[pos] / d[pos, None]
    tangent = np.column_stack([-normal[:, 1], normal[:, 0]])
    return PointEdgeResult(d, alpha, normal, tangent)


def point_edge_distance(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """点 p とエッジ (a, b) の距離 (k,)."""
    return point_edge_closest(p, a, b).distance


def point_edge_jacobian(alpha: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """方向ベクトル v に沿った相対変位 vᵀ(Δp - (1-α)Δa - αΔb) の係数 (k, 6).

    direction に法線を渡せば距離の勾配、接線を渡せば接線相対変位の係数になる。
    """
    alpha = np.asarray(alpha, dtype=float)
    direction = np.atleast_2d(direction)
    return np.hstack(
        [
            direction,
            -(1.0 - alpha)[:, None] * direction,
            -alpha[:, None] * direction,
        ]
    )


def pair_dofs(vertex: np.ndarray, edge_v0: np.ndarray, edge_v1: np.ndarray) -> np.ndarray:
    """候補ペアの自由度 (k, 6): [p_x, p_y, a_x, a_y, b_x, b_y]."""
    nodes = np.column_stack([vertex, edge_v0, edge_v1])  # (k, 3)
    return (2 * nodes[:, :, None] + np.arange(2)).reshape(-1, 6)


def segments_intersect(
    p0: np.ndarray, p1: np.ndarray, q0: np.ndarray, q1: np.ndarray
) -> np.ndarray:
    """線分 (p0, p1) と (q0, q1) が交差（接触を含む）するか (k,) bool."""

    def orient(a, b, c):
        return (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0])

    p0, p1, q0, q1 = (np.atleast_2d(np.asarray(v, dtype=float)) for v in (p0, p1, q0, q1))
    o1 = orient(p0, p1, q0)
    o2 = orient(p0, p1, q1)
    o3 = orient(q0, q1, p0)
    o4 = orient(q0, q1, p1)
    proper = (o1 * o2 < 0.0) & (o3 * o4 < 0.0)

    def on_segment(a, b, c, o):
        # c が線分 ab 上（共線かつ範囲内）
        within = (
            (np.minimum(a[:, 0], b[:, 0]) <= c[:, 0])
            & (c[:, 0] <= np.maximum(a[:, 0], b[:, 0]))
            & (np.minimum(a[:, 1], b[:, 1]) <= c[:, 1])
            & (c[:, 1] <= np.maximum(a[:, 1], b[:, 1]))
        )
        return (o == 0.0) & within

    touching = (
        on_segment(p0, p1, q0, o1)
        | on_segment(p0, p1, q1, o2)
        | on_segment(q0, q1, p0, o3)
        | on_segment(q0, q1, p1, o4)
    )
    return proper | touching
