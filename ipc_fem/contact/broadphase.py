"""Broadphase 接触候補探索（AABB 空間ハッシュ）.

点と接触境界エッジの AABB（2 配置間の掃引を含む）を計算し、
均一格子へのビニングで点–エッジの候補ペアを O(n) で抽出する。
"""

from __future__ import annotations

from collections import defaultdict
from itertools import product

import numpy as np


def compute_vertex_aabb(
    V0: np.ndarray,
    V1: np.ndarray | None = None,
    inflation: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """点（V0 → V1 の掃引）の AABB.

    Args:
        V0: (n, dim) 開始配置
        V1: (n, dim) 終了配置（None なら静的）
        inflation: AABB の膨張量

    Returns:
        (lo, hi): 各 (n, dim)
    """
    if V1 is None:
        V1 = V0
    lo = np.minimum(V0, V1) - inflation
    hi = np.maximum(V0, V1) + inflation
    return lo, hi


def compute_edge_aabb(
    V0: np.ndarray,
    edges: np.ndarray,
    V1: np.ndarray | None = None,
    inflation: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """エッジ（両端点の掃引）の AABB (n_edges, dim)."""
    if V1 is None:
        V1 = V0
    corners = np.stack([V0[edges[:, 0]], V0[edges[:, 1]], V1[edges[:, 0]], V1[edges[:, 1]]])
    lo = corners.min(axis=0) - inflation
    hi = corners.max(axis=0) + inflation
    return lo, hi


def broadphase_aabb(
    lo_a: np.ndarray,
    hi_a: np.ndarray,
    lo_b: np.ndarray,
    hi_b: np.ndarray,
    *,
    cell_size: float | None = None,
) -> np.ndarray:
    """AABB 群 A と B の重なりペアを空間ハッシュで探索する.

    B の AABB を均一格子にビニングし、A の各 AABB が占めるセルから候補を集め、
    最後にバッチで AABB 重複判定する。

    Args:
        lo_a, hi_a: (na, dim) 群 A の AABB
        lo_b, hi_b: (nb, dim) 群 B の AABB
        cell_size: 格子セルサイズ。None なら自動推定

    Returns:
        (m, 2) 重なるペア (i in A, j in B)
    """
    na = lo_a.shape[0]
    nb = lo_b.shape[0]
    if na == 0 or nb == 0:
        return np.empty((0, 2), dtype=np.intp)

    # セルサイズ自動推定
    if cell_size is None:
        sizes = np.concatenate([np.max(hi_a - lo_a, axis=1), np.max(hi_b - lo_b, axis=1)])
        cell_size = max(float(np.mean(sizes)) * 1.5, 1e-30)
    inv_cell = 1.0 / cell_size

    ilo_b = np.floor(lo_b * inv_cell).astype(np.intp)
    ihi_b = np.floor(hi_b * inv_cell).astype(np.intp)
    grid: dict[tuple[int, ...], list[int]] = defaultdict(list)
    for j in range(nb):
        ranges = [range(int(ilo_b[j, k]), int(ihi_b[j, k]) + 1) for k in range(lo_b.shape[1])]
        for cell in product(*ranges):
            grid[cell].append(j)

    ilo_a = np.floor(lo_a * inv_cell).astype(np.intp)
    ihi_a = np.floor(hi_a * inv_cell).astype(np.intp)
    seen: set[tuple[int, int]] = set()
    for i in range(na):
        ranges = [range(int(ilo_a[i, k]), int(ihi_a[i, k]) + 1) for k in range(lo_a.shape[1])]
        for cell in product(*ranges):
            for j in grid.get(cell, ()):
                seen.add((i, j))

    if not seen:
        return np.empty((0, 2), dtype=np.intp)

    # バッチ AABB 重複判定
    pairs = np.array(sorted(seen), dtype=np.intp)
    pi, pj = pairs[:, 0], pairs[:, 1]
    overlap = np.all(lo_a[pi] <= hi_b[pj], axis=1) & np.all(lo_b[pj] <= hi_a[pi], axis=1)
    return pairs[overlap]


def point_edge_candidates(
    V0: np.ndarray,
    edges: np.ndarray,
    vertices: np.ndarray,
    V1: np.ndarray | None = None,
    *,
    inflation: float = 0.0,
    cell_size: float | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """点–エッジの候補ペア（点がエッジの端点であるペアは除外）.

    Args:
        V0: (n_vertices, dim) 開始配置
        edges: (n_edges, 2) 接触境界エッジ
        vertices: 候補とする点番号
        V1: 終了配置（掃引 AABB 用, None なら静的）
        inflation: AABB 膨張量（距離クエリでは d̂）
        cell_size: 格子セルサイズ

    Returns:
        (vertex_ids, edge_ids): 各 (k,)
    """
    vertices = np.asarray(vertices, dtype=np.intp)
    if len(vertices) == 0 or len(edges) == 0:
        empty = np.empty(0, dtype=np.intp)
        return empty, empty
    lo_v, hi_v = compute_vertex_aabb(V0[vertices], None if V1 is None else V1[vertices], inflation)
    lo_e, hi_e = compute_edge_aabb(V0, edges, V1, 0.0)
    pairs = broadphase_aabb(lo_v, hi_v, lo_e, hi_e, cell_size=cell_size)
    v_ids = vertices[pairs[:, 0]]
    e_ids = pairs[:, 1]
    keep = (edges[e_ids, 0] != v_ids) & (edges[e_ids, 1] != v_ids)
    return v_ids[keep], e_ids[keep]
