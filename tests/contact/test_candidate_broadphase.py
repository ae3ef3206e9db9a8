"""Broadphase（AABB 空間ハッシュ）のテスト."""

from __future__ import annotations

import numpy as np

from ipc_fem.contact.broadphase import (
    broadphase_aabb,
    compute_edge_aabb,
    compute_vertex_aabb,
    point_edge_candidates,
)


def _brute_force(lo_a, hi_a, lo_b, hi_b) -> set[tuple[int, int]]:
    out = set()
    for i in range(len(lo_a)):
        for j in range(len(lo_b)):
            if np.all(lo_a[i] <= hi_b[j]) and np.all(lo_b[j] <= hi_a[i]):
                out.add((i, j))
    return out


class TestAABB:
    def test_vertex_sweep(self):
        """掃引 AABB は両配置を含み膨張量だけ広がる."""
        V0 = np.array([[0.0, 0.0]])
        V1 = np.array([[1.0, -2.0]])
        lo, hi = compute_vertex_aabb(V0, V1, 0.1)
        np.testing.assert_allclose(lo, [[-0.1, -2.1]])
        np.testing.assert_allclose(hi, [[1.1, 0.1]])

    def test_edge_static(self):
        V = np.array([[0.0, 1.0], [2.0, -1.0]])
        lo, hi = compute_edge_aabb(V, np.array([[0, 1]]))
        np.testing.assert_allclose(lo, [[0.0, -1.0]])
        np.testing.assert_allclose(hi, [[2.0, 1.0]])


class TestBroadphaseAABB:
    """空間ハッシュと全探索の一致."""

    def test_simple(self):
        lo_a = np.array([[0.0, 0.0]])
        hi_a = np.array([[1.0, 1.0]])
        lo_b = np.array([[0.5, 0.5], [3.0, 3.0]])
        hi_b = np.array([[2.0, 2.0], [4.0, 4.0]])
        pairs = broadphase_aabb(lo_a, hi_a, lo_b, hi_b)
        np.testing.assert_array_equal(pairs, [[0, 0]])

    def test_matches_brute_force(self):
        rng = np.random.default_rng(0)
        lo_a = rng.uniform(0.0, 10.0, (40, 2))
        hi_a = lo_a + rng.uniform(0.0, 1.5, (40, 2))
        lo_b = rng.uniform(0.0, 10.0, (30, 2))
        hi_b = lo_b + rng.uniform(0.0, 1.5, (30, 2))
        pairs = broadphase_aabb(lo_a, hi_a, lo_b, hi_b)
        assert {tuple(p) for p in pairs.tolist()} == _brute_force(lo_a, hi_a, lo_b, hi_b)

    def test_explicit_cell_size(self):
        """セルサイズを変えても結果は同じ."""
        rng = np.random.default_rng(1)
        lo = rng.uniform(0.0, 5.0, (20, 2))
        hi = lo + 0.7
        p1 = broadphase_aabb(lo, hi, lo, hi, cell_size=0.3)
        p2 = broadphase_aabb(lo, hi, lo, hi, cell_size=5.0)
        np.testing.assert_array_equal(p1, p2)

    def test_empty(self):
        pairs = broadphase_aabb(np.empty((0, 2)), np.empty((0, 2)), np.zeros((1, 2)), np.ones((1, 2)))
        assert pairs.shape == (0, 2)


class TestPointEdgeCandidates:
    def test_excludes_edge_endpoints(self):
        """エッジ自身の端点は候補にならない."""
        V = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 0.1]])
        v_ids, e_ids = point_edge_candidates(
            V, np.array([[0, 1]]), np.array([0, 1, 2]), inflation=0.2
        )
        np.testing.assert_array_equal(v_ids, [2])
        np.testing.assert_array_equal(e_ids, [0])

    def test_far_vertex_filtered(self):
        V = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 1.0]])
        v_ids, _ = point_edge_candidates(V, np.array([[0, 1]]), np.array([2]), inflation=0.2)
        assert len(v_ids) == 0

    def test_swept_candidate(self):
        """掃引 AABB で移動後に近づく点も候補."""
        V0 = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 1.0]])
        V1 = V0.copy()
        V1[2, 1] = -1.0
        v_ids, _ = point_edge_candidates(V0, np.array([[0, 1]]), np.array([2]), V1)
        np.testing.assert_array_equal(v_ids, [2])
