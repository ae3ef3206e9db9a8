"""2D メッシュとビルダーのテスト."""

from __future__ import annotations

import numpy as np
import pytest

from ipc_fem.mesh import Mesh2D, disk_mesh, merge_meshes, rectangle_mesh


class TestDiskMesh:
    def test_counts(self):
        mesh = disk_mesh((0.0, 0.0), 1.0, 12)
        assert mesh.n_vertices == 13
        assert mesh.ndof == 26
        assert mesh.elements.shape == (12, 3)
        assert mesh.edges.shape == (12, 2)
        np.testing.assert_array_equal(mesh.collision_vertices, np.arange(1, 13))

    def test_counter_clockwise(self):
        assert np.all(disk_mesh((1.0, 2.0), 0.5, 16).element_areas() > 0.0)

    def test_area_of_polygon(self):
        n = 16
        area = disk_mesh((0.0, 0.0), 1.0, n).element_areas().sum()
        assert area == pytest.approx(0.5 * n * np.sin(2.0 * np.pi / n))

    def test_flat_bottom(self):
        """最下部の 2 節点は同じ高さ y = cy - r cos(π/n)."""
        n = 16
        mesh = disk_mesh((0.0, 1.0), 0.5, n)
        y = mesh.rest_positions[1:, 1]
        lowest = np.sort(y)[:2]
        np.testing.assert_allclose(lowest, 1.0 - 0.5 * np.cos(np.pi / n))

    def test_invalid(self):
        with pytest.raises(ValueError):
            disk_mesh((0.0, 0.0), 1.0, 2)
        with pytest.raises(ValueError):
            disk_mesh((0.0, 0.0), -1.0)


class TestRectangleMesh:
    def test_basic(self):
        mesh = rectangle_mesh((-2.0, -0.2), (2.0, 0.0))
        assert mesh.element_areas().sum() == pytest.approx(0.8)
        assert mesh.bbox_diagonal() == pytest.approx(np.hypot(4.0, 0.2))

    def test_invalid(self):
        with pytest.raises(ValueError):
            rectangle_mesh((0.0, 0.0), (0.0, 1.0))


class TestMergeMeshes:
    def test_bodies_and_offsets(self):
        a = disk_mesh((0.0, 0.0), 1.0, 8)
        b = rectangle_mesh((0.0, -2.0), (1.0, -1.5))
        mesh = merge_meshes(a, b)
        assert mesh.n_vertices == 13
        assert mesh.n_bodies == 2
        np.testing.assert_array_equal(mesh.body_ids, [0] * 9 + [1] * 4)
        np.testing.assert_array_equal(mesh.edges[-4:], b.edges + 9)
        np.testing.assert_array_equal(mesh.body_dofs(1), np.arange(18, 26))

    def test_mixed_element_types(self):
        a = disk_mesh((0.0, 0.0), 1.0, 8)
        b = Mesh2D(a.rest_positions, a.elements, a.edges, element_type="simplex")
        with pytest.raises(ValueError):
            merge_meshes(a, b)

    def test_empty(self):
        with pytest.raises(ValueError):
            merge_meshes()


class TestMesh2D:
    def test_vertices_from_displacement(self):
        mesh = rectangle_mesh((0.0, 0.0), (1.0, 1.0))
        x = np.tile([0.5, -0.25], 4)
        np.testing.assert_allclose(mesh.vertices(x), mesh.rest_positions + [0.5, -0.25])

    def test_inverted_area_negative(self):
        mesh = rectangle_mesh((0.0, 0.0), (1.0, 1.0))
        x = np.zeros(8)
        x[5] = -2.0  # 節点 2 を下端より下へ
        assert mesh.element_areas(x).min() < 0.0

    def test_out_of_range_index(self):
        with pytest.raises(ValueError):
            Mesh2D(np.zeros((3, 2)), np.array([[0, 1, 3]]), np.empty((0, 2)))

    def test_body_ids_length(self):
        with pytest.raises(ValueError):
            Mesh2D(np.zeros((3, 2)), np.array([[0, 1, 2]]), np.empty((0, 2)), body_ids=[0, 0])
