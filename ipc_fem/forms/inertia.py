"""慣性フォームと集中質量.

E(x) = (x - x̃)ᵀ M (x - x̃) / (2 s)

x̃ は時間積分の予測配置、s は加速度スケーリング（後退 Euler: Δt², Newmark: βΔt²）。
勾配 M(x - x̃)/s が M·a_{n+1} に一致する。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy.sparse as sp

from ipc_fem.forms.base import Form
from ipc_fem.mesh import Mesh2D

if TYPE_CHECKING:
    from ipc_fem.time_integrator import ImplicitTimeIntegrator


def lumped_vertex_mass(mesh: Mesh2D, density: float, thickness: float = 1.0) -> np.ndarray:
    """要素質量を節点へ等分配した節点質量 (n_vertices,)."""
    areas = np.abs(mesh.element_areas())
    nn = mesh.elements.shape[1]
    m = np.zeros(mesh.n_vertices)
    np.add.at(m, mesh.elements.ravel(), np.repeat(density * thickness * areas / nn, nn))
    return m


def lumped_mass_matrix(mesh: Mesh2D, density: float, thickness: float = 1.0) -> sp.csr_matrix:
    """集中質量行列（対角, 各方向同一）."""
    m = lumped_vertex_mass(mesh, density, thickness)
    return sp.diags(np.repeat(m, mesh.dim)).tocsr()


class InertiaForm(Form):
    """慣性エネルギー.

    Args:
        mass: (ndof, ndof) 質量行列
        time_integrator: 予測配置とスケーリングを与える時間積分
    """

    name = "inertia"

    def __init__(self, mass: sp.csr_matrix, time_integrator: ImplicitTimeIntegrator) -> None:
        super().__init__()
        self.mass = mass
        self.time_integrator = time_integrator

    def value_unweighted(self, x: np.ndarray) -> float:
        r = x - self.time_integrator.x_tilde()
        return 0.5 * float(r @ (self.mass @ r)) / self.time_integrator.acceleration_scaling()

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        r = x - self.time_integrator.x_tilde()
        return (self.mass @ r) / self.time_integrator.acceleration_scaling()

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        return self.mass / self.time_integrator.acceleration_scaling()
