"""Rayleigh 減衰フォーム.

減衰行列 C = αM + βK、速度 v(x) は時間積分が与える x の 1 次関数
（dv/dx = c I, 後退 Euler: c = 1/Δt, Newmark: c = γ/(βΔt)）として

    E(x) = v(x)ᵀ C v(x) / (2 c)

勾配は減衰力 C v_{n+1}、ヘッセは c C。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy.sparse as sp

from ipc_fem.forms.base import Form

if TYPE_CHECKING:
    from ipc_fem.time_integrator import ImplicitTimeIntegrator


def rayleigh_damping_matrix(
    mass: sp.spmatrix, stiffness: sp.spmatrix, alpha: float, beta: float
) -> sp.csr_matrix:
    """C = αM + βK."""
    if alpha < 0 or beta < 0:
        raise ValueError(f"Rayleigh 減衰係数は非負: alpha={alpha}, beta={beta}")
    return sp.csr_matrix(alpha * mass + beta * stiffness)


class RayleighDampingForm(Form):
    """質量・剛性比例の粘性減衰.

    Args:
        mass: (ndof, ndof) 質量行列
        stiffness: (ndof, ndof) 剛性行列
        alpha: 質量比例係数
        beta: 剛性比例係数
        time_integrator: 速度 v_{n+1}(x) を与える時間積分
    """

    name = "damping"

    def __init__(
        self,
        mass: sp.spmatrix,
        stiffness: sp.spmatrix,
        alpha: float,
        beta: float,
        time_integrator: ImplicitTimeIntegrator,
    ) -> None:
        super().__init__()
        self.alpha = alpha
        self.beta = beta
        self.C = rayleigh_damping_matrix(mass, stiffness, alpha, beta)
        self.time_integrator = time_integrator

    def value_unweighted(self, x: np.ndarray) -> float:
        v = self.time_integrator.compute_velocity(x)
        return 0.5 * float(v @ (self.C @ v)) / self.time_integrator.velocity_scaling()

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        return self.C @ self.time_integrator.compute_velocity(x)

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        return self.C * self.time_integrator.velocity_scaling()

