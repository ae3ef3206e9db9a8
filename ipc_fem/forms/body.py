"""体積力・節点外力フォーム.

E(x) = -λ fᵀ x,  f = M g + f_nodal

λ は荷重係数。静的解析では update_quantities で λ = t（荷重増分）、
動解析では 1 に固定する。
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from ipc_fem.forms.base import Form


class BodyForm(Form):
    """外力ポテンシャル.

    Args:
        mass: (ndof, ndof) 質量行列
        acceleration: 体積加速度（重力等）(dim,)
        nodal_forces: (ndof,) 節点外力（None でゼロ）
        ramp: True なら荷重係数を時刻 t に追従させる（静的荷重増分）
    """

    name = "body"

    def __init__(
        self,
        mass: sp.csr_matrix,
        acceleration: np.ndarray | tuple[float, ...],
        nodal_forces: np.ndarray | None = None,
        *,
        ramp: bool = False,
    ) -> None:
        super().__init__()
        ndof = mass.shape[0]
        acc = np.asarray(acceleration, dtype=float)
        dim = len(acc)
        f = mass @ np.tile(acc, ndof // dim)
        if nodal_forces is not None:
            f = f + np.asarray(nodal_forces, dtype=float)
        self.force = f
        self.ramp = ramp
        self.load_factor = 1.0

    def update_quantities(self, t: float, x: np.ndarray) -> None:
        if self.ramp:
            self.load_factor = float(t)

    def value_unweighted(self, x: np.ndarray) -> float:
        return -self.load_factor * float(self.force @ x)

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        return -self.load_factor * self.force

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        n = len(x)
        return sp.csr_matrix((n, n))
