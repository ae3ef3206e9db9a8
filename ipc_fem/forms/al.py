"""Dirichlet 拘束の Augmented Lagrangian フォーム.

拘束 x_c = t（c: 拘束自由度, t: 目標値）に対して

    Lagrangian 項: λᵀ (t - x_c)
    ペナルティ項: w/2 ‖x_c - t‖²

停留条件 ∇E - λ + w (x_c - t) = 0 から乗数更新 λ ← λ + w (t - x_c)。
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
import scipy.sparse as sp

from ipc_fem.forms.base import Form


class DirichletConstraint:
    """拘束自由度と目標値.

    Args:
        dofs: 拘束自由度
        values: 目標値 (n_c,) または時刻 t → (n_c,) の関数
    """

    def __init__(
        self,
        dofs: np.ndarray,
        values: np.ndarray | float | Callable[[float], np.ndarray] = 0.0,
    ) -> None:
        self.dofs = np.asarray(dofs, dtype=np.intp).ravel()
        if len(np.unique(self.dofs)) != len(self.dofs):
            raise ValueError("拘束自由度が重複している")
        self._values = values
        self.target = self.evaluate(0.0)

    def evaluate(self, t: float) -> np.ndarray:
        values = self._values(t) if callable(self._values) else self._values
        return np.broadcast_to(np.asarray(values, dtype=float), self.dofs.shape).copy()

    def update(self, t: float) -> None:
        self.target = self.evaluate(t)

    def project(self, x: np.ndarray) -> np.ndarray:
        """拘束自由度を目標値に置き換えた配置."""
        out = np.array(x, dtype=float, copy=True)
        out[self.dofs] = self.target
        return out

    def violation(self, x: np.ndarray) -> float:
        """‖t - x_c‖."""
        if len(self.dofs) == 0:
            return 0.0
        return float(np.linalg.norm(self.target - x[self.dofs]))

    def __len__(self) -> int:
        return len(self.dofs)


class ALLagrangianForm(Form):
    """乗数項 λᵀ(t - x_c)."""

    name = "al_lagrangian"

    def __init__(self, constraint: DirichletConstraint) -> None:
        super().__init__()
        self.constraint = constraint
        self.multipliers = np.zeros(len(constraint))

    def value_unweighted(self, x: np.ndarray) -> float:
        c = self.constraint
        return float(self.multipliers @ (c.target - x[c.dofs]))

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        g = np.zeros(len(x))
        g[self.constraint.dofs] = -self.multipliers
        return g

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        n = len(x)
        return sp.csr_matrix((n, n))

    def update_lagrangian(self, x: np.ndarray, weight: float) -> None:
        """λ ← λ + w (t - x_c)."""
        c = self.constraint
        self.multipliers = self.multipliers + weight * (c.target - x[c.dofs])

    def reset_lagrangian(self) -> None:
        self.multipliers = np.zeros(len(self.constraint))


class ALPenaltyForm(Form):
    """ペナルティ項 w/2 ‖x_c - t‖²（w は weight）."""

    name = "al_penalty"

    def __init__(self, constraint: DirichletConstraint) -> None:
        super().__init__()
        self.constraint = constraint

    def value_unweighted(self, x: np.ndarray) -> float:
        c = self.constraint
        r = x[c.dofs] - c.target
        return 0.5 * float(r @ r)

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        c = self.constraint
        g = np.zeros(len(x))
        g[c.dofs] = x[c.dofs] - c.target
        return g

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        n = len(x)
        diag = np.zeros(n)
        diag[self.constraint.dofs] = 1.0
        return sp.diags(diag).tocsr()
