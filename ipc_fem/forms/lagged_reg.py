"""ラギング正則化フォーム.

E(x) = w/2 ‖x - x_lag‖²。ラギング開始時の配置に弱く引き戻し、
最初の n_lagging_iterations 回の反復だけ有効。
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from ipc_fem.forms.base import Form


class LaggedRegForm(Form):
    """ラギング反復の初期だけ効く近接正則化.

    Args:
        weight: 正則化の重み
        n_lagging_iterations: 有効な反復数
    """

    name = "lagged_regularization"

    def __init__(self, weight: float, n_lagging_iterations: int) -> None:
        super().__init__()
        if weight < 0:
            raise ValueError(f"weight は非負: {weight}")
        self.weight = float(weight)
        self.n_lagging_iterations = int(n_lagging_iterations)
        self.x_lagged: np.ndarray | None = None
        self.enabled = self.n_lagging_iterations > 0

    def init_lagging(self, x: np.ndarray) -> None:
        self.x_lagged = np.array(x, dtype=float, copy=True)
        self.enabled = self.n_lagging_iterations > 0

    def update_lagging(self, x: np.ndarray, iter_num: int) -> None:
        self.x_lagged = np.array(x, dtype=float, copy=True)
        self.enabled = iter_num < self.n_lagging_iterations

    def uses_lagging(self) -> bool:
        return self.n_lagging_iterations > 0 and self.weight > 0.0

    @property
    def max_lagging_iterations(self) -> int:
        return self.n_lagging_iterations

    def value_unweighted(self, x: np.ndarray) -> float:
        if self.x_lagged is None:
            return 0.0
        r = x - self.x_lagged
        return 0.5 * float(r @ r)

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        if self.x_lagged is None:
            return np.zeros(len(x))
        return x - self.x_lagged

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        return sp.identity(len(x), format="csr")
