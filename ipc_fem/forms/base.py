"""エネルギー/拘束フォームの基底クラス.

各フォームは配置 x に対して値・勾配・疎ヘッセを返し、和として合成される。
派生クラスは value_unweighted / first_derivative_unweighted /
second_derivative_unweighted を実装する。重み・有効フラグ・非有限検出は基底が担う。
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from ipc_fem.core.errors import NonFiniteError


class Form:
    """フォーム基底.

    Attributes:
        name: 診断用の名前
        weight: 値・勾配・ヘッセに掛かる重み
        enabled: False なら値ゼロとして扱う
        has_hessian: ヘッセを提供するか（False なら準ニュートン法が選ばれる）
    """

    name = "form"
    has_hessian = True

    def __init__(self) -> None:
        self.weight = 1.0
        self.enabled = True

    # ----------------------------------------------------------------
    # 評価
    # ----------------------------------------------------------------

    def value(self, x: np.ndarray) -> float:
        if not self.enabled:
            return 0.0
        v = self.weight * self.value_unweighted(x)
        if not np.isfinite(v):
            raise NonFiniteError(self.name, f"value={v}")
        return float(v)

    def first_derivative(self, x: np.ndarray) -> np.ndarray:
        if not self.enabled:
            return np.zeros_like(x, dtype=float)
        g = self.weight * self.first_derivative_unweighted(x)
        if not np.all(np.isfinite(g)):
            raise NonFiniteError(self.name, "gradient has NaN/Inf")
        return g

    def second_derivative(self, x: np.ndarray) -> sp.csr_matrix | None:
        n = len(x)
        if not self.enabled:
            return sp.csr_matrix((n, n))
        if not self.has_hessian:
            return None
        H = self.second_derivative_unweighted(x)
        H = sp.csr_matrix(H) * self.weight
        if H.nnz and not np.all(np.isfinite(H.data)):
            raise NonFiniteError(self.name, "hessian has NaN/Inf")
        return H

    def value_unweighted(self, x: np.ndarray) -> float:
        raise NotImplementedError

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        raise NotImplementedError

    # ----------------------------------------------------------------
    # ライフサイクル
    # ----------------------------------------------------------------

    def init(self, x: np.ndarray) -> None:
        """最小化開始時の初期化."""

    def solution_changed(self, x: np.ndarray) -> None:
        """最小化で配置が更新された."""

    def update_quantities(self, t: float, x: np.ndarray) -> None:
        """ステップ開始時の時刻依存量の更新（x は直前の確定配置）."""

    def finish_step(self, x: np.ndarray) -> None:
        """ステップ確定時の通知."""

    # ----------------------------------------------------------------
    # ステップ妥当性
    # ----------------------------------------------------------------

    def is_step_valid(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        return True

    def is_step_collision_free(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        return True

    def max_step_size(self, x0: np.ndarray, x1: np.ndarray) -> float:
        return 1.0

    # ----------------------------------------------------------------
    # ラギング
    # ----------------------------------------------------------------

    def init_lagging(self, x: np.ndarray) -> None:
        """ラギング状態を x から初期化する."""

    def update_lagging(self, x: np.ndarray, iter_num: int) -> None:
        """ラギング状態を x から更新する."""

    def uses_lagging(self) -> bool:
        return False

    @property
    def max_lagging_iterations(self) -> int:
        return 1

    def __repr__(self) -> str:
        return f"{type(self).__name__}(weight={self.weight}, enabled={self.enabled})"
