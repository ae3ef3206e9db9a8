"""合成目的関数（フォームの和）と拘束モード.

拘束の扱いは 2 モード:
  AL モード（weight > 0）: 拘束自由度も自由、乗数項 + ペナルティ項を加える
  ハード拘束モード（weight = 0）: 拘束自由度は目標値に固定（勾配ゼロ, ヘッセ単位行）

Minimizer は ProblemProtocol 経由でこのクラスだけを見る。
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import scipy.sparse as sp

from ipc_fem.forms.al import ALLagrangianForm, ALPenaltyForm, DirichletConstraint
from ipc_fem.forms.base import Form
from ipc_fem.solver.validity import StepValidityOracle


class NLProblem:
    """非線形問題.

    Args:
        ndof: 自由度数
        forms: 物理フォーム（弾性・外力・慣性・接触・摩擦 等）
        constraint: Dirichlet 拘束（None なら拘束なし）
        oracle: Step Validity Oracle（None なら forms から構築）
    """

    def __init__(
        self,
        ndof: int,
        forms: Sequence[Form],
        *,
        constraint: DirichletConstraint | None = None,
        oracle: StepValidityOracle | None = None,
    ) -> None:
        self.ndof = int(ndof)
        self.forms = list(forms)
        self.constraint = constraint
        if constraint is not None and len(constraint) > 0:
            self.al_lagrangian: ALLagrangianForm | None = ALLagrangianForm(constraint)
            self.al_penalty: ALPenaltyForm | None = ALPenaltyForm(constraint)
        else:
            self.al_lagrangian = None
            self.al_penalty = None
        self.oracle = oracle if oracle is not None else StepValidityOracle(self.forms)
        self._free = np.ones(self.ndof, dtype=bool)
        self.set_al_weight(0.0)

    # ----------------------------------------------------------------
    # フォーム集合
    # ----------------------------------------------------------------

    @property
    def all_forms(self) -> list[Form]:
        out = list(self.forms)
        if self.al_lagrangian is not None:
            out += [self.al_lagrangian, self.al_penalty]
        return out

    def form(self, name: str) -> Form | None:
        for f in self.all_forms:
            if f.name == name:
                return f
        return None

    @property
    def has_constraints(self) -> bool:
        return self.al_lagrangian is not None

    # ----------------------------------------------------------------
    # 拘束モード
    # ----------------------------------------------------------------

    def set_al_weight(self, weight: float) -> None:
        """weight > 0 で AL モード、0 でハード拘束モード."""
        if weight < 0:
            raise ValueError(f"weight は非負: {weight}")
        self.al_weight = float(weight)
        self._free[:] = True
        if not self.has_constraints:
            return
        penalized = weight > 0.0
        self.al_lagrangian.enabled = penalized
        self.al_penalty.enabled = penalized
        self.al_penalty.weight = weight if penalized else 1.0
        if not penalized:
            self._free[self.constraint.dofs] = False

    @property
    def hard_constraints(self) -> bool:
        return self.has_constraints and self.al_weight == 0.0

    def constraint_projection(self, x: np.ndarray) -> np.ndarray:
        if not self.has_constraints:
            return np.array(x, dtype=float, copy=True)
        return self.constraint.project(x)

    def constraint_violation(self, x: np.ndarray) -> float:
        if not self.has_constraints:
            return 0.0
        return self.constraint.violation(x)

    def update_lagrangian(self, x: np.ndarray, weight: float) -> None:
        if self.has_constraints:
            self.al_lagrangian.update_lagrangian(x, weight)

    def reset_lagrangian(self) -> None:
        if self.has_constraints:
            self.al_lagrangian.reset_lagrangian()

    @property
    def multipliers(self) -> np.ndarray:
        if not self.has_constraints:
            return np.empty(0)
        return self.al_lagrangian.multipliers

    # ----------------------------------------------------------------
    # 評価
    # ----------------------------------------------------------------

    def value(self, x: np.ndarray) -> float:
        return float(sum(f.value(x) for f in self.all_forms))

    def gradient(self, x: np.ndarray) -> np.ndarray:
        g = np.zeros(self.ndof)
        for f in self.all_forms:
            g += f.first_derivative(x)
        if self.hard_constraints:
            g[~self._free] = 0.0
        return g

    def has_hessian(self) -> bool:
        return all(f.has_hessian for f in self.all_forms if f.enabled)

    def hessian(self, x: np.ndarray) -> sp.csr_matrix | None:
        H = sp.csr_matrix((self.ndof, self.ndof))
        for f in self.all_forms:
            Hf = f.second_derivative(x)
            if Hf is None:
                return None
            H = H + Hf
        if self.hard_constraints:
            free = sp.diags(self._free.astype(float))
            fixed = sp.diags((~self._free).astype(float))
            H = free @ H @ free + fixed
        return sp.csr_matrix(H)

    def energy_breakdown(self, x: np.ndarray) -> dict[str, float]:
        """フォームごとのエネルギー."""
        return {f.name: f.value(x) for f in self.all_forms}

    # ----------------------------------------------------------------
    # ステップ妥当性
    # ----------------------------------------------------------------

    def is_step_valid(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        return self.oracle.is_valid(x0, x1)

    def max_step_size(self, x0: np.ndarray, x1: np.ndarray) -> float:
        return self.oracle.max_step_size(x0, x1)

    def is_intersection_free(self, x: np.ndarray) -> bool:
        return self.oracle.is_intersection_free(x)

    # ----------------------------------------------------------------
    # ライフサイクル
    # ----------------------------------------------------------------

    def init(self, x: np.ndarray) -> None:
        for f in self.all_forms:
            f.init(x)

    def solution_changed(self, x: np.ndarray) -> None:
        for f in self.all_forms:
            f.solution_changed(x)

    def update_quantities(self, t: float, x: np.ndarray) -> None:
        if self.constraint is not None:
            self.constraint.update(t)
        for f in self.all_forms:
            f.update_quantities(t, x)

    def finish_step(self, x: np.ndarray) -> None:
        for f in self.all_forms:
            f.finish_step(x)

    # ----------------------------------------------------------------
    # ラギング
    # ----------------------------------------------------------------

    def uses_lagging(self) -> bool:
        return any(f.uses_lagging() for f in self.forms)

    @property
    def max_lagging_iterations(self) -> int:
        its = [f.max_lagging_iterations for f in self.forms if f.uses_lagging()]
        return max(its) if its else 1

    def init_lagging(self, x: np.ndarray) -> None:
        for f in self.forms:
            f.init_lagging(x)

    def update_lagging(self, x: np.ndarray, iter_num: int) -> None:
        for f in self.forms:
            f.update_lagging(x, iter_num)
