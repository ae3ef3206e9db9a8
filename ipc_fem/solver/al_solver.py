"""Augmented Lagrangian コントローラ（Dirichlet 拘束）.

状態遷移:
    UNCONSTRAINED --(拘束目標への射影が不許可)--> PENALIZED
    PENALIZED: 重み w で最小化 → 射影が許可されれば抜ける
               そうでなければ λ ← λ + w (t - x_c), w ← scaling · w
               w > max_weight なら ESCALATED_MAX（ConstraintEscalationExhausted）
               内部最小化が失敗すれば重みを上げずに INNER_FAILED で終わる
    → 射影した配置からハード拘束で最終最小化 → CONVERGED（失敗なら INNER_FAILED）

「射影が許可」= 拘束自由度を目標値に置いた配置へのステップが Step Validity Oracle を
通り、エネルギーが有限であること。拘束がない・最初から許可される場合は
最小化 1 回で終わる。
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

from ipc_fem.config import AugmentedLagrangianConfig
from ipc_fem.core.errors import ConstraintEscalationExhausted, FormEvaluationError
from ipc_fem.core.protocols import MinimizerProtocol
from ipc_fem.core.results import ALResult, ALState, MinimizeInfo
from ipc_fem.solver.nl_problem import NLProblem


class ALSolver:
    """AL 外側ループ.

    Args:
        minimizer: 内部の非線形最小化
        config: AL 設定（開始重み・倍率・上限）
        update_barrier_stiffness: 各内部求解の直前に呼ぶバリア剛性更新 f(x)
        post_subsolve: 各内部求解の直後に呼ぶ観測フック f(weight, info)。
            ハード拘束求解では weight = 0。制御フローには影響しない。
        show_progress: 進捗表示
    """

    def __init__(
        self,
        minimizer: MinimizerProtocol,
        config: AugmentedLagrangianConfig | None = None,
        *,
        update_barrier_stiffness: Callable[[np.ndarray], None] | None = None,
        post_subsolve: Callable[[float, MinimizeInfo], None] | None = None,
        show_progress: bool = False,
    ) -> None:
        self.minimizer = minimizer
        self.config = config if config is not None else AugmentedLagrangianConfig()
        self.update_barrier_stiffness = update_barrier_stiffness
        self.post_subsolve = post_subsolve
        self.show_progress = show_progress
        self.state = ALState.UNCONSTRAINED
        self.weights: list[float] = []

    def projection_admissible(self, problem: NLProblem, x: np.ndarray) -> bool:
        """拘束目標への射影が許可されるか."""
        if not problem.has_constraints:
            return True
        xp = problem.constraint_projection(x)
        if not problem.is_step_valid(x, xp):
            return False
        try:
            value = problem.value(xp)
        except FormEvaluationError:
            return False
        return bool(np.isfinite(value))

    def _inner_solve(
        self, problem: NLProblem, x: np.ndarray, weight: float
    ) -> tuple[np.ndarray, MinimizeInfo]:
        problem.set_al_weight(weight)
        if self.update_barrier_stiffness is not None:
            self.update_barrier_stiffness(x)
        problem.init(x)
        self.minimizer.init(x)
        x, info = self.minimizer.minimize(problem, x)
        if self.post_subsolve is not None:
            self.post_subsolve(weight, info)
        return x, info

    def solve(self, problem: NLProblem, x0: np.ndarray) -> ALResult:
        """x0 から拘束付き問題を解く.

        Args:
            problem: 非線形問題
            x0: 開始配置

        Returns:
            ALResult

        Raises:
            ConstraintEscalationExhausted: 重みが max_weight を超えた
        """
        cfg = self.config
        x = np.array(x0, dtype=float, copy=True)
        self.state = ALState.UNCONSTRAINED
        self.weights = []
        weight = cfg.initial_weight
        n_escalations = 0
        n_inner = 0
        violation = problem.constraint_violation(x)

        while not self.projection_admissible(problem, x):
            self.state = ALState.PENALIZED
            self.weights.append(weight)
            x, info = self._inner_solve(problem, x, weight)
            n_inner += 1
            violation = problem.constraint_violation(x)
            if self.show_progress:
                print(
                    f"  AL weight = {weight:.3e}, ||t - x_c|| = {violation:.3e}, "
                    f"inner {info.status.value} ({info.iterations} iter)"
                )
            if not info.converged:
                self.state = ALState.INNER_FAILED
                problem.set_al_weight(0.0)
                return ALResult(
                    x=x,
                    state=self.state,
                    weights=list(self.weights),
                    n_escalations=n_escalations,
                    violation=violation,
                    info=info,
                    n_inner_solves=n_inner,
                )
            if self.projection_admissible(problem, x):
                break

            problem.update_lagrangian(x, weight)
            weight *= cfg.scaling
            n_escalations += 1
            if weight > cfg.max_weight:
                self.state = ALState.ESCALATED_MAX
                problem.set_al_weight(0.0)
                raise ConstraintEscalationExhausted(
                    "AL 重みが上限を超えても拘束目標へ射影できない",
                    weight=weight,
                    max_weight=cfg.max_weight,
                    n_escalations=n_escalations,
                    violation=violation,
                    grad_norm=info.grad_norm,
                    weights=list(self.weights),
                )

        # ハード拘束での最終求解
        x = problem.constraint_projection(x)
        x, info = self._inner_solve(problem, x, 0.0)
        n_inner += 1
        self.state = ALState.CONVERGED if info.converged else ALState.INNER_FAILED
        return ALResult(
            x=x,
            state=self.state,
            weights=list(self.weights),
            n_escalations=n_escalations,
            violation=violation,
            info=info,
            n_inner_solves=n_inner,
        )
