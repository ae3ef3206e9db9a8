"""摩擦ラギングコントローラ（固定点反復）.

    k = 0 : ラギング状態を開始配置から初期化し、AL + 最小化で候補を得る
    k >= 1: 候補からラギング状態を更新し、摩擦込み全目的関数の勾配ノルムを評価
            ‖g‖ <= tol                → CONVERGED
            ‖x_k - x_{k-1}‖_∞ <= 1e-12 → STAGNATED（非収束として報告）
            k が反復上限                → MAX_ITERATIONS（非致命, 候補は使用可）
            それ以外は再び AL + 最小化

摩擦が無効（ラギングを使うフォームがない）なら AL を 1 回呼ぶだけ。
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np

from ipc_fem.core.diagnostics import DiagnosticsSink
from ipc_fem.core.results import ALResult, LaggingResult, LaggingStatus
from ipc_fem.solver.al_solver import ALSolver
from ipc_fem.solver.nl_problem import NLProblem

logger = logging.getLogger(__name__)


class FrictionLaggingController:
    """摩擦ラギング.

    Args:
        al_solver: AL コントローラ
        max_iterations: ラギングの最大反復数（AL 求解回数）
        convergence_tol: 勾配ノルムの収束判定
        stagnation_tol: 配置変化の停滞判定
        post_lagging: 各反復の収束判定後に呼ぶ観測フック f(lag_i, grad_norm)
        diagnostics: 非収束警告の出力先
        show_progress: 進捗表示
    """

    def __init__(
        self,
        al_solver: ALSolver,
        *,
        max_iterations: int = 10,
        convergence_tol: float = 1e-2,
        stagnation_tol: float = 1e-12,
        post_lagging: Callable[[int, float], None] | None = None,
        diagnostics: DiagnosticsSink | None = None,
        show_progress: bool = False,
    ) -> None:
        if max_iterations < 1:
            raise ValueError(f"max_iterations は1以上: {max_iterations}")
        self.al_solver = al_solver
        self.max_iterations = int(max_iterations)
        self.convergence_tol = float(convergence_tol)
        self.stagnation_tol = float(stagnation_tol)
        self.post_lagging = post_lagging
        self.diagnostics = diagnostics
        self.show_progress = show_progress
        self.lag_iteration = 0

    def _warn(self, message: str) -> None:
        if self.diagnostics is not None:
            self.diagnostics.warn(message)
        else:
            logger.warning(message)

    def solve(self, problem: NLProblem, x0: np.ndarray) -> LaggingResult:
        """ラギング付きで問題を解く."""
        x = np.array(x0, dtype=float, copy=True)
        self.lag_iteration = 0
        results: list[ALResult] = []

        if not problem.uses_lagging():
            al = self.al_solver.solve(problem, x)
            results.append(al)
            status = LaggingStatus.DISABLED if al.converged else LaggingStatus.INNER_FAILED
            grad_norm = al.info.grad_norm if al.info is not None else float("nan")
            return LaggingResult(al.x, status, 1, grad_norm, results)

        budget = min(self.max_iterations, problem.max_lagging_iterations)
        problem.init_lagging(x)
        al = self.al_solver.solve(problem, x)
        results.append(al)
        if not al.converged:
            return LaggingResult(al.x, LaggingStatus.INNER_FAILED, 1, float("nan"), results)

        x_prev = x
        x = al.x
        lag_i = 1
        while True:
            self.lag_iteration = lag_i
            problem.update_lagging(x, lag_i)
            grad_norm = float(np.linalg.norm(problem.gradient(x)))
            delta = float(np.max(np.abs(x - x_prev), initial=0.0))
            if self.post_lagging is not None:
                self.post_lagging(lag_i, grad_norm)
            if self.show_progress:
                print(f"  lagging {lag_i}: ||g|| = {grad_norm:.3e}, ||dx||_inf = {delta:.3e}")

            if grad_norm <= self.convergence_tol:
                status = LaggingStatus.CONVERGED
                break
            if delta <= self.stagnation_tol:
                status = LaggingStatus.STAGNATED
                self._warn(
                    f"摩擦ラギングが停滞（反復 {lag_i}, ||g|| = {grad_norm:.3e} > {self.convergence_tol:.1e}）"
                )
                break
            if lag_i >= budget:
                status = LaggingStatus.MAX_ITERATIONS
                self._warn(
                    f"摩擦ラギングが {budget} 反復で収束せず（||g|| = {grad_norm:.3e}）"
                )
                break

            al = self.al_solver.solve(problem, x)
            results.append(al)
            if not al.converged:
                return LaggingResult(al.x, LaggingStatus.INNER_FAILED, len(results), grad_norm, results)
            x_prev = x
            x = al.x
            lag_i += 1

        return LaggingResult(x, status, len(results), grad_norm, results)
