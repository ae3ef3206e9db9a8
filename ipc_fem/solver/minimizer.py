"""非線形最小化（Newton / L-BFGS）.

反復:
    1. 勾配 g を評価、‖g‖ <= grad_norm で収束
    2. 降下方向 Δx を求める
         Newton: H Δx = -g → 正則化 (H + δI) Δx = -g（δ は 10 倍ずつ）→ 最急降下
         L-BFGS: two-loop recursion（降下方向でなければ履歴を捨てて最急降下）
    3. Backtracking line search（Step Validity Oracle 付き）

終了状態（MinimizerStatus）は区別して報告する:
  CONVERGED / MAX_ITERATIONS / LINE_SEARCH_FAILED / NON_FINITE / NON_FINITE_DIRECTION
全ての線形求解が失敗した場合のみ LinearSolverFailure を送出する（致命的）。
"""

from __future__ import annotations

import time

import numpy as np
import scipy.sparse as sp

from ipc_fem.config import LinearSolverConfig, NonlinearSolverConfig
from ipc_fem.core.errors import FormEvaluationError, LinearSolverFailure
from ipc_fem.core.protocols import ProblemProtocol
from ipc_fem.core.results import MinimizeInfo, MinimizerStatus
from ipc_fem.solver.line_search import backtracking_line_search
from ipc_fem.solver.linear import LinearSolver


def _is_descent(direction: np.ndarray, grad: np.ndarray) -> bool:
    if not np.all(np.isfinite(direction)):
        return False
    return float(grad @ direction) < 0.0


class Minimizer:
    """最小化の共通ループ. 派生クラスは _direction と init を実装する.

    Args:
        config: 非線形ソルバー設定
    """

    name = "minimizer"

    def __init__(self, config: NonlinearSolverConfig | None = None) -> None:
        self.config = config if config is not None else NonlinearSolverConfig()
        self.info = MinimizeInfo()

    def init(self, x: np.ndarray) -> None:
        self.info = MinimizeInfo()

    def _direction(
        self, problem: ProblemProtocol, x: np.ndarray, grad: np.ndarray
    ) -> tuple[np.ndarray, str]:
        raise NotImplementedError

    def _accepted(self, x_old: np.ndarray, x_new: np.ndarray, g_old: np.ndarray) -> None:
        """ステップ採用の通知（準ニュートン履歴の更新用）."""

    def minimize(
        self, problem: ProblemProtocol, x0: np.ndarray
    ) -> tuple[np.ndarray, MinimizeInfo]:
        """x0 から problem を最小化する.

        Args:
            problem: 目的関数
            x0: 初期配置（書き換えない）

        Returns:
            (x, info)
        """
        cfg = self.config
        t_start = time.time()
        info = self.info = MinimizeInfo()
        x = np.array(x0, dtype=float, copy=True)

        def finish(status: MinimizerStatus, message: str = "") -> tuple[np.ndarray, MinimizeInfo]:
            info.status = status
            info.message = message
            info.time = time.time() - t_start
            if cfg.show_progress:
                print(
                    f"    [{self.name}] {status.value}: iter {info.iterations}, "
                    f"||g|| = {info.grad_norm:.3e}, E = {info.energy:.6e}"
                )
            return x, info

        problem.solution_changed(x)
        try:
            energy = float(problem.value(x))
            grad = problem.gradient(x)
        except FormEvaluationError as exc:
            return finish(MinimizerStatus.NON_FINITE, str(exc))
        info.energy = energy
        if not np.isfinite(energy) or not np.all(np.isfinite(grad)):
            return finish(MinimizerStatus.NON_FINITE, "初期配置で非有限")

        for it in range(cfg.max_iterations):
            grad_norm = float(np.linalg.norm(grad))
            info.grad_norm = grad_norm
            if grad_norm <= cfg.grad_norm:
                return finish(MinimizerStatus.CONVERGED)

            direction, kind = self._direction(problem, x, grad)
            info.direction_counts[kind] = info.direction_counts.get(kind, 0) + 1
            if not _is_descent(direction, grad):
                return finish(MinimizerStatus.NON_FINITE_DIRECTION, f"{kind} 方向が降下方向でない")

            ls = backtracking_line_search(
                problem,
                x,
                direction,
                energy,
                grad,
                max_steps=cfg.line_search_max_steps,
                shrink=cfg.line_search_shrink,
                c_armijo=cfg.c_armijo,
                min_step_size=cfg.min_step_size,
            )
            info.line_search_evaluations += ls.n_evaluations
            if not ls.success:
                return finish(
                    MinimizerStatus.LINE_SEARCH_FAILED,
                    f"ライン探索失敗（試行 {ls.n_evaluations}, 棄却 {ls.n_invalid}）",
                )

            x_old = x
            x = ls.x
            energy = ls.energy
            info.iterations = it + 1
            info.energy = energy
            info.step_norm = float(np.max(np.abs(x - x_old), initial=0.0))
            problem.solution_changed(x)

            try:
                grad_new = problem.gradient(x)
            except FormEvaluationError as exc:
                return finish(MinimizerStatus.NON_FINITE, str(exc))
            if not np.all(np.isfinite(grad_new)):
                return finish(MinimizerStatus.NON_FINITE, "勾配が非有限")
            self._accepted(x_old, x, grad)
            grad = grad_new

            if cfg.show_progress and it % 5 == 0:
                print(
                    f"    [{self.name}] iter {it}, E = {energy:.6e}, "
                    f"||g|| = {float(np.linalg.norm(grad)):.3e}, step = {ls.step_size:.3e} ({kind})"
                )

            if cfg.x_delta > 0.0 and info.step_norm <= cfg.x_delta:
                info.grad_norm = float(np.linalg.norm(grad))
                return finish(MinimizerStatus.CONVERGED, "x_delta")

        info.grad_norm = float(np.linalg.norm(grad))
        if info.grad_norm <= cfg.grad_norm:
            return finish(MinimizerStatus.CONVERGED)
        return finish(MinimizerStatus.MAX_ITERATIONS)


class NewtonSolver(Minimizer):
    """疎 Newton 法（正則化 Newton・最急降下へのフォールバック付き）.

    Args:
        config: 非線形ソルバー設定
        linear_solver: 線形ソルバー（None なら LinearSolverConfig の既定値）
    """

    name = "newton"

    def __init__(
        self,
        config: NonlinearSolverConfig | None = None,
        linear_solver: LinearSolver | None = None,
    ) -> None:
        super().__init__(config)
        if linear_solver is None:
            lc = LinearSolverConfig()
            linear_solver = LinearSolver(
                lc.mode, iterative_tol=lc.iterative_tol, ilu_drop_tol=lc.ilu_drop_tol
            )
        self.linear_solver = linear_solver

    def _direction(
        self, problem: ProblemProtocol, x: np.ndarray, grad: np.ndarray
    ) -> tuple[np.ndarray, str]:
        cfg = self.config
        H = problem.hessian(x)
        if H is None:
            raise ValueError("NewtonSolver にはヘッセが必要（LBFGSSolver を使用）")
        H = sp.csr_matrix(H)
        n_failed = 0
        try:
            dx = self.linear_solver.solve(H, -grad)
            if _is_descent(dx, grad):
                return dx, "newton"
        except LinearSolverFailure:
            n_failed += 1

        # 対角シフトで正定値化
        diag_scale = float(np.mean(np.abs(H.diagonal()))) if H.shape[0] else 1.0
        shift = cfg.regularization_initial * max(diag_scale, 1.0)
        identity = sp.identity(H.shape[0], format="csr")
        for _ in range(cfg.regularization_max_tries):
            try:
                dx = self.linear_solver.solve(H + shift * identity, -grad)
                if _is_descent(dx, grad):
                    return dx, "regularized_newton"
            except LinearSolverFailure:
                n_failed += 1
            shift *= 10.0

        if n_failed == 1 + cfg.regularization_max_tries:
            raise LinearSolverFailure(
                "Newton 系の線形求解が全て失敗",
                n_attempts=n_failed,
                grad_norm=float(np.linalg.norm(grad)),
            )
        if cfg.allow_gradient_descent:
            return -grad, "gradient_descent"
        return np.full_like(grad, np.nan), "none"


class LBFGSSolver(Minimizer):
    """L-BFGS（two-loop recursion, 履歴は (m, n) で事前確保）.

    Args:
        config: 非線形ソルバー設定（lbfgs_history が履歴長）
    """

    name = "lbfgs"

    def __init__(self, config: NonlinearSolverConfig | None = None) -> None:
        super().__init__(config)
        self._s: np.ndarray | None = None
        self._y: np.ndarray | None = None
        self._rho: np.ndarray | None = None
        self._count = 0
        self._head = 0
        self._pending_grad: tuple[np.ndarray, np.ndarray] | None = None

    def init(self, x: np.ndarray) -> None:
        super().init(x)
        m = self.config.lbfgs_history
        n = len(x)
        if self._s is None or self._s.shape != (m, n):
            self._s = np.zeros((m, n))
            self._y = np.zeros((m, n))
            self._rho = np.zeros(m)
        else:
            self._s.fill(0.0)
            self._y.fill(0.0)
            self._rho.fill(0.0)
        self._count = 0
        self._head = 0

    def minimize(
        self, problem: ProblemProtocol, x0: np.ndarray
    ) -> tuple[np.ndarray, MinimizeInfo]:
        if self._s is None or self._s.shape[1] != len(x0):
            self.init(x0)
        self._pending_grad = None
        return super().minimize(problem, x0)

    def _direction(
        self, problem: ProblemProtocol, x: np.ndarray, grad: np.ndarray
    ) -> tuple[np.ndarray, str]:
        m = self.config.lbfgs_history
        if self._pending_grad is not None:
            # 直前に採用したステップの (s, y) を履歴へ
            s, g_old = self._pending_grad
            y = grad - g_old
            sy = float(s @ y)
            if sy > 1e-12 * float(np.linalg.norm(s) * np.linalg.norm(y)):
                self._s[self._head] = s
                self._y[self._head] = y
                self._rho[self._head] = 1.0 / sy
                self._head = (self._head + 1) % m
                self._count = min(self._count + 1, m)
            self._pending_grad = None

        if self._count == 0:
            return -grad, "gradient_descent"

        q = grad.copy()
        order = [(self._head - 1 - k) % m for k in range(self._count)]
        alphas = np.zeros(self._count)
        for k, idx in enumerate(order):
            alphas[k] = self._rho[idx] * float(self._s[idx] @ q)
            q -= alphas[k] * self._y[idx]
        last = order[0]
        gamma = float(self._s[last] @ self._y[last]) / float(self._y[last] @ self._y[last])
        r = gamma * q
        for k in reversed(range(self._count)):
            idx = order[k]
            beta = self._rho[idx] * float(self._y[idx] @ r)
            r += self._s[idx] * (alphas[k] - beta)
        direction = -r
        if not _is_descent(direction, grad):
            self._count = 0
            self._head = 0
            return -grad, "gradient_descent"
        return direction, "lbfgs"

    def _accepted(self, x_old: np.ndarray, x_new: np.ndarray, g_old: np.ndarray) -> None:
        self._pending_grad = (x_new - x_old, g_old)


def make_minimizer(
    config: NonlinearSolverConfig,
    linear_solver: LinearSolver | None = None,
    *,
    has_hessian: bool = True,
) -> Minimizer:
    """設定からミニマイザを作る（ヘッセがなければ L-BFGS）."""
    if config.solver == "lbfgs" or not has_hessian:
        return LBFGSSolver(config)
    return NewtonSolver(config, linear_solver)
