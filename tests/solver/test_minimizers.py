"""Newton / L-BFGS 最小化のテスト."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from ipc_fem.config import NonlinearSolverConfig
from ipc_fem.core.errors import LinearSolverFailure, NonFiniteError
from ipc_fem.core.results import MinimizerStatus
from ipc_fem.solver.minimizer import LBFGSSolver, NewtonSolver, make_minimizer

# ====================================================================
# スタブ問題
# ====================================================================


class _QuadraticProblem:
    """E = ½ xᵀAx - bᵀx."""

    def __init__(self, A, b, oracle=None):
        self.A = np.asarray(A, dtype=float)
        self.b = np.asarray(b, dtype=float)
        self.oracle = oracle
        self.n_changed = 0

    def value(self, x):
        return 0.5 * float(x @ self.A @ x) - float(self.b @ x)

    def gradient(self, x):
        return self.A @ x - self.b

    def hessian(self, x):
        return sp.csr_matrix(self.A)

    def has_hessian(self):
        return True

    def is_step_valid(self, x0, x1):
        return True if self.oracle is None else self.oracle(x0, x1)

    def max_step_size(self, x0, x1):
        return 1.0

    def solution_changed(self, x):
        self.n_changed += 1

    @property
    def solution(self):
        return np.linalg.solve(self.A, self.b)


class _DoubleWell(_QuadraticProblem):
    """E = ½x0² - ½x1² + ¼x1⁴（x1 = 0 付近でヘッセが不定）."""

    def __init__(self):
        super().__init__(np.eye(2), np.zeros(2))

    def value(self, x):
        return 0.5 * x[0] ** 2 - 0.5 * x[1] ** 2 + 0.25 * x[1] ** 4

    def gradient(self, x):
        return np.array([x[0], -x[1] + x[1] ** 3])

    def hessian(self, x):
        return sp.diags([1.0, -1.0 + 3.0 * x[1] ** 2]).tocsr()


class _BrokenProblem(_QuadraticProblem):
    def value(self, x):
        raise NonFiniteError("broken", "value=nan")


class _FailingLinearSolver:
    def __init__(self):
        self.n_calls = 0

    def solve(self, A, b):
        self.n_calls += 1
        raise LinearSolverFailure("特異")


A_SPD = [[4.0, 1.0], [1.0, 3.0]]
B = [1.0, 2.0]


# ====================================================================
# Newton
# ====================================================================


class TestNewtonSolver:
    def test_quadratic_one_iteration(self):
        """SPD 二次形式は 1 反復で収束."""
        problem = _QuadraticProblem(A_SPD, B)
        solver = NewtonSolver()
        solver.init(np.zeros(2))
        x, info = solver.minimize(problem, np.zeros(2))
        assert info.status == MinimizerStatus.CONVERGED
        assert info.iterations == 1
        assert info.direction_counts == {"newton": 1}
        np.testing.assert_allclose(x, problem.solution, rtol=1e-12)

    def test_idempotent_at_minimum(self):
        """最小点から開始すれば反復ゼロで収束."""
        problem = _QuadraticProblem(A_SPD, B)
        x_star = problem.solution
        x, info = NewtonSolver().minimize(problem, x_star)
        assert info.converged
        assert info.iterations == 0
        np.testing.assert_array_equal(x, x_star)

    def test_does_not_modify_input(self):
        problem = _QuadraticProblem(A_SPD, B)
        x0 = np.zeros(2)
        NewtonSolver().minimize(problem, x0)
        np.testing.assert_array_equal(x0, 0.0)

    def test_all_linear_solves_fail(self):
        """全ての線形求解が失敗した場合のみ LinearSolverFailure."""
        linear = _FailingLinearSolver()
        cfg = NonlinearSolverConfig(regularization_max_tries=2)
        solver = NewtonSolver(cfg, linear)
        with pytest.raises(LinearSolverFailure):
            solver.minimize(_QuadraticProblem(A_SPD, B), np.zeros(2))
        assert linear.n_calls == 3

    def test_indefinite_hessian_regularized(self):
        """不定ヘッセでは対角シフトで降下方向を作り x1 = ±1 の谷へ."""
        cfg = NonlinearSolverConfig(regularization_max_tries=10)
        x, info = NewtonSolver(cfg).minimize(_DoubleWell(), np.array([0.0, 0.1]))
        assert info.converged
        assert info.direction_counts.get("regularized_newton", 0) >= 1
        assert abs(x[1]) == pytest.approx(1.0, abs=1e-6)
        assert x[0] == pytest.approx(0.0, abs=1e-8)

    def test_line_search_failure_reported(self):
        problem = _QuadraticProblem(A_SPD, B, oracle=lambda x0, x1: False)
        x, info = NewtonSolver().minimize(problem, np.zeros(2))
        assert info.status == MinimizerStatus.LINE_SEARCH_FAILED
        np.testing.assert_array_equal(x, 0.0)

    def test_non_finite_start(self):
        x, info = NewtonSolver().minimize(_BrokenProblem(A_SPD, B), np.zeros(2))
        assert info.status == MinimizerStatus.NON_FINITE
        assert "broken" in info.message

    def test_max_iterations(self):
        """Oracle が 1 反復あたりの移動量を制限すると反復上限に達する."""
        cfg = NonlinearSolverConfig(max_iterations=2)
        problem = _QuadraticProblem(np.eye(2), [10.0, 0.0], oracle=lambda x0, x1: abs(x1[0] - x0[0]) <= 1.0)
        x, info = NewtonSolver(cfg).minimize(problem, np.zeros(2))
        assert info.status == MinimizerStatus.MAX_ITERATIONS
        assert info.iterations == 2
        assert 0.0 < x[0] < 10.0


# ====================================================================
# L-BFGS
# ====================================================================


class TestLBFGSSolver:
    def test_quadratic_converges(self):
        problem = _QuadraticProblem(A_SPD, B)
        solver = LBFGSSolver()
        solver.init(np.zeros(2))
        x, info = solver.minimize(problem, np.zeros(2))
        assert info.converged
        np.testing.assert_allclose(x, problem.solution, rtol=1e-6)
        assert info.direction_counts["gradient_descent"] >= 1

    def test_idempotent_at_minimum(self):
        problem = _QuadraticProblem(A_SPD, B)
        x, info = LBFGSSolver().minimize(problem, problem.solution)
        assert info.converged
        assert info.iterations == 0

    def test_init_keeps_buffers(self):
        """同形状なら履歴バッファを再確保しない."""
        solver = LBFGSSolver(NonlinearSolverConfig(lbfgs_history=4))
        solver.init(np.zeros(3))
        buf = solver._s
        assert buf.shape == (4, 3)
        solver.init(np.ones(3))
        assert solver._s is buf
        solver.init(np.zeros(5))
        assert solver._s is not buf
        assert solver._s.shape == (4, 5)


class TestMakeMinimizer:
    def test_selection(self):
        assert isinstance(make_minimizer(NonlinearSolverConfig()), NewtonSolver)
        assert isinstance(make_minimizer(NonlinearSolverConfig(solver="lbfgs")), LBFGSSolver)

    def test_without_hessian_uses_lbfgs(self):
        assert isinstance(make_minimizer(NonlinearSolverConfig(), has_hessian=False), LBFGSSolver)
