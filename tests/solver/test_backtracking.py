"""Backtracking line search（Armijo + ステップ妥当性）のテスト."""

from __future__ import annotations

import numpy as np
import pytest

from ipc_fem.core.errors import NonFiniteError
from ipc_fem.solver.line_search import backtracking_line_search


class _Quadratic:
    """E = ½‖x‖²。妥当性判定・定義域・最大ステップを差し替え可能."""

    def __init__(self, oracle=None, domain=None, max_step=1.0):
        self.oracle = oracle
        self.domain = domain
        self.max_step = max_step
        self.n_value = 0

    def value(self, x):
        self.n_value += 1
        if self.domain is not None and not self.domain(x):
            raise NonFiniteError("quadratic", "定義域外")
        return 0.5 * float(x @ x)

    def gradient(self, x):
        return np.array(x, dtype=float)

    def hessian(self, x):
        return None

    def has_hessian(self):
        return False

    def is_step_valid(self, x0, x1):
        return True if self.oracle is None else self.oracle(x0, x1)

    def max_step_size(self, x0, x1):
        return self.max_step

    def solution_changed(self, x):
        pass


X0 = np.array([1.0, 0.0])
DIRECTION = np.array([-1.0, 0.0])


def _search(problem, direction=DIRECTION, **kwargs):
    return backtracking_line_search(problem, X0, direction, 0.5, X0.copy(), **kwargs)


class TestBacktracking:
    def test_full_step_accepted(self):
        res = _search(_Quadratic())
        assert res.success
        assert res.step_size == 1.0
        np.testing.assert_allclose(res.x, [0.0, 0.0])
        assert res.energy == pytest.approx(0.0)
        assert res.n_evaluations == 1
        assert res.n_invalid == 0

    def test_oracle_rejection_halves_step(self):
        """‖Δx‖_∞ > 0.6 を拒否する Oracle: η = 1 を棄却して η = 0.5."""
        problem = _Quadratic(oracle=lambda x0, x1: np.max(np.abs(x1 - x0)) <= 0.6)
        res = _search(problem)
        assert res.success
        assert res.step_size == pytest.approx(0.5)
        np.testing.assert_allclose(res.x, [0.5, 0.0])
        assert res.n_invalid == 1
        assert res.n_evaluations == 2

    def test_always_invalid_fails(self):
        """全試行が拒否されれば失敗し開始配置を返す."""
        problem = _Quadratic(oracle=lambda x0, x1: False)
        res = _search(problem, max_steps=40)
        assert not res.success
        assert res.n_invalid == 40
        np.testing.assert_array_equal(res.x, X0)
        assert res.x is not X0
        assert problem.n_value == 0

    def test_evaluation_error_is_rejection(self):
        """評価例外は棄却として扱い縮小を続ける."""
        problem = _Quadratic(domain=lambda x: np.linalg.norm(x) > 0.3)
        res = _search(problem)
        assert res.success
        assert res.step_size == pytest.approx(0.5)
        assert res.n_invalid == 1

    def test_initial_step_from_max_step_size(self):
        """初期 η は min(1, max_step_size)."""
        res = _search(_Quadratic(max_step=0.25))
        assert res.success
        assert res.step_size == pytest.approx(0.25)
        np.testing.assert_allclose(res.x, [0.75, 0.0])

    def test_explicit_initial_step(self):
        res = _search(_Quadratic(max_step=0.25), initial_step=1.0)
        assert res.step_size == 1.0

    def test_uphill_direction_fails(self):
        """上り方向では Armijo 条件を満たせない."""
        res = _search(_Quadratic(), direction=np.array([1.0, 0.0]), max_steps=20)
        assert not res.success
        assert res.n_invalid == 0
        assert res.n_evaluations == 20
        assert res.energy == 0.5

    def test_min_step_size_stops_early(self):
        problem = _Quadratic(oracle=lambda x0, x1: False)
        res = _search(problem, max_steps=40, min_step_size=0.1)
        # η = 1, 0.5, 0.25, 0.125 の 4 回
        assert res.n_evaluations == 4
        assert not res.success
