"""ステップオーケストレータの統合テスト.

- 2 円板の自由落下（接触なし・摩擦なし）: AL 1 回, ラギングなし
- 固定壁上の円板（摩擦 μ = 0.5, 静的荷重）: ラギングが 2 反復以上で収束
- 失敗時の状態保持と外部リカバリ
"""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from ipc_fem import (
    AugmentedLagrangianConfig,
    ContactConfig,
    DiagnosticsSink,
    DirichletConstraint,
    LaggingStatus,
    MaterialConfig,
    SimulationConfig,
    StepOrchestrator,
    StepStatus,
    TimeConfig,
    disk_mesh,
    init_forms,
    merge_meshes,
    rectangle_mesh,
)
from ipc_fem.core.results import MinimizeInfo, MinimizerStatus
from ipc_fem.forms.base import Form
from ipc_fem.solver.minimizer import NewtonSolver

DHAT = 1e-3
RADIUS = 0.5
N_SEGMENTS = 16

# ====================================================================
# ヘルパー
# ====================================================================


def _free_fall_config(time_steps=3, **contact):
    return SimulationConfig(
        contact=ContactConfig(enabled=True, dhat=DHAT, barrier_stiffness=1e4, **contact),
        time=TimeConfig(dynamic=True, time_steps=time_steps, dt=0.01),
        material=MaterialConfig(E=1e4, nu=0.3, density=1.0),
        body_acceleration=(0.0, -9.8),
    )


def _two_disks():
    return merge_meshes(
        disk_mesh((0.0, 0.0), RADIUS, 8),
        disk_mesh((3.0, 0.0), RADIUS, 8),
    )


def _disk_on_wall(gap=0.5 * DHAT):
    """下端エッジが水平な円板を固定壁（ボディ 1）の上 gap に置く."""
    cy = RADIUS * np.cos(np.pi / N_SEGMENTS) + gap
    disk = disk_mesh((0.0, cy), RADIUS, N_SEGMENTS)
    wall = rectangle_mesh((-2.0, -0.2), (2.0, 0.0))
    return merge_meshes(disk, wall)


def _disk_bottom_y(orch):
    mesh = orch.solve_data.mesh
    V = mesh.vertices(orch.x)
    return float(V[mesh.body_ids == 0, 1].min())


class _FlakyMinimizer:
    """最初の n_fail 回は反復上限で失敗し、以降は Newton に委ねる."""

    def __init__(self, n_fail):
        self.n_fail = n_fail
        self.newton = NewtonSolver()

    def init(self, x):
        self.newton.init(x)

    def minimize(self, problem, x0):
        if self.n_fail > 0:
            self.n_fail -= 1
            return np.array(x0, copy=True), MinimizeInfo(status=MinimizerStatus.MAX_ITERATIONS)
        return self.newton.minimize(problem, x0)


class _FrozenMinimizer:
    def init(self, x):
        pass

    def minimize(self, problem, x0):
        return np.array(x0, copy=True), MinimizeInfo(status=MinimizerStatus.CONVERGED, grad_norm=0.0)


class _QuarterStepMinimizer:
    """重み付き求解では拘束自由度を目標へ 1/4 だけ近づけ、呼び出し時の (重み, 乗数) を記録する."""

    def __init__(self):
        self.calls = []

    def init(self, x):
        pass

    def minimize(self, problem, x0):
        self.calls.append((problem.al_weight, problem.multipliers.copy()))
        x = np.array(x0, copy=True)
        if problem.al_weight > 0.0:
            c = problem.constraint
            x[c.dofs] += 0.25 * (c.target - x[c.dofs])
        return x, MinimizeInfo(status=MinimizerStatus.CONVERGED, grad_norm=0.0)


class _StepLimit(Form):
    """‖x1 - x0‖_∞ > limit のステップを拒否する."""

    name = "step_limit"

    def __init__(self, limit):
        super().__init__()
        self.limit = limit

    def value_unweighted(self, x):
        return 0.0

    def first_derivative_unweighted(self, x):
        return np.zeros(len(x))

    def second_derivative_unweighted(self, x):
        return sp.csr_matrix((len(x), len(x)))

    def is_step_valid(self, x0, x1):
        return float(np.max(np.abs(x1 - x0))) <= self.limit


# ====================================================================
# 接触なしの自由落下
# ====================================================================


class TestFreeFall:
    """離れた 2 円板の重力落下."""

    def test_single_al_pass_without_lagging(self):
        sink = DiagnosticsSink()
        config = _free_fall_config()
        orch = StepOrchestrator(init_forms(_two_disks(), config), config, diagnostics=sink)
        orch.init()
        res = orch.run()

        assert res.success
        assert res.n_steps_completed == 3
        assert len(res.history) == 4
        for step in res.steps:
            assert step.status == StepStatus.ACCEPTED
            assert step.lagging.status == LaggingStatus.DISABLED
            assert step.lagging.iterations == 1
            assert [r.kind for r in step.diagnostics.solver_info] == ["rc"]
            assert step.diagnostics.weights == []
        assert sink.weight_history() == []

    def test_rigid_fall_implicit_euler(self):
        """剛体並進: 後退 Euler で y 変位 = (1 + 2 + 3) Δt² g."""
        config = _free_fall_config()
        orch = StepOrchestrator(init_forms(_two_disks(), config), config)
        orch.init()
        res = orch.run()
        u = res.x.reshape(-1, 2)
        np.testing.assert_allclose(u[:, 0], 0.0, atol=1e-9)
        np.testing.assert_allclose(u[:, 1], -6.0 * 0.01**2 * 9.8, rtol=1e-6)

    def test_no_penetration(self):
        sink = DiagnosticsSink()
        config = _free_fall_config()
        orch = StepOrchestrator(init_forms(_two_disks(), config), config, diagnostics=sink)
        orch.init()
        orch.run()
        cf = orch.solve_data.contact_form
        assert cf.is_intersection_free(orch.x)
        assert all(s.min_distance > 0.0 for s in sink.steps)

    def test_energy_records(self):
        sink = DiagnosticsSink()
        config = _free_fall_config(time_steps=2)
        orch = StepOrchestrator(init_forms(_two_disks(), config), config, diagnostics=sink)
        orch.init()
        orch.run()
        assert [e.step for e in sink.energies] == [1, 2]
        rec = sink.energies[-1]
        assert rec.contact == 0.0
        assert rec.inertia > 0.0
        assert rec.body < 0.0
        assert rec.total == pytest.approx(rec.elastic + rec.body + rec.inertia + rec.contact)

    def test_adaptive_barrier_stiffness_not_below_config(self):
        config = _free_fall_config(time_steps=1, adaptive_barrier_stiffness=True)
        orch = StepOrchestrator(init_forms(_two_disks(), config), config)
        orch.init()
        res = orch.run()
        assert res.success
        assert orch.solve_data.contact_form.barrier_stiffness >= 1e4

    def test_progress_output(self, capsys):
        config = _free_fall_config(time_steps=1)
        config.show_progress = True
        orch = StepOrchestrator(init_forms(_two_disks(), config), config)
        orch.init()
        orch.solve(1)
        assert "Step 1/1" in capsys.readouterr().out


# ====================================================================
# 摩擦接触
# ====================================================================


class TestDiskOnWallFriction:
    """固定壁に接する円板（μ = 0.5, 静的荷重）.

    接線/法線荷重比 0.1 は μ と転倒限界（底辺半幅 / 重心高さ ≈ 0.2）の両方より小さい。
    """

    def _run(self, **contact):
        sink = DiagnosticsSink()
        config = SimulationConfig(
            contact=ContactConfig(
                enabled=True,
                dhat=DHAT,
                barrier_stiffness=1e4,
                friction_coefficient=0.5,
                epsv=1e-3,
                friction_iterations=10,
                **contact,
            ),
            time=TimeConfig(dynamic=False, time_steps=1),
            material=MaterialConfig(E=1e4, nu=0.3, density=1.0),
            body_acceleration=(0.1, -1.0),
        )
        orch = StepOrchestrator(
            init_forms(_disk_on_wall(), config, fixed_bodies=[1]), config, diagnostics=sink
        )
        orch.init()
        return orch, orch.solve(1), sink

    def test_lagging_converges_after_several_iterations(self):
        orch, res, sink = self._run()
        assert res.success
        assert res.lagging.status == LaggingStatus.CONVERGED
        assert 2 <= res.lagging.iterations <= 10
        assert res.lagging.grad_norm <= 1e-2
        assert sink.steps[0].lagging_status == "converged"

    def test_wall_fixed_and_contact_kept(self):
        orch, res, _ = self._run()
        mesh = orch.solve_data.mesh
        u = res.x.reshape(-1, 2)
        np.testing.assert_array_equal(u[mesh.body_ids == 1], 0.0)
        bottom = _disk_bottom_y(orch)
        assert 0.0 < bottom < DHAT

    def test_friction_holds_disk(self):
        """接触節点の接線変位は平滑化幅 epsv 程度に留まる（滑り・転倒なし）."""
        orch, res, _ = self._run()
        mesh = orch.solve_data.mesh
        disk = mesh.body_ids == 0
        V = mesh.vertices(res.x)
        u = res.x.reshape(-1, 2)
        in_contact = disk & (V[:, 1] < DHAT)
        assert in_contact.sum() == 2
        assert np.abs(u[in_contact, 0]).max() < 1e-3
        assert np.abs(u[disk, 0]).max() < 1e-2

    def test_solver_records_per_lagging_iteration(self):
        orch, res, sink = self._run()
        records = sink.records_for_step(1)
        assert len(records) == res.lagging.iterations
        assert all(r.kind == "rc" for r in records)
        assert [r.lag_iteration for r in records] == list(range(res.lagging.iterations))


# ====================================================================
# 初期化・ステップ順序
# ====================================================================


class TestInitAndOrdering:
    def test_initial_intersection_rejected(self):
        config = _free_fall_config()
        mesh = merge_meshes(disk_mesh((0.0, 0.0), RADIUS, 8), disk_mesh((0.6, 0.0), RADIUS, 8))
        orch = StepOrchestrator(init_forms(mesh, config), config)
        with pytest.raises(ValueError):
            orch.init()

    def test_bad_shape(self):
        config = _free_fall_config()
        orch = StepOrchestrator(init_forms(_two_disks(), config), config)
        with pytest.raises(ValueError):
            orch.init(np.zeros(3))

    def test_solve_requires_init(self):
        config = _free_fall_config()
        orch = StepOrchestrator(init_forms(_two_disks(), config), config)
        with pytest.raises(RuntimeError):
            orch.solve(1)

    def test_steps_in_order(self):
        config = _free_fall_config()
        orch = StepOrchestrator(init_forms(_two_disks(), config), config)
        orch.init()
        with pytest.raises(ValueError):
            orch.solve(2)
        assert orch.solve(1).success
        with pytest.raises(ValueError):
            orch.solve(1)


# ====================================================================
# 失敗と外部リカバリ
# ====================================================================


class TestFailureHandling:
    def _orchestrator(self, minimizer, **kwargs):
        config = _free_fall_config(time_steps=2)
        orch = StepOrchestrator(
            init_forms(disk_mesh((0.0, 0.0), RADIUS, 8), config), config, minimizer=minimizer, **kwargs
        )
        orch.init()
        return orch

    def test_failed_step_keeps_state(self):
        sink = DiagnosticsSink()
        orch = self._orchestrator(_FlakyMinimizer(100), diagnostics=sink)
        x_before = orch.x.copy()
        res = orch.solve(1)
        assert not res.success
        assert res.status == StepStatus.INNER_FAILED
        assert "max_iterations" in res.message
        np.testing.assert_array_equal(res.x, x_before)
        assert orch.step == 0
        assert not sink.steps[-1].success
        assert sink.energies == []

    def test_run_stops_at_failure(self):
        orch = self._orchestrator(_FlakyMinimizer(100))
        res = orch.run()
        assert not res.success
        assert res.n_steps_completed == 0
        assert len(res.steps) == 1
        assert len(res.history) == 1

    def test_remesher_retry(self):
        calls = []

        def remesher(orch, step_index):
            calls.append(step_index)
            return True

        orch = self._orchestrator(_FlakyMinimizer(1), remesher=remesher)
        res = orch.solve(1)
        assert calls == [1]
        assert res.success
        assert res.retried
        assert orch.step == 1

    def test_remesher_declines(self):
        calls = []

        def remesher(orch, step_index):
            calls.append(step_index)
            return False

        orch = self._orchestrator(_FlakyMinimizer(100), remesher=remesher)
        res = orch.solve(1)
        assert calls == [1]
        assert not res.success
        assert not res.retried

    def test_constraint_escalation_restores_multipliers(self):
        """射影が常に拒否される拘束: 重み上限で失敗し乗数は開始時の値に戻る."""
        config = _free_fall_config(time_steps=1)
        config.augmented_lagrangian = AugmentedLagrangianConfig(
            initial_weight=1.0, scaling=2.0, max_weight=4.0, multiplier_policy="carry"
        )
        solve_data = init_forms(
            disk_mesh((0.0, 0.0), RADIUS, 8),
            config,
            dirichlet=DirichletConstraint([0], 1.0),
            extra_forms=[_StepLimit(0.6)],
        )
        orch = StepOrchestrator(solve_data, config, minimizer=_FrozenMinimizer())
        orch.init()
        res = orch.solve(1)
        assert not res.success
        assert res.status == StepStatus.CONSTRAINT_ESCALATION
        assert res.lagging is None
        np.testing.assert_array_equal(orch.problem.multipliers, [0.0])
        assert res.diagnostics.weights == [1.0, 2.0, 4.0]


# ====================================================================
# ステップ間の乗数の扱い
# ====================================================================


class TestMultiplierPolicy:
    """円板全体の x 方向を目標 2t へ剛体移動させる拘束（静的 2 ステップ, Oracle は Δ ≤ 0.6）.

    各ステップ: 射影 1.0 は不許可 → 重み 1 で 1/4 前進（射影 0.75 で不許可, λ += 0.75）
    → 重み 2 で 1/4 前進（射影 0.5625 で許可）→ ハード拘束解。
    """

    def _run(self, policy):
        config = SimulationConfig(
            time=TimeConfig(time_steps=2),
            augmented_lagrangian=AugmentedLagrangianConfig(
                initial_weight=1.0, scaling=2.0, max_weight=1e8, multiplier_policy=policy
            ),
        )
        mesh = disk_mesh((0.0, 0.0), RADIUS, 8)
        x_dofs = mesh.body_dofs(0)[0::2]
        solve_data = init_forms(
            mesh,
            config,
            dirichlet=DirichletConstraint(x_dofs, lambda t: 2.0 * t),
            extra_forms=[_StepLimit(0.6)],
        )
        minimizer = _QuarterStepMinimizer()
        orch = StepOrchestrator(solve_data, config, minimizer=minimizer)
        orch.init()
        res = orch.run()
        return orch, res, minimizer, x_dofs

    def test_both_steps_need_penalized_solves(self):
        orch, res, minimizer, x_dofs = self._run("reset")
        assert res.success
        assert [w for w, _ in minimizer.calls] == [1.0, 2.0, 0.0, 1.0, 2.0, 0.0]
        for step in res.steps:
            assert step.diagnostics.weights == [1.0, 2.0]
        np.testing.assert_allclose(res.x[x_dofs], 2.0)

    def test_reset_starts_each_step_from_zero(self):
        orch, res, minimizer, x_dofs = self._run("reset")
        n = len(x_dofs)
        np.testing.assert_array_equal(minimizer.calls[0][1], np.zeros(n))
        np.testing.assert_allclose(minimizer.calls[1][1], 0.75)
        np.testing.assert_array_equal(minimizer.calls[3][1], np.zeros(n))
        np.testing.assert_allclose(orch.problem.multipliers, 0.75)

    def test_carry_keeps_previous_step_multipliers(self):
        orch, res, minimizer, x_dofs = self._run("carry")
        np.testing.assert_allclose(minimizer.calls[2][1], 0.75)
        np.testing.assert_allclose(minimizer.calls[3][1], 0.75)
        np.testing.assert_allclose(orch.problem.multipliers, 1.5)


# ====================================================================
# Rayleigh 減衰
# ====================================================================


class TestRayleighDamping:
    """接触・外力なしで一様速度を与えた円板（後退 Euler）."""

    def _run(self, alpha=0.0, beta=0.0, time_steps=3):
        config = SimulationConfig(
            time=TimeConfig(
                dynamic=True, time_steps=time_steps, dt=0.01, damping_alpha=alpha, damping_beta=beta
            ),
            material=MaterialConfig(E=1e4, nu=0.3, density=1.0),
        )
        solve_data = init_forms(disk_mesh((0.0, 0.0), RADIUS, 8), config)
        orch = StepOrchestrator(solve_data, config)
        v0 = np.tile([1.0, 0.0], solve_data.mesh.n_vertices)
        orch.init(v0=v0)
        return orch, orch.run()

    def test_mass_proportional_decay(self):
        """M(v - v_n)/Δt + αM v = 0 → v_n = (1 + αΔt)^{-n}."""
        orch, res = self._run(alpha=2.0)
        assert res.success
        v = orch.solve_data.time_integrator.v_prev.reshape(-1, 2)
        np.testing.assert_allclose(v[:, 0], 1.02**-3, rtol=1e-8)
        np.testing.assert_allclose(v[:, 1], 0.0, atol=1e-10)
        expected_ux = 0.01 * sum(1.02**-k for k in (1, 2, 3))
        np.testing.assert_allclose(res.x.reshape(-1, 2)[:, 0], expected_ux, rtol=1e-8)

    def test_damping_energy_recorded(self):
        orch, res = self._run(alpha=2.0, time_steps=1)
        sink = orch.diagnostics
        assert orch.solve_data.damping_form is not None
        assert sink.energies[-1].damping > 0.0

    def test_stiffness_proportional_keeps_rigid_motion(self):
        """βK は剛体並進を減衰させない."""
        orch, res = self._run(beta=0.1)
        v = orch.solve_data.time_integrator.v_prev.reshape(-1, 2)
        np.testing.assert_allclose(v[:, 0], 1.0, rtol=1e-8)

    def test_disabled_without_coefficients(self):
        orch, _ = self._run()
        assert orch.solve_data.damping_form is None


# ====================================================================
# 動的接触（長め）
# ====================================================================


@pytest.mark.slow
class TestDynamicContact:
    def test_disk_settles_on_wall(self):
        """壁に近接した円板の重力下の動解析で貫通・交差が起きない."""
        sink = DiagnosticsSink()
        config = SimulationConfig(
            contact=ContactConfig(enabled=True, dhat=DHAT, barrier_stiffness=1e4),
            time=TimeConfig(dynamic=True, time_steps=5, dt=0.01),
            material=MaterialConfig(E=1e4, nu=0.3, density=1.0),
            body_acceleration=(0.0, -9.8),
        )
        orch = StepOrchestrator(
            init_forms(_disk_on_wall(), config, fixed_bodies=[1]), config, diagnostics=sink
        )
        orch.init()
        res = orch.run()
        assert res.success
        assert res.n_steps_completed == 5
        assert all(s.min_distance > 0.0 for s in sink.steps)
        for x in res.history:
            assert orch.solve_data.contact_form.is_intersection_free(x)
        assert _disk_bottom_y(orch) > 0.0
