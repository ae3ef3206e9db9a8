"""時間・荷重ステップのオーケストレータ.

各ステップ i:
    1. t_i でフォームと拘束目標を更新（update_quantities）
    2. 乗数ポリシー（reset / carry）を適用
    3. 摩擦ラギング → AL → 最小化
    4. 受理判定（有限・非反転・非交差・衝突なし）
    5. 確定: 時間積分の更新, finish_step, エネルギー・統計の記録, バリア剛性の更新

失敗時は remesher が与えられていれば一度だけ呼び、True なら同じステップを再試行する。
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import numpy as np

from ipc_fem.config import SimulationConfig
from ipc_fem.contact.barrier import initial_barrier_stiffness, update_barrier_stiffness
from ipc_fem.core.diagnostics import (
    DiagnosticsSink,
    EnergyRecord,
    SolverInfoRecord,
    StepDiagnostics,
    StepStats,
)
from ipc_fem.core.errors import (
    ConstraintEscalationExhausted,
    FormEvaluationError,
    LinearSolverFailure,
)
from ipc_fem.core.results import (
    LaggingResult,
    LaggingStatus,
    MinimizeInfo,
    SimulationResult,
    StepResult,
    StepStatus,
)
from ipc_fem.solve_data import SolveData
from ipc_fem.solver.al_solver import ALSolver
from ipc_fem.solver.lagging import FrictionLaggingController
from ipc_fem.solver.linear import LinearSolver
from ipc_fem.solver.minimizer import Minimizer, make_minimizer

logger = logging.getLogger(__name__)

_ENERGY_FIELDS = (
    "elastic",
    "body",
    "inertia",
    "damping",
    "contact",
    "friction",
    "al_lagrangian",
    "al_penalty",
)


class StepOrchestrator:
    """ステップ列の実行と確定状態の管理.

    Args:
        solve_data: init_forms で組み立てた問題
        config: 解析設定
        diagnostics: 診断シンク（None なら新規作成）
        remesher: 失敗時に呼ぶ外部リカバリ f(orchestrator, step_index) -> 再試行するか
        minimizer: 最小化器（None なら config.solver から作る）

    Attributes:
        x: 最後に確定した配置
        step: 最後に確定したステップ番号（init 直後は 0）
    """

    def __init__(
        self,
        solve_data: SolveData,
        config: SimulationConfig,
        *,
        diagnostics: DiagnosticsSink | None = None,
        remesher: Callable[[StepOrchestrator, int], bool] | None = None,
        minimizer: Minimizer | None = None,
    ) -> None:
        self.solve_data = solve_data
        self.problem = solve_data.problem
        self.config = config
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsSink()
        self.remesher = remesher
        self.show_progress = config.show_progress

        if minimizer is None:
            lc = config.linear_solver
            linear = LinearSolver(lc.mode, iterative_tol=lc.iterative_tol, ilu_drop_tol=lc.ilu_drop_tol)
            minimizer = make_minimizer(config.solver, linear, has_hessian=self.problem.has_hessian())
        self.minimizer = minimizer

        cc = config.contact
        self._adaptive = cc.enabled and cc.adaptive_barrier_stiffness
        self.al_solver = ALSolver(
            minimizer,
            config.augmented_lagrangian,
            update_barrier_stiffness=self._update_barrier_stiffness if self._adaptive else None,
            post_subsolve=self._post_subsolve,
            show_progress=self.show_progress,
        )
        self.lagging = FrictionLaggingController(
            self.al_solver,
            max_iterations=cc.friction_iterations,
            convergence_tol=cc.friction_convergence_tol,
            stagnation_tol=cc.lagging_stagnation_tol,
            diagnostics=self.diagnostics,
            show_progress=self.show_progress,
        )

        self.x: np.ndarray | None = None
        self.step = 0
        self.prev_min_distance = np.inf
        self._kappa_floor = cc.barrier_stiffness
        self._kappa_max = cc.max_barrier_stiffness
        self._current: StepDiagnostics | None = None

    # ----------------------------------------------------------------
    # 初期化
    # ----------------------------------------------------------------

    @property
    def time_steps(self) -> int:
        return self.config.time.time_steps

    def init(
        self,
        x0: np.ndarray | None = None,
        v0: np.ndarray | None = None,
        a0: np.ndarray | None = None,
    ) -> None:
        """初期配置を設定する.

        Args:
            x0: (ndof,) 初期変位（None でゼロ）
            v0: (ndof,) 初期速度（動解析のみ）
            a0: (ndof,) 初期加速度（動解析のみ）

        Raises:
            ValueError: 初期配置で接触面が交差・接触している
        """
        ndof = self.problem.ndof
        x0 = np.zeros(ndof) if x0 is None else np.asarray(x0, dtype=float)
        if x0.shape != (ndof,):
            raise ValueError(f"x0 の形状が不正: {x0.shape} != ({ndof},)")
        if not self.problem.is_intersection_free(x0):
            raise ValueError("初期配置に交差がある")
        cf = self.solve_data.contact_form
        if cf is not None:
            d0 = cf.compute_min_distance(x0)
            if d0 <= 0.0:
                raise ValueError(f"初期配置で接触距離が非正: {d0:.3e}")
            self.prev_min_distance = d0

        integrator = self.solve_data.time_integrator
        if integrator is not None:
            v0 = np.zeros(ndof) if v0 is None else v0
            a0 = np.zeros(ndof) if a0 is None else a0
            integrator.init(x0, v0, a0, float(self.config.time.dt))

        self.x = x0.copy()
        self.step = 0
        if self._adaptive:
            self._update_barrier_stiffness(self.x)

    # ----------------------------------------------------------------
    # バリア剛性
    # ----------------------------------------------------------------

    def _update_barrier_stiffness(self, x: np.ndarray) -> None:
        """勾配の釣り合いから κ を再推定する（下限はステップ間で調整した値）."""
        cf = self.solve_data.contact_form
        cc = self.config.contact
        grad_energy = np.zeros(self.problem.ndof)
        for f in self.solve_data.non_contact_forms():
            grad_energy += f.first_derivative(x)
        mass = self.solve_data.vertex_mass[cf.collision_vertices]
        kappa, kappa_max = initial_barrier_stiffness(
            self.solve_data.mesh.bbox_diagonal(),
            cf.dhat,
            float(mass.mean()) if len(mass) else 1.0,
            grad_energy,
            cf.barrier_gradient(x),
            lower_bound=self._kappa_floor,
            max_barrier_stiffness=cc.max_barrier_stiffness,
        )
        cf.barrier_stiffness = kappa
        self._kappa_max = kappa_max

    def _adapt_after_step(self, x: np.ndarray) -> float:
        """確定配置の最小距離を測り、必要ならステップ間で κ を更新する."""
        cf = self.solve_data.contact_form
        if cf is None:
            return np.inf
        min_distance = cf.compute_min_distance(x)
        if self._adaptive:
            cc = self.config.contact
            kappa = update_barrier_stiffness(
                self.prev_min_distance,
                min_distance,
                self._kappa_max,
                cf.barrier_stiffness,
                self.solve_data.mesh.bbox_diagonal(),
                dhat_epsilon_scale=cc.dhat_epsilon_scale,
            )
            if not min_distance < cf.dhat:
                # 接触が離れたら基準値へ戻していく
                kappa = max(cc.barrier_stiffness, 0.5 * kappa)
            self._kappa_floor = kappa
            cf.barrier_stiffness = kappa
        self.prev_min_distance = min_distance
        return min_distance

    # ----------------------------------------------------------------
    # 診断
    # ----------------------------------------------------------------

    def _post_subsolve(self, weight: float, info: MinimizeInfo) -> None:
        if self._current is None:
            return
        record = SolverInfoRecord(
            kind="al" if weight > 0.0 else "rc",
            step=self._current.step,
            lag_iteration=self.lagging.lag_iteration,
            weight=weight,
            iterations=info.iterations,
            grad_norm=info.grad_norm,
            energy=info.energy,
            status=info.status.value,
            time=info.time,
        )
        self._current.solver_info.append(record)
        self.diagnostics.record_solver_info(record)

    def _energy_record(self, step_index: int, t: float, x: np.ndarray) -> EnergyRecord:
        breakdown = self.problem.energy_breakdown(x)
        values = {name: float(breakdown.get(name, 0.0)) for name in _ENERGY_FIELDS}
        return EnergyRecord(step=step_index, t=t, total=float(sum(breakdown.values())), **values)

    # ----------------------------------------------------------------
    # ステップ
    # ----------------------------------------------------------------

    def _check_acceptable(self, x: np.ndarray) -> str:
        """受理できなければ理由を返す（受理なら空文字）."""
        if not np.all(np.isfinite(x)):
            return "配置が非有限"
        try:
            energy = self.problem.value(x)
            grad = self.problem.gradient(x)
        except FormEvaluationError as exc:
            return str(exc)
        if not (np.isfinite(energy) and np.all(np.isfinite(grad))):
            return "エネルギーまたは勾配が非有限"
        if not self.problem.is_step_valid(x, x):
            return "反転要素または接触がある"
        if not self.problem.is_intersection_free(x):
            return "接触面が交差している"
        return ""

    def _attempt(self, step_index: int, remesh_time: float = 0.0) -> StepResult:
        t = self.config.time.time_at(step_index)
        diag = StepDiagnostics(step=step_index)
        self._current = diag
        cf = self.solve_data.contact_form
        saved_multipliers = self.problem.multipliers.copy()
        saved_kappa = cf.barrier_stiffness if cf is not None else 0.0
        t_start = time.time()

        self.problem.update_quantities(t, self.x)
        if self.config.augmented_lagrangian.multiplier_policy == "reset":
            self.problem.reset_lagrangian()

        lagging: LaggingResult | None = None
        status = StepStatus.ACCEPTED
        message = ""
        try:
            lagging = self.lagging.solve(self.problem, self.x)
        except ConstraintEscalationExhausted as exc:
            status, message = StepStatus.CONSTRAINT_ESCALATION, str(exc)
        except LinearSolverFailure as exc:
            status, message = StepStatus.LINEAR_SOLVER_FAILED, str(exc)
        else:
            if lagging.status == LaggingStatus.INNER_FAILED:
                info = lagging.al_results[-1].info
                status = StepStatus.INNER_FAILED
                message = f"内部最小化が収束せず: {info.status.value if info else 'unknown'}"
            else:
                message = self._check_acceptable(lagging.x)
                if message:
                    status = StepStatus.REJECTED

        forward_time = time.time() - t_start
        success = status == StepStatus.ACCEPTED
        if success:
            x_new = np.array(lagging.x, dtype=float, copy=True)
            # 時間積分を進める前の増分ポテンシャルで評価
            diag.energy = self._energy_record(step_index, t, x_new)
            self.diagnostics.record_energy(diag.energy)
            if self.solve_data.time_integrator is not None:
                self.solve_data.time_integrator.update(x_new)
            self.problem.finish_step(x_new)
            used_kappa = cf.barrier_stiffness if cf is not None else 0.0
            min_distance = self._adapt_after_step(x_new)
            self.x = x_new
            self.step = step_index
        else:
            if self.problem.has_constraints:
                self.problem.al_lagrangian.multipliers = saved_multipliers
            if cf is not None:
                cf.barrier_stiffness = saved_kappa
            used_kappa = saved_kappa
            min_distance = self.prev_min_distance
            logger.error("Step %d (t = %.4g) が失敗: %s", step_index, t, message)

        diag.stats = StepStats(
            step=step_index,
            t=t,
            success=success,
            forward_time=forward_time,
            remesh_time=remesh_time,
            lagging_iterations=lagging.iterations if lagging is not None else 0,
            lagging_status=lagging.status.value if lagging is not None else "",
            barrier_stiffness=used_kappa,
            min_distance=min_distance,
            message=message,
        )
        self.diagnostics.record_step(diag.stats)
        self._current = None

        if self.show_progress:
            lag = f"{lagging.status.value} ({lagging.iterations})" if lagging is not None else "-"
            print(
                f"Step {step_index}/{self.time_steps}: t = {t:.4g}, {status.value}, "
                f"lagging {lag}, {forward_time:.3f}s"
            )
        return StepResult(
            success=success,
            x=self.x.copy(),
            diagnostics=diag,
            status=status,
            message=message,
            lagging=lagging,
        )

    def solve(self, step_index: int) -> StepResult:
        """ステップ step_index を解く（直前のステップが確定済みであること）.

        Args:
            step_index: 1 始まりのステップ番号

        Returns:
            StepResult（失敗時の x は直前の確定配置）
        """
        if self.x is None:
            raise RuntimeError("init() が呼ばれていない")
        if step_index != self.step + 1:
            raise ValueError(f"ステップは順番に解く: {step_index} (確定済み {self.step})")

        result = self._attempt(step_index)
        if result.success or self.remesher is None:
            return result

        t0 = time.time()
        retry = self.remesher(self, step_index)
        remesh_time = time.time() - t0
        if not retry:
            result.diagnostics.stats.remesh_time = remesh_time
            return result
        logger.info("Step %d を外部リカバリ後に再試行", step_index)
        result = self._attempt(step_index, remesh_time)
        result.retried = True
        return result

    def run(self, n_steps: int | None = None) -> SimulationResult:
        """未確定のステップを順に解く（失敗したステップで停止）.

        Args:
            n_steps: 最終ステップ番号（None で config.time.time_steps）
        """
        if self.x is None:
            self.init()
        n_steps = self.time_steps if n_steps is None else n_steps
        history = [self.x.copy()]
        steps: list[StepResult] = []
        success = True
        for step_index in range(self.step + 1, n_steps + 1):
            result = self.solve(step_index)
            steps.append(result)
            if not result.success:
                success = False
                break
            history.append(result.x)
        return SimulationResult(
            success=success,
            x=self.x.copy(),
            n_steps_completed=self.step,
            history=history,
            steps=steps,
        )
