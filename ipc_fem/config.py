"""ソルバー設定データクラス.

設定は層ごとの dataclass に分かれ、__post_init__ で値域を検証する。
SimulationConfig.from_dict で入れ子の辞書（JSON 由来等）から構築できる。
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

_SOLVERS = ("newton", "lbfgs")
_LINEAR_MODES = ("direct", "iterative", "auto")
_MULTIPLIER_POLICIES = ("reset", "carry")
_INTEGRATORS = ("implicit_euler", "implicit_newmark")


@dataclass
class NonlinearSolverConfig:
    """非線形最小化の設定.

    Attributes:
        solver: "newton" | "lbfgs"
        grad_norm: 勾配ノルムの収束判定
        max_iterations: 最大反復数
        x_delta: ステップ最大ノルムの収束判定（0 で無効）
        line_search_max_steps: ライン探索の最大縮小回数
        line_search_shrink: ステップ縮小率
        c_armijo: Armijo 条件の係数
        min_step_size: これを下回るステップ長は試さない
        lbfgs_history: L-BFGS の履歴長
        regularization_initial: 正則化 Newton の初期シフト（対角平均に対する比）
        regularization_max_tries: 正則化シフトの最大試行数（毎回 10 倍）
        allow_gradient_descent: 降下方向が得られない場合に最急降下へ退避するか
        show_progress: 反復ごとの進捗表示
    """

    solver: str = "newton"
    grad_norm: float = 1e-8
    max_iterations: int = 500
    x_delta: float = 0.0
    line_search_max_steps: int = 40
    line_search_shrink: float = 0.5
    c_armijo: float = 1e-4
    min_step_size: float = 1e-14
    lbfgs_history: int = 6
    regularization_initial: float = 1e-8
    regularization_max_tries: int = 8
    allow_gradient_descent: bool = True
    show_progress: bool = False

    def __post_init__(self) -> None:
        if self.solver not in _SOLVERS:
            raise ValueError(f"solver は {_SOLVERS} のいずれか: {self.solver}")
        if self.grad_norm <= 0:
            raise ValueError(f"grad_norm は正値: {self.grad_norm}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations は1以上: {self.max_iterations}")
        if self.x_delta < 0:
            raise ValueError(f"x_delta は非負: {self.x_delta}")
        if self.line_search_max_steps < 1:
            raise ValueError(f"line_search_max_steps は1以上: {self.line_search_max_steps}")
        if not (0.0 < self.line_search_shrink < 1.0):
            raise ValueError(f"line_search_shrink は (0, 1): {self.line_search_shrink}")
        if not (0.0 < self.c_armijo < 1.0):
            raise ValueError(f"c_armijo は (0, 1): {self.c_armijo}")
        if self.lbfgs_history < 1:
            raise ValueError(f"lbfgs_history は1以上: {self.lbfgs_history}")


@dataclass
class LinearSolverConfig:
    """線形ソルバーの設定.

    Attributes:
        mode: "direct" | "iterative" | "auto"
        iterative_tol: GMRES 収束判定
        ilu_drop_tol: ILU 前処理の drop tolerance
    """

    mode: str = "direct"
    iterative_tol: float = 1e-10
    ilu_drop_tol: float = 1e-4

    def __post_init__(self) -> None:
        if self.mode not in _LINEAR_MODES:
            raise ValueError(f"mode は {_LINEAR_MODES} のいずれか: {self.mode}")
        if self.iterative_tol <= 0:
            raise ValueError(f"iterative_tol は正値: {self.iterative_tol}")


@dataclass
class AugmentedLagrangianConfig:
    """拘束（Dirichlet）用 Augmented Lagrangian の設定.

    Attributes:
        initial_weight: 各 AL 求解の開始重み
        scaling: 失敗時の重み倍率（> 1）
        max_weight: 重み上限（超えたら ConstraintEscalationExhausted）
        multiplier_policy: "reset"（ステップ毎に乗数をゼロへ）| "carry"（持ち越し）
    """

    initial_weight: float = 1e6
    scaling: float = 2.0
    max_weight: float = 1e11
    multiplier_policy: str = "reset"

    def __post_init__(self) -> None:
        if self.initial_weight <= 0:
            raise ValueError(f"initial_weight は正値: {self.initial_weight}")
        if self.scaling <= 1.0:
            raise ValueError(f"scaling は 1 より大: {self.scaling}")
        if self.max_weight < self.initial_weight:
            raise ValueError(
                f"max_weight は initial_weight 以上: {self.max_weight} < {self.initial_weight}"
            )
        if self.multiplier_policy not in _MULTIPLIER_POLICIES:
            raise ValueError(
                f"multiplier_policy は {_MULTIPLIER_POLICIES} のいずれか: {self.multiplier_policy}"
            )


@dataclass
class ContactConfig:
    """バリア接触・摩擦の設定.

    Attributes:
        enabled: 接触を有効にするか
        dhat: バリア活性距離 d̂
        barrier_stiffness: バリア剛性 κ（adaptive 時は初期値の下限）
        adaptive_barrier_stiffness: 勾配釣り合いによる κ の初期化・ステップ間更新
        max_barrier_stiffness: κ の上限（None で自動: 初期値の 100 倍）
        dhat_epsilon_scale: 接近判定の距離しきい値（バウンディングボックス対角長に対する比）
        friction_coefficient: 摩擦係数 μ（0 で摩擦なし）
        epsv: 静止摩擦の平滑化速度
        friction_iterations: 摩擦ラギングの最大反復数
        friction_convergence_tol: ラギング収束判定（全目的関数の勾配ノルム）
        lagging_stagnation_tol: 配置変化がこれ以下で停滞とみなす
        lagged_regularization_weight: ラギング正則化の重み（0 で無効）
        lagged_regularization_iterations: ラギング正則化を有効にする反復数
        cache_tolerance: 接触候補キャッシュを再利用する配置差の上限
        ccd_tolerance: CCD の辺パラメータ判定の許容幅
    """

    enabled: bool = False
    dhat: float = 1e-3
    barrier_stiffness: float = 1e4
    adaptive_barrier_stiffness: bool = False
    max_barrier_stiffness: float | None = None
    dhat_epsilon_scale: float = 1e-9
    friction_coefficient: float = 0.0
    epsv: float = 1e-3
    friction_iterations: int = 10
    friction_convergence_tol: float = 1e-2
    lagging_stagnation_tol: float = 1e-12
    lagged_regularization_weight: float = 0.0
    lagged_regularization_iterations: int = 0
    cache_tolerance: float = 0.0
    ccd_tolerance: float = 1e-9

    def __post_init__(self) -> None:
        if self.dhat <= 0:
            raise ValueError(f"dhat は正値: {self.dhat}")
        if self.barrier_stiffness <= 0:
            raise ValueError(f"barrier_stiffness は正値: {self.barrier_stiffness}")
        if self.max_barrier_stiffness is not None and self.max_barrier_stiffness < self.barrier_stiffness:
            raise ValueError(
                f"max_barrier_stiffness は barrier_stiffness 以上: {self.max_barrier_stiffness}"
            )
        if self.friction_coefficient < 0:
            raise ValueError(f"friction_coefficient は非負: {self.friction_coefficient}")
        if self.epsv <= 0:
            raise ValueError(f"epsv は正値: {self.epsv}")
        if self.friction_iterations < 1:
            raise ValueError(f"friction_iterations は1以上: {self.friction_iterations}")
        if self.friction_convergence_tol <= 0:
            raise ValueError(f"friction_convergence_tol は正値: {self.friction_convergence_tol}")
        if self.lagged_regularization_weight < 0:
            raise ValueError(
                f"lagged_regularization_weight は非負: {self.lagged_regularization_weight}"
            )
        if self.cache_tolerance < 0:
            raise ValueError(f"cache_tolerance は非負: {self.cache_tolerance}")

    @property
    def has_friction(self) -> bool:
        return self.enabled and self.friction_coefficient > 0.0


@dataclass
class TimeConfig:
    """時間・荷重ステップの設定.

    静的解析（dynamic=False）では t は荷重係数で、t_i = t0 + i * dt、
    dt 未指定なら 1 / time_steps。

    Attributes:
        dynamic: 慣性項を含む動解析か
        time_steps: ステップ数
        dt: 時間刻み（動解析では必須）
        t0: 開始時刻
        integrator: "implicit_euler" | "implicit_newmark"
        newmark_beta: Newmark β
        newmark_gamma: Newmark γ
        damping_alpha: Rayleigh 減衰 α（質量比例, 動解析のみ）
        damping_beta: Rayleigh 減衰 β（剛性比例, 動解析のみ）
    """

    dynamic: bool = False
    time_steps: int = 1
    dt: float | None = None
    t0: float = 0.0
    integrator: str = "implicit_euler"
    newmark_beta: float = 0.25
    newmark_gamma: float = 0.5
    damping_alpha: float = 0.0
    damping_beta: float = 0.0

    def __post_init__(self) -> None:
        if self.time_steps < 1:
            raise ValueError(f"time_steps は1以上: {self.time_steps}")
        if self.dt is None:
            if self.dynamic:
                raise ValueError("動解析では dt の指定が必要")
            self.dt = 1.0 / self.time_steps
        if self.dt <= 0:
            raise ValueError(f"dt は正値: {self.dt}")
        if self.integrator not in _INTEGRATORS:
            raise ValueError(f"integrator は {_INTEGRATORS} のいずれか: {self.integrator}")
        if self.newmark_beta <= 0:
            raise ValueError(f"newmark_beta は正値: {self.newmark_beta}")
        if self.newmark_gamma < 0.5 - 1e-12:
            raise ValueError(f"newmark_gamma は 0.5 以上: {self.newmark_gamma}")
        if self.damping_alpha < 0 or self.damping_beta < 0:
            raise ValueError(
                f"Rayleigh 減衰係数は非負: alpha={self.damping_alpha}, beta={self.damping_beta}"
            )

    @property
    def has_damping(self) -> bool:
        return self.dynamic and (self.damping_alpha > 0.0 or self.damping_beta > 0.0)

    def time_at(self, step: int) -> float:
        return self.t0 + step * float(self.dt)


@dataclass
class MaterialConfig:
    """線形弾性（平面ひずみ）材料.

    Attributes:
        E: ヤング率
        nu: ポアソン比
        density: 密度
        thickness: 厚み
    """

    E: float = 1e4
    nu: float = 0.3
    density: float = 1.0
    thickness: float = 1.0

    def __post_init__(self) -> None:
        if self.E <= 0:
            raise ValueError(f"E は正値: {self.E}")
        if not (-1.0 < self.nu < 0.5):
            raise ValueError(f"nu は (-1, 0.5): {self.nu}")
        if self.density <= 0:
            raise ValueError(f"density は正値: {self.density}")
        if self.thickness <= 0:
            raise ValueError(f"thickness は正値: {self.thickness}")


@dataclass
class SimulationConfig:
    """解析全体の設定."""

    solver: NonlinearSolverConfig = field(default_factory=NonlinearSolverConfig)
    linear_solver: LinearSolverConfig = field(default_factory=LinearSolverConfig)
    augmented_lagrangian: AugmentedLagrangianConfig = field(
        default_factory=AugmentedLagrangianConfig
    )
    contact: ContactConfig = field(default_factory=ContactConfig)
    time: TimeConfig = field(default_factory=TimeConfig)
    material: MaterialConfig = field(default_factory=MaterialConfig)
    body_acceleration: tuple[float, float] = (0.0, 0.0)
    show_progress: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SimulationConfig:
        """入れ子の辞書から構築する（未知のキーは ValueError）.

        Examples:
            >>> cfg = SimulationConfig.from_dict({"contact": {"enabled": True, "dhat": 1e-3}})
            >>> cfg.contact.dhat
            0.001
        """
        sections = {
            "solver": NonlinearSolverConfig,
            "linear_solver": LinearSolverConfig,
            "augmented_lagrangian": AugmentedLagrangianConfig,
            "contact": ContactConfig,
            "time": TimeConfig,
            "material": MaterialConfig,
        }
        scalars = {"body_acceleration", "show_progress"}
        unknown = set(data) - set(sections) - scalars
        if unknown:
            raise ValueError(f"未知の設定キー: {sorted(unknown)}")

        kwargs: dict[str, Any] = {}
        for key, sub_cls in sections.items():
            if key not in data:
                continue
            sub = data[key]
            allowed = {f.name for f in fields(sub_cls)}
            bad = set(sub) - allowed
            if bad:
                raise ValueError(f"{key} の未知の設定キー: {sorted(bad)}")
            kwargs[key] = sub_cls(**sub)
        if "body_acceleration" in data:
            acc = tuple(float(a) for a in data["body_acceleration"])
            if len(acc) != 2:
                raise ValueError(f"body_acceleration は 2 成分: {acc}")
            kwargs["body_acceleration"] = acc
        if "show_progress" in data:
            kwargs["show_progress"] = bool(data["show_progress"])
        return cls(**kwargs)
