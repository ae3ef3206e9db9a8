"""ソルバー戻り値の型定義.

各ループ（最小化, AL, 摩擦ラギング, ステップ）の終了状態を Enum で区別し、
結果は dataclass / NamedTuple で返す。終了条件は必ず status に明示され、
黙って握りつぶされることはない。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

if TYPE_CHECKING:
    from ipc_fem.core.diagnostics import StepDiagnostics


class MinimizerStatus(Enum):
    """非線形最小化の終了状態."""

    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    LINE_SEARCH_FAILED = "line_search_failed"
    NON_FINITE = "non_finite"
    NON_FINITE_DIRECTION = "non_finite_direction"


class ALState(Enum):
    """AL コントローラの状態."""

    UNCONSTRAINED = "unconstrained"
    PENALIZED = "penalized"
    CONVERGED = "converged"
    ESCALATED_MAX = "escalated_max"
    INNER_FAILED = "inner_failed"


class LaggingStatus(Enum):
    """摩擦ラギングの終了状態."""

    DISABLED = "disabled"
    CONVERGED = "converged"
    STAGNATED = "stagnated"
    MAX_ITERATIONS = "max_iterations"
    INNER_FAILED = "inner_failed"


class StepStatus(Enum):
    """ステップの終了状態."""

    ACCEPTED = "accepted"
    CONSTRAINT_ESCALATION = "constraint_escalation"
    LINEAR_SOLVER_FAILED = "linear_solver_failed"
    INNER_FAILED = "inner_failed"
    REJECTED = "rejected"


class LineSearchResult(NamedTuple):
    """ライン探索の結果.

    Attributes:
        success: Armijo 条件と妥当性を満たすステップ長が見つかったか
        step_size: 採用ステップ長（失敗時は最後に試した値）
        x: 採用配置（失敗時は開始配置のコピー）
        energy: 採用配置のエネルギー
        n_evaluations: 試行回数
        n_invalid: Oracle 拒否または評価エラーで棄却した回数
    """

    success: bool
    step_size: float
    x: np.ndarray
    energy: float
    n_evaluations: int
    n_invalid: int


@dataclass
class MinimizeInfo:
    """非線形最小化の収束情報.

    Attributes:
        status: 終了状態
        iterations: 採用された降下ステップ数
        grad_norm: 最終勾配ノルム
        energy: 最終エネルギー
        step_norm: 最後のステップの最大ノルム
        line_search_evaluations: ライン探索の総試行回数
        direction_counts: 方向の種類ごとの使用回数（newton, regularized_newton, ...）
        time: 経過時間 [s]
        message: 補足メッセージ
    """

    status: MinimizerStatus = MinimizerStatus.MAX_ITERATIONS
    iterations: int = 0
    grad_norm: float = float("nan")
    energy: float = float("nan")
    step_norm: float = 0.0
    line_search_evaluations: int = 0
    direction_counts: dict[str, int] = field(default_factory=dict)
    time: float = 0.0
    message: str = ""

    @property
    def converged(self) -> bool:
        return self.status == MinimizerStatus.CONVERGED


@dataclass
class ALResult:
    """AL コントローラの結果.

    Attributes:
        x: 最終配置（ハード拘束解）
        state: 終了状態（成功時 CONVERGED, 内部最小化の失敗で INNER_FAILED）
        weights: 内部求解に使った重みの列（非減少）
        n_escalations: 重み増大回数
        violation: 射影前の最終拘束違反ノルム
        info: 最後の最小化情報
        n_inner_solves: 最小化呼び出し回数（ハード拘束解を含む）
    """

    x: np.ndarray
    state: ALState
    weights: list[float] = field(default_factory=list)
    n_escalations: int = 0
    violation: float = 0.0
    info: MinimizeInfo | None = None
    n_inner_solves: int = 0

    @property
    def converged(self) -> bool:
        return self.state == ALState.CONVERGED and self.info is not None and self.info.converged


@dataclass
class LaggingResult:
    """摩擦ラギングの結果.

    Attributes:
        x: 最終候補配置
        status: 終了状態
        iterations: 実行した AL 求解回数（= ラギング反復数）
        grad_norm: 最終勾配ノルム（摩擦込み全目的関数, ラギング更新後）
        al_results: 各反復の ALResult
    """

    x: np.ndarray
    status: LaggingStatus
    iterations: int
    grad_norm: float = float("nan")
    al_results: list[ALResult] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status in (LaggingStatus.DISABLED, LaggingStatus.CONVERGED)


@dataclass
class StepResult:
    """1 ステップの結果.

    Attributes:
        success: ステップが受理・確定されたか
        x: 確定配置（失敗時は直前の確定配置）
        diagnostics: ステップ診断
        status: 終了状態
        message: 失敗理由
        lagging: ラギング結果（AL 失敗時は None）
        retried: 外部リカバリ後に再試行したか
    """

    success: bool
    x: np.ndarray
    diagnostics: StepDiagnostics
    status: StepStatus = StepStatus.ACCEPTED
    message: str = ""
    lagging: LaggingResult | None = None
    retried: bool = False


@dataclass
class SimulationResult:
    """全ステップ実行の結果.

    Attributes:
        success: 全ステップ成功か
        x: 最終確定配置
        n_steps_completed: 確定したステップ数
        history: 各ステップ終了時の確定配置（初期配置を含む）
        steps: 各 StepResult
    """

    success: bool
    x: np.ndarray
    n_steps_completed: int
    history: list[np.ndarray] = field(default_factory=list)
    steps: list[StepResult] = field(default_factory=list)
