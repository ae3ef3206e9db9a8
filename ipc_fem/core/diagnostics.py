"""診断レコードと診断シンク.

ソルバー各層は DiagnosticsSink を注入され、内部求解ごとの記録・ステップ毎の
エネルギー内訳・統計を追記する。一度だけ出す警告は warn_once のキーで管理し、
プロセス全体の静的フラグは使わない。

レコードは順序付きの素朴な dataclass で、書式化・永続化は呼び出し側の責務。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class SolverInfoRecord:
    """内部求解 1 回分の記録.

    Attributes:
        kind: "al"（ペナルティ付き求解）または "rc"（ハード拘束求解）
        step: ステップ番号
        lag_iteration: ラギング反復番号
        weight: AL 重み（rc では 0）
        iterations: 最小化の反復数
        grad_norm: 最終勾配ノルム
        energy: 最終エネルギー
        status: MinimizerStatus の値
        time: 経過時間 [s]
    """

    kind: str
    step: int
    lag_iteration: int
    weight: float
    iterations: int
    grad_norm: float
    energy: float
    status: str
    time: float


@dataclass
class EnergyRecord:
    """確定ステップのエネルギー内訳."""

    step: int
    t: float
    elastic: float = 0.0
    body: float = 0.0
    inertia: float = 0.0
    damping: float = 0.0
    contact: float = 0.0
    friction: float = 0.0
    al_lagrangian: float = 0.0
    al_penalty: float = 0.0
    total: float = 0.0


@dataclass
class StepStats:
    """ステップ統計.

    Attributes:
        step: ステップ番号
        t: 時刻（静的解析では荷重係数）
        success: 確定したか
        forward_time: 求解時間 [s]
        remesh_time: 外部リカバリに要した時間 [s]
        lagging_iterations: ラギング反復数
        lagging_status: LaggingStatus の値
        barrier_stiffness: このステップで使用したバリア剛性
        min_distance: 確定配置の最小接触距離（接触なしは inf）
        message: 失敗理由
    """

    step: int
    t: float
    success: bool
    forward_time: float = 0.0
    remesh_time: float = 0.0
    lagging_iterations: int = 0
    lagging_status: str = ""
    barrier_stiffness: float = 0.0
    min_distance: float = float("inf")
    message: str = ""


@dataclass
class StepDiagnostics:
    """1 ステップ分の診断（StepResult に添付）."""

    step: int
    solver_info: list[SolverInfoRecord] = field(default_factory=list)
    energy: EnergyRecord | None = None
    stats: StepStats | None = None

    @property
    def weights(self) -> list[float]:
        return [r.weight for r in self.solver_info if r.kind == "al"]


class DiagnosticsSink:
    """追記専用の診断ストリーム.

    Args:
        name: ロガー名の接尾辞（複数シミュレーションの区別用）
    """

    def __init__(self, name: str | None = None) -> None:
        self.solver_info: list[SolverInfoRecord] = []
        self.energies: list[EnergyRecord] = []
        self.steps: list[StepStats] = []
        self.warnings: list[str] = []
        self._warned: set[str] = set()
        self._logger = logger.getChild(name) if name else logger

    # ----------------------------------------------------------------
    # 記録
    # ----------------------------------------------------------------

    def record_solver_info(self, record: SolverInfoRecord) -> None:
        self.solver_info.append(record)

    def record_energy(self, record: EnergyRecord) -> None:
        self.energies.append(record)

    def record_step(self, stats: StepStats) -> None:
        self.steps.append(stats)

    # ----------------------------------------------------------------
    # 警告
    # ----------------------------------------------------------------

    def warn(self, message: str) -> None:
        """警告を記録しログへ出力する."""
        self.warnings.append(message)
        self._logger.warning(message)

    def warn_once(self, key: str, message: str) -> bool:
        """キーごとに一度だけ警告する.

        Returns:
            今回出力した場合 True（既出なら False）
        """
        if key in self._warned:
            return False
        self._warned.add(key)
        self.warn(message)
        return True

    def has_warned(self, key: str) -> bool:
        return key in self._warned

    # ----------------------------------------------------------------
    # 参照
    # ----------------------------------------------------------------

    def records_for_step(self, step: int) -> list[SolverInfoRecord]:
        return [r for r in self.solver_info if r.step == step]

    def weight_history(self, step: int | None = None) -> list[float]:
        """AL 求解で使われた重みの列."""
        return [
            r.weight
            for r in self.solver_info
            if r.kind == "al" and (step is None or r.step == step)
        ]

    def to_rows(self) -> list[dict[str, Any]]:
        """solver_info を dict の列として返す（表出力用）."""
        return [asdict(r) for r in self.solver_info]
