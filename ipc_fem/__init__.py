"""2D IPC 接触付き有限要素ソルバー.

対数バリアによる接触、ラギング摩擦、Augmented Lagrangian による Dirichlet 拘束を
増分ポテンシャルの最小化として解く。

主要クラス:
    StepOrchestrator: 時間・荷重ステップの実行
    SolveData: フォーム・非線形問題の組み立て結果
    SimulationConfig: 解析設定
    Mesh2D: 三角形メッシュと接触エッジ

主要関数:
    init_forms: メッシュと設定から SolveData を組み立てる
    disk_mesh / rectangle_mesh / merge_meshes: メッシュ生成
"""

from ipc_fem.config import (
    AugmentedLagrangianConfig,
    ContactConfig,
    LinearSolverConfig,
    MaterialConfig,
    NonlinearSolverConfig,
    SimulationConfig,
    TimeConfig,
)
from ipc_fem.core import (
    ConstraintEscalationExhausted,
    DiagnosticsSink,
    LaggingStatus,
    LinearSolverFailure,
    SimulationResult,
    StepResult,
    StepStatus,
)
from ipc_fem.forms.al import DirichletConstraint
from ipc_fem.mesh import Mesh2D, disk_mesh, merge_meshes, rectangle_mesh
from ipc_fem.orchestrator import StepOrchestrator
from ipc_fem.solve_data import SolveData, init_forms

__all__ = [
    # Config
    "SimulationConfig",
    "NonlinearSolverConfig",
    "LinearSolverConfig",
    "AugmentedLagrangianConfig",
    "ContactConfig",
    "TimeConfig",
    "MaterialConfig",
    # Mesh
    "Mesh2D",
    "disk_mesh",
    "rectangle_mesh",
    "merge_meshes",
    # Problem
    "DirichletConstraint",
    "SolveData",
    "init_forms",
    "StepOrchestrator",
    # Results
    "DiagnosticsSink",
    "StepResult",
    "StepStatus",
    "SimulationResult",
    "LaggingStatus",
    "ConstraintEscalationExhausted",
    "LinearSolverFailure",
]
