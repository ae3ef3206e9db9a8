"""ipc_fem.core - 例外階層・戻り値型・診断シンク・抽象インタフェース."""

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
    InvalidStepError,
    IpcFemError,
    LinearSolverFailure,
    NonFiniteError,
    OutOfDomainError,
    SolverError,
)
from ipc_fem.core.protocols import (
    LinearSolverProtocol,
    MinimizerProtocol,
    ProblemProtocol,
    TimeIntegratorProtocol,
)
from ipc_fem.core.results import (
    ALResult,
    ALState,
    LaggingResult,
    LaggingStatus,
    LineSearchResult,
    MinimizeInfo,
    MinimizerStatus,
    SimulationResult,
    StepResult,
    StepStatus,
)

__all__ = [
    "DiagnosticsSink",
    "EnergyRecord",
    "SolverInfoRecord",
    "StepDiagnostics",
    "StepStats",
    "IpcFemError",
    "FormEvaluationError",
    "NonFiniteError",
    "OutOfDomainError",
    "InvalidStepError",
    "SolverError",
    "ConstraintEscalationExhausted",
    "LinearSolverFailure",
    "ProblemProtocol",
    "MinimizerProtocol",
    "LinearSolverProtocol",
    "TimeIntegratorProtocol",
    "ALResult",
    "ALState",
    "LaggingResult",
    "LaggingStatus",
    "LineSearchResult",
    "MinimizeInfo",
    "MinimizerStatus",
    "SimulationResult",
    "StepResult",
    "StepStatus",
]
