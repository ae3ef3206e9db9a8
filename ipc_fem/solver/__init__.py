"""非線形ソルバー層.

モジュール構成:
- linear: 疎行列連立方程式（direct / iterative / auto）
- line_search: Armijo + ステップ妥当性の backtracking line search
- minimizer: Newton / L-BFGS
- validity: Step Validity Oracle
- nl_problem: フォームの和（AL / ハード拘束モード）
- al_solver: Augmented Lagrangian コントローラ
- lagging: 摩擦ラギングコントローラ
"""

from ipc_fem.solver.al_solver import ALSolver
from ipc_fem.solver.lagging import FrictionLaggingController
from ipc_fem.solver.line_search import backtracking_line_search
from ipc_fem.solver.linear import LinearSolver
from ipc_fem.solver.minimizer import LBFGSSolver, Minimizer, NewtonSolver, make_minimizer
from ipc_fem.solver.nl_problem import NLProblem
from ipc_fem.solver.validity import StepValidityOracle

__all__ = [
    "ALSolver",
    "FrictionLaggingController",
    "backtracking_line_search",
    "LinearSolver",
    "Minimizer",
    "NewtonSolver",
    "LBFGSSolver",
    "make_minimizer",
    "NLProblem",
    "StepValidityOracle",
]
