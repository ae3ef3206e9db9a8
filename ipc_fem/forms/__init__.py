"""エネルギー/拘束フォーム.

- base: Form 基底（重み・有効フラグ・非有限検出・ライフサイクル）
- elastic: 線形弾性（要素評価器レジストリ）
- body: 体積力・節点外力
- inertia: 慣性（時間積分の予測配置）, 集中質量
- damping: Rayleigh 減衰
- contact: IPC 対数バリア接触
- friction: ラギング摩擦
- al: Dirichlet 拘束の Augmented Lagrangian（乗数項・ペナルティ項）
- lagged_reg: ラギング正則化
"""

from ipc_fem.forms.al import ALLagrangianForm, ALPenaltyForm, DirichletConstraint
from ipc_fem.forms.base import Form
from ipc_fem.forms.body import BodyForm
from ipc_fem.forms.contact import ActiveContacts, ContactForm
from ipc_fem.forms.damping import RayleighDampingForm, rayleigh_damping_matrix
from ipc_fem.forms.elastic import ElasticForm, assemble_stiffness
from ipc_fem.forms.friction import (
    FrictionForm,
    FrictionLaggedState,
    f0_smooth,
    f1_derivative,
    f1_over_x,
    f1_smooth,
)
from ipc_fem.forms.inertia import InertiaForm, lumped_mass_matrix, lumped_vertex_mass
from ipc_fem.forms.lagged_reg import LaggedRegForm

__all__ = [
    "Form",
    "ElasticForm",
    "assemble_stiffness",
    "BodyForm",
    "InertiaForm",
    "lumped_mass_matrix",
    "lumped_vertex_mass",
    "RayleighDampingForm",
    "rayleigh_damping_matrix",
    "ContactForm",
    "ActiveContacts",
    "FrictionForm",
    "FrictionLaggedState",
    "f0_smooth",
    "f1_smooth",
    "f1_over_x",
    "f1_derivative",
    "ALLagrangianForm",
    "ALPenaltyForm",
    "DirichletConstraint",
    "LaggedRegForm",
]
