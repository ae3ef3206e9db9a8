"""メッシュと設定からフォーム・非線形問題を組み立てる.

SolveData はステップ間で共有されるフォーム群と時間積分を保持する。
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

from ipc_fem.config import SimulationConfig
from ipc_fem.core.diagnostics import DiagnosticsSink
from ipc_fem.forms.al import DirichletConstraint
from ipc_fem.forms.base import Form
from ipc_fem.forms.body import BodyForm
from ipc_fem.forms.contact import ContactForm
from ipc_fem.forms.damping import RayleighDampingForm
from ipc_fem.forms.elastic import ElasticForm
from ipc_fem.forms.friction import FrictionForm
from ipc_fem.forms.inertia import InertiaForm, lumped_mass_matrix, lumped_vertex_mass
from ipc_fem.forms.lagged_reg import LaggedRegForm
from ipc_fem.mesh import Mesh2D
from ipc_fem.solver.nl_problem import NLProblem
from ipc_fem.time_integrator import ImplicitTimeIntegrator, construct_time_integrator


@dataclass
class SolveData:
    """組み立て済みの問題.

    Attributes:
        mesh: メッシュ
        problem: 非線形問題（全フォーム）
        elastic_form: 弾性
        body_form: 外力
        inertia_form: 慣性（静的解析では None）
        damping_form: Rayleigh 減衰（減衰なし・静的解析では None）
        contact_form: 接触（無効なら None）
        friction_form: 摩擦（無効なら None）
        lagged_reg_form: ラギング正則化（無効なら None）
        time_integrator: 時間積分（静的解析では None）
        vertex_mass: (n_vertices,) 節点質量
    """

    mesh: Mesh2D
    problem: NLProblem
    elastic_form: ElasticForm
    body_form: BodyForm
    inertia_form: InertiaForm | None
    damping_form: RayleighDampingForm | None
    contact_form: ContactForm | None
    friction_form: FrictionForm | None
    lagged_reg_form: LaggedRegForm | None
    time_integrator: ImplicitTimeIntegrator | None
    vertex_mass: np.ndarray

    @property
    def constraint(self) -> DirichletConstraint | None:
        return self.problem.constraint

    def non_contact_forms(self) -> list[Form]:
        """バリア剛性の推定に使う「接触以外」のフォーム."""
        skip = {"contact", "friction"}
        return [f for f in self.problem.forms if f.name not in skip]


def build_constraint(
    mesh: Mesh2D,
    fixed_bodies: Sequence[int] = (),
    dirichlet: DirichletConstraint | None = None,
) -> DirichletConstraint | None:
    """固定ボディ（変位ゼロ）と任意の Dirichlet 拘束を 1 つにまとめる."""
    fixed = [mesh.body_dofs(b) for b in fixed_bodies]
    fixed_dofs = np.concatenate(fixed) if fixed else np.empty(0, dtype=np.intp)
    if dirichlet is None:
        return DirichletConstraint(fixed_dofs, 0.0) if len(fixed_dofs) else None
    if len(fixed_dofs) == 0:
        return dirichlet
    if np.intersect1d(fixed_dofs, dirichlet.dofs).size:
        raise ValueError("固定ボディと Dirichlet 拘束の自由度が重複している")
    n_fixed = len(fixed_dofs)

    def values(t: float) -> np.ndarray:
        return np.concatenate([dirichlet.evaluate(t), np.zeros(n_fixed)])

    return DirichletConstraint(np.concatenate([dirichlet.dofs, fixed_dofs]), values)


def init_forms(
    mesh: Mesh2D,
    config: SimulationConfig,
    *,
    fixed_bodies: Sequence[int] = (),
    dirichlet: DirichletConstraint | None = None,
    nodal_forces: np.ndarray | None = None,
    diagnostics: DiagnosticsSink | None = None,
    extra_forms: Sequence[Form] = (),
    time_integrator_factory: Callable[[], ImplicitTimeIntegrator] | None = None,
) -> SolveData:
    """フォームを構築して非線形問題にまとめる.

    Args:
        mesh: メッシュ
        config: 解析設定
        fixed_bodies: 変位ゼロに拘束するボディ番号
        dirichlet: 追加の Dirichlet 拘束
        nodal_forces: (ndof,) 節点外力
        diagnostics: 診断シンク
        extra_forms: 追加フォーム
        time_integrator_factory: 時間積分の生成関数（None なら config.time.integrator）

    Returns:
        SolveData
    """
    mat = config.material
    tc = config.time
    cc = config.contact

    mass = lumped_mass_matrix(mesh, mat.density, mat.thickness)
    vertex_mass = lumped_vertex_mass(mesh, mat.density, mat.thickness)

    elastic = ElasticForm(mesh, mat.E, mat.nu, mat.thickness, diagnostics=diagnostics)
    body = BodyForm(mass, config.body_acceleration, nodal_forces, ramp=not tc.dynamic)
    forms: list[Form] = [elastic, body]

    integrator = None
    inertia = None
    damping = None
    if tc.dynamic:
        if time_integrator_factory is not None:
            integrator = time_integrator_factory()
        elif tc.integrator == "implicit_newmark":
            integrator = construct_time_integrator(
                tc.integrator, beta=tc.newmark_beta, gamma=tc.newmark_gamma
            )
        else:
            integrator = construct_time_integrator(tc.integrator)
        inertia = InertiaForm(mass, integrator)
        forms.append(inertia)
        if tc.has_damping:
            damping = RayleighDampingForm(
                mass, elastic.K, tc.damping_alpha, tc.damping_beta, integrator
            )
            forms.append(damping)

    contact = None
    friction = None
    if cc.enabled:
        contact = ContactForm(
            mesh,
            cc.dhat,
            cc.barrier_stiffness,
            ccd_tolerance=cc.ccd_tolerance,
            cache_tolerance=cc.cache_tolerance,
        )
        forms.append(contact)
        if cc.has_friction:
            friction = FrictionForm(
                contact,
                cc.friction_coefficient,
                cc.epsv,
                dt=float(tc.dt) if tc.dynamic else 1.0,
                n_lagging_iterations=cc.friction_iterations,
            )
            forms.append(friction)

    lagged = None
    if cc.lagged_regularization_weight > 0.0 and cc.lagged_regularization_iterations > 0:
        lagged = LaggedRegForm(cc.lagged_regularization_weight, cc.lagged_regularization_iterations)
        forms.append(lagged)

    forms.extend(extra_forms)
    constraint = build_constraint(mesh, fixed_bodies, dirichlet)
    problem = NLProblem(mesh.ndof, forms, constraint=constraint)
    return SolveData(
        mesh=mesh,
        problem=problem,
        elastic_form=elastic,
        body_form=body,
        inertia_form=inertia,
        damping_form=damping,
        contact_form=contact,
        friction_form=friction,
        lagged_reg_form=lagged,
        time_integrator=integrator,
        vertex_mass=vertex_mass,
    )
