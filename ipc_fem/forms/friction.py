"""ラギング摩擦フォーム（平滑化 Coulomb 散逸ポテンシャル）.

ラギング状態（接触対, 最近接点パラメータ α, 接線 T, 法線力 λ）を固定し、

    D(x) = μ Σ_k λ_k f0(|u_k|),  u_k = T_kᵀ (Δp - (1-α)Δa - αΔb)

を最小化する。Δ は直前の確定配置 x_prev からの変位。ε = epsv · Δt で平滑化:

    f0(y) = -y³/(3ε²) + y²/ε + ε/3   (y < ε),   y   (y >= ε)
    f1(y) = -y²/ε² + 2y/ε            (y < ε),   1   (y >= ε)

f1 = f0'。ヘッセ係数 μλ f1'(y) >= 0 より半正定値。
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

from ipc_fem.contact.geometry import pair_dofs, point_edge_jacobian
from ipc_fem.forms.base import Form
from ipc_fem.forms.contact import ContactForm, assemble_pair_outer, assemble_pair_vector

# ====================================================================
# 平滑化関数
# ====================================================================


def f0_smooth(y: np.ndarray, eps: float) -> np.ndarray:
    """散逸ポテンシャルの平滑化 f0(y)."""
    y = np.asarray(y, dtype=float)
    return np.where(y < eps, -(y**3) / (3.0 * eps**2) + y**2 / eps + eps / 3.0, y)


def f1_smooth(y: np.ndarray, eps: float) -> np.ndarray:
    """f1 = f0'（摩擦力の大きさ係数, 0 → 1）."""
    y = np.asarray(y, dtype=float)
    return np.where(y < eps, -(y**2) / eps**2 + 2.0 * y / eps, 1.0)


def f1_over_x(y: np.ndarray, eps: float) -> np.ndarray:
    """f1(y) / y（y = 0 でも有限）."""
    y = np.asarray(y, dtype=float)
    safe = np.where(y > 0.0, y, 1.0)
    return np.where(y < eps, -y / eps**2 + 2.0 / eps, 1.0 / safe)


def f1_derivative(y: np.ndarray, eps: float) -> np.ndarray:
    """f1'(y)."""
    y = np.asarray(y, dtype=float)
    return np.where(y < eps, 2.0 / eps - 2.0 * y / eps**2, 0.0)


# ====================================================================
# ラギング状態
# ====================================================================


@dataclass(frozen=True)
class FrictionLaggedState:
    """内部求解の間は固定される摩擦ラギング状態（配列は書き込み不可）.

    Attributes:
        vertex: (k,) 点番号
        edge_v0: (k,) エッジ始点
        edge_v1: (k,) エッジ終点
        alpha: (k,) 最近接点パラメータ
        tangent: (k, 2) 接線
        normal_force: (k,) 法線力 λ
        x_lagged: 状態を取得した配置
    """

    vertex: np.ndarray
    edge_v0: np.ndarray
    edge_v1: np.ndarray
    alpha: np.ndarray
    tangent: np.ndarray
    normal_force: np.ndarray
    x_lagged: np.ndarray

    def __post_init__(self) -> None:
        for name in ("vertex", "edge_v0", "edge_v1", "alpha", "tangent", "normal_force", "x_lagged"):
            arr = np.array(getattr(self, name), copy=True)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def __len__(self) -> int:
        return len(self.vertex)

    @property
    def dofs(self) -> np.ndarray:
        return pair_dofs(self.vertex, self.edge_v0, self.edge_v1)

    @property
    def jacobian(self) -> np.ndarray:
        """接線相対変位の係数 (k, 6)."""
        return point_edge_jacobian(self.alpha, self.tangent)


class FrictionForm(Form):
    """ラギング摩擦.

    Args:
        contact_form: 法線力と活性対を与える接触フォーム
        mu: 摩擦係数
        epsv: 平滑化速度
        dt: 時間刻み（静的解析では 1）
        n_lagging_iterations: ラギングの最大反復数
    """

    name = "friction"

    def __init__(
        self,
        contact_form: ContactForm,
        mu: float,
        epsv: float,
        dt: float = 1.0,
        n_lagging_iterations: int = 10,
    ) -> None:
        super().__init__()
        if mu < 0:
            raise ValueError(f"mu は非負: {mu}")
        if epsv <= 0 or dt <= 0:
            raise ValueError(f"epsv, dt は正値: {epsv}, {dt}")
        self.contact_form = contact_form
        self.mu = float(mu)
        self.epsv = float(epsv)
        self.dt = float(dt)
        self.n_lagging_iterations = int(n_lagging_iterations)
        self.x_prev: np.ndarray | None = None
        self.state: FrictionLaggedState | None = None

    @property
    def epsilon(self) -> float:
        return self.epsv * self.dt

    # ----------------------------------------------------------------
    # ラギング
    # ----------------------------------------------------------------

    def capture(self, x: np.ndarray) -> FrictionLaggedState:
        """配置 x からラギング状態を作る."""
        contacts, lam = self.contact_form.normal_forces(x)
        return FrictionLaggedState(
            contacts.vertex,
            contacts.edge_v0,
            contacts.edge_v1,
            contacts.alpha,
            contacts.tangent,
            lam,
            x,
        )

    def init_lagging(self, x: np.ndarray) -> None:
        if self.x_prev is None:
            self.x_prev = np.array(x, dtype=float, copy=True)
        self.state = self.capture(x)

    def update_lagging(self, x: np.ndarray, iter_num: int) -> None:
        self.state = self.capture(x)

    def uses_lagging(self) -> bool:
        return self.enabled and self.mu > 0.0

    @property
    def max_lagging_iterations(self) -> int:
        return self.n_lagging_iterations

    def update_quantities(self, t: float, x: np.ndarray) -> None:
        # 接線変位の基準はステップ開始時の確定配置
        self.x_prev = np.array(x, dtype=float, copy=True)

    # ----------------------------------------------------------------
    # 評価
    # ----------------------------------------------------------------

    def _tangential(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        state = self.state
        dofs = state.dofs
        jac = state.jacobian
        ref = self.x_prev if self.x_prev is not None else np.zeros_like(x)
        dx = (x - ref)[dofs]  # (k, 6)
        u = np.einsum("ij,ij->i", jac, dx)
        return dofs, jac, u

    def _inactive(self) -> bool:
        return self.state is None or len(self.state) == 0 or self.mu == 0.0

    def value_unweighted(self, x: np.ndarray) -> float:
        if self._inactive():
            return 0.0
        _, _, u = self._tangential(x)
        return self.mu * float(np.sum(self.state.normal_force * f0_smooth(np.abs(u), self.epsilon)))

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        if self._inactive():
            return np.zeros(len(x))
        dofs, jac, u = self._tangential(x)
        coef = self.mu * self.state.normal_force * f1_over_x(np.abs(u), self.epsilon) * u
        return assemble_pair_vector(len(x), dofs, coef[:, None] * jac)

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        n = len(x)
        if self._inactive():
            return sp.csr_matrix((n, n))
        dofs, jac, u = self._tangential(x)
        coef = self.mu * self.state.normal_force * f1_derivative(np.abs(u), self.epsilon)
        return assemble_pair_outer(n, dofs, jac, coef)
