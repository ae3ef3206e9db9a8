"""バリア接触フォーム（2D 点–エッジ）.

E(x) = κ Σ_k b(d_k(x)),  d_k < d̂ の点–エッジ対について和を取る。

ヘッセは Gauss–Newton 形 κ Σ b''(d) ∇d ∇dᵀ（b'' > 0 より半正定値）。
候補ペアは配置をキーにキャッシュし、配置差が cache_tolerance を超えたら再探索する。
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
import scipy.sparse as sp

from ipc_fem.contact import ccd
from ipc_fem.contact.barrier import (
    barrier,
    barrier_first_derivative,
    barrier_second_derivative,
)
from ipc_fem.contact.broadphase import point_edge_candidates
from ipc_fem.contact.geometry import pair_dofs, point_edge_closest, point_edge_jacobian
from ipc_fem.core.errors import OutOfDomainError
from ipc_fem.forms.base import Form
from ipc_fem.mesh import Mesh2D


class ActiveContacts(NamedTuple):
    """d < d̂ の点–エッジ対.

    Attributes:
        vertex: (k,) 点番号
        edge_v0: (k,) エッジ始点
        edge_v1: (k,) エッジ終点
        distance: (k,) 距離
        alpha: (k,) 最近接点パラメータ
        normal: (k, 2) 法線
        tangent: (k, 2) 接線
    """

    vertex: np.ndarray
    edge_v0: np.ndarray
    edge_v1: np.ndarray
    distance: np.ndarray
    alpha: np.ndarray
    normal: np.ndarray
    tangent: np.ndarray

    @property
    def dofs(self) -> np.ndarray:
        return pair_dofs(self.vertex, self.edge_v0, self.edge_v1)

    def __len__(self) -> int:
        return len(self.vertex)


def assemble_pair_vector(ndof: int, dofs: np.ndarray, local: np.ndarray) -> np.ndarray:
    """ペアごとの局所ベクトル (k, 6) を全体ベクトルへ加算する."""
    out = np.zeros(ndof)
    np.add.at(out, dofs.ravel(), local.ravel())
    return out


def assemble_pair_outer(
    ndof: int, dofs: np.ndarray, jac: np.ndarray, coef: np.ndarray
) -> sp.csr_matrix:
    """Σ coef_k J_kᵀ J_k を CSR で組み立てる."""
    if len(dofs) == 0:
        return sp.csr_matrix((ndof, ndof))
    local = coef[:, None, None] * jac[:, :, None] * jac[:, None, :]  # (k, 6, 6)
    rows = np.repeat(dofs, 6, axis=1).ravel()
    cols = np.tile(dofs, (1, 6)).ravel()
    return sp.coo_matrix((local.ravel(), (rows, cols)), shape=(ndof, ndof)).tocsr()


class ContactForm(Form):
    """IPC 対数バリア接触.

    weight がバリア剛性 κ を兼ねる。

    Args:
        mesh: メッシュ（接触境界エッジを使用）
        dhat: バリア活性距離 d̂
        barrier_stiffness: バリア剛性 κ
        ccd_tolerance: CCD の辺パラメータ許容幅
        cache_tolerance: 候補ペアキャッシュの再利用許容差
    """

    name = "contact"

    def __init__(
        self,
        mesh: Mesh2D,
        dhat: float,
        barrier_stiffness: float,
        *,
        ccd_tolerance: float = 1e-9,
        cache_tolerance: float = 0.0,
    ) -> None:
        super().__init__()
        if dhat <= 0:
            raise ValueError(f"dhat は正値: {dhat}")
        self.mesh = mesh
        self.dhat = float(dhat)
        self.weight = float(barrier_stiffness)
        self.ccd_tolerance = ccd_tolerance
        self.cache_tolerance = cache_tolerance
        self.edges = mesh.edges
        self.collision_vertices = mesh.collision_vertices
        self._cache_x: np.ndarray | None = None
        self._cache_pairs: tuple[np.ndarray, np.ndarray] | None = None
        self.n_candidate_queries = 0

    @property
    def barrier_stiffness(self) -> float:
        return self.weight

    @barrier_stiffness.setter
    def barrier_stiffness(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"barrier_stiffness は正値: {value}")
        self.weight = float(value)

    # ----------------------------------------------------------------
    # 候補ペア・活性対
    # ----------------------------------------------------------------

    def _candidates(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        if (
            self._cache_x is not None
            and self._cache_x.shape == x.shape
            and float(np.max(np.abs(self._cache_x - x), initial=0.0)) <= self.cache_tolerance
        ):
            return self._cache_pairs
        V = self.mesh.vertices(x)
        self._cache_pairs = point_edge_candidates(
            V, self.edges, self.collision_vertices, inflation=self.dhat
        )
        self._cache_x = np.array(x, dtype=float, copy=True)
        self.n_candidate_queries += 1
        return self._cache_pairs

    def clear_cache(self) -> None:
        self._cache_x = None
        self._cache_pairs = None

    def active_contacts(self, x: np.ndarray) -> ActiveContacts:
        """d < d̂ の対と幾何量."""
        v_ids, e_ids = self._candidates(x)
        V = self.mesh.vertices(x)
        a_ids = self.edges[e_ids, 0]
        b_ids = self.edges[e_ids, 1]
        res = point_edge_closest(V[v_ids], V[a_ids], V[b_ids]) if len(v_ids) else None
        if res is None:
            empty_i = np.empty(0, dtype=np.intp)
            empty_f = np.empty(0)
            return ActiveContacts(
                empty_i, empty_i, empty_i, empty_f, empty_f, np.empty((0, 2)), np.empty((0, 2))
            )
        keep = res.distance < self.dhat
        return ActiveContacts(
            v_ids[keep],
            a_ids[keep],
            b_ids[keep],
            res.distance[keep],
            res.alpha[keep],
            res.normal[keep],
            res.tangent[keep],
        )

    def _checked(self, x: np.ndarray) -> ActiveContacts:
        contacts = self.active_contacts(x)
        if len(contacts) and float(contacts.distance.min()) <= 0.0:
            raise OutOfDomainError(self.name, "接触距離 <= 0（貫通）")
        return contacts

    # ----------------------------------------------------------------
    # 評価
    # ----------------------------------------------------------------

    def value_unweighted(self, x: np.ndarray) -> float:
        contacts = self._checked(x)
        if len(contacts) == 0:
            return 0.0
        return float(np.sum(barrier(contacts.distance, self.dhat)))

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        contacts = self._checked(x)
        if len(contacts) == 0:
            return np.zeros(len(x))
        jac = point_edge_jacobian(contacts.alpha, contacts.normal)
        local = barrier_first_derivative(contacts.distance, self.dhat)[:, None] * jac
        return assemble_pair_vector(len(x), contacts.dofs, local)

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        contacts = self._checked(x)
        jac = point_edge_jacobian(contacts.alpha, contacts.normal)
        coef = barrier_second_derivative(contacts.distance, self.dhat)
        return assemble_pair_outer(len(x), contacts.dofs, jac, coef)

    def barrier_gradient(self, x: np.ndarray) -> np.ndarray:
        """κ = 1 のバリア勾配（バリア剛性の初期化用）."""
        return self.first_derivative_unweighted(x)

    def normal_forces(self, x: np.ndarray) -> tuple[ActiveContacts, np.ndarray]:
        """活性対と法線接触力 λ_k = -κ b'(d_k) (>= 0)."""
        contacts = self._checked(x)
        lam = -self.weight * barrier_first_derivative(contacts.distance, self.dhat)
        return contacts, lam

    # ----------------------------------------------------------------
    # 衝突判定
    # ----------------------------------------------------------------

    def is_step_collision_free(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        if not np.all(np.isfinite(x1)):
            return False
        return ccd.is_step_collision_free(
            self.mesh.vertices(x0),
            self.mesh.vertices(x1),
            self.edges,
            self.collision_vertices,
            tolerance=self.ccd_tolerance,
        )

    def max_step_size(self, x0: np.ndarray, x1: np.ndarray) -> float:
        if not np.all(np.isfinite(x1)):
            return 0.0
        return ccd.max_step_size(
            self.mesh.vertices(x0),
            self.mesh.vertices(x1),
            self.edges,
            self.collision_vertices,
            tolerance=self.ccd_tolerance,
        )

    def compute_min_distance(self, x: np.ndarray) -> float:
        return ccd.compute_min_distance(
            self.mesh.vertices(x), self.edges, self.collision_vertices, self.dhat
        )

    def is_intersection_free(self, x: np.ndarray) -> bool:
        return not ccd.has_intersections(self.mesh.vertices(x), self.edges)
