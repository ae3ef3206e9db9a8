"""線形弾性フォーム（平面ひずみ）.

E(x) = ½ xᵀ K x。K は要素評価器レジストリで要素ごとに計算し COO で組み立てる。
反転・縮退要素を含む配置は is_step_valid で拒否する。
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from ipc_fem.core.diagnostics import DiagnosticsSink
from ipc_fem.elements import constitutive_plane_strain, get_element_evaluator
from ipc_fem.forms.base import Form
from ipc_fem.mesh import Mesh2D


def assemble_stiffness(
    mesh: Mesh2D,
    E: float,
    nu: float,
    thickness: float = 1.0,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> sp.csr_matrix:
    """全体剛性行列を組み立てる.

    Args:
        mesh: メッシュ
        E: ヤング率
        nu: ポアソン比
        thickness: 厚み
        diagnostics: 汎用評価器への代替を通知するシンク

    Returns:
        K: (ndof, ndof) CSR
    """
    evaluator = get_element_evaluator(mesh.element_type, diagnostics)
    D = constitutive_plane_strain(E, nu)
    dim = mesh.dim
    nn = mesh.elements.shape[1]
    n_edof = nn * dim

    rows = []
    cols = []
    data = []
    for conn in mesh.elements:
        coords = mesh.rest_positions[conn]
        Ke = evaluator.stiffness(coords, D, thickness)
        edofs = (dim * conn[:, None] + np.arange(dim)).ravel()
        rows.append(np.repeat(edofs, n_edof))
        cols.append(np.tile(edofs, n_edof))
        data.append(Ke.ravel())
    ndof = mesh.ndof
    if not data:
        return sp.csr_matrix((ndof, ndof))
    K = sp.coo_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(ndof, ndof),
    ).tocsr()
    K.sum_duplicates()
    return K


class ElasticForm(Form):
    """線形弾性エネルギー.

    Args:
        mesh: メッシュ
        E: ヤング率
        nu: ポアソン比
        thickness: 厚み
        diagnostics: 診断シンク
    """

    name = "elastic"

    def __init__(
        self,
        mesh: Mesh2D,
        E: float,
        nu: float,
        thickness: float = 1.0,
        *,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        super().__init__()
        self.mesh = mesh
        self.K = assemble_stiffness(mesh, E, nu, thickness, diagnostics=diagnostics)

    def value_unweighted(self, x: np.ndarray) -> float:
        return 0.5 * float(x @ (self.K @ x))

    def first_derivative_unweighted(self, x: np.ndarray) -> np.ndarray:
        return self.K @ x

    def second_derivative_unweighted(self, x: np.ndarray) -> sp.spmatrix:
        return self.K

    def is_step_valid(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        if not np.all(np.isfinite(x1)):
            return False
        return bool(np.all(self.mesh.element_areas(x1) > 0.0))
