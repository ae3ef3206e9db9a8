"""要素評価器レジストリ（線形弾性・平面ひずみ）.

要素形状タグ → 特化評価器 の対応表を持ち、未登録の形状には
次元汎用の単体要素評価器で代替する（代替時は診断シンクへ一度だけ警告）。

  "tri3": 一次三角形の閉形式 B マトリクス
  汎用  : 重心座標勾配から B を組む任意次元の単体要素
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from ipc_fem.core.diagnostics import DiagnosticsSink


def constitutive_plane_strain(E: float, nu: float) -> np.ndarray:
    """平面歪みの弾性マトリクス D を返す。

    Args:
        E: ヤング率
        nu: ポアソン比

    Returns:
        D: (3,3) 弾性マトリクス
    """
    lam = E * nu / ((1.0 + nu) * (1.0 - 2.0 * nu))
    mu = E / (2.0 * (1.0 + nu))
    return np.array(
        [[lam + 2.0 * mu, lam, 0.0], [lam, lam + 2.0 * mu, 0.0], [0.0, 0.0, mu]],
        dtype=float,
    )


class ElementEvaluator(Protocol):
    """要素評価器のインタフェース."""

    def stiffness(self, coords: np.ndarray, D: np.ndarray, thickness: float) -> np.ndarray:
        """(nnodes*dim, nnodes*dim) 局所剛性."""
        ...

    def volume(self, coords: np.ndarray) -> float:
        """符号付き体積（2D では面積）."""
        ...


class Tri3Evaluator:
    """TRI3（一次三角形, 定ひずみ, 平面歪み）."""

    def volume(self, coords: np.ndarray) -> float:
        (x1, y1), (x2, y2), (x3, y3) = coords
        return 0.5 * ((x2 - x1) * (y3 - y1) - (x3 - x1) * (y2 - y1))

    def stiffness(self, coords: np.ndarray, D: np.ndarray, thickness: float) -> np.ndarray:
        A = self.volume(coords)
        if A <= 0.0:
            raise ValueError(f"零面積または反転要素（A<=0）: A={A}")
        (x1, y1), (x2, y2), (x3, y3) = coords
        b1, b2, b3 = y2 - y3, y3 - y1, y1 - y2
        c1, c2, c3 = x3 - x2, x1 - x3, x2 - x1
        B = (1.0 / (2.0 * A)) * np.array(
            [
                [b1, 0, b2, 0, b3, 0],
                [0, c1, 0, c2, 0, c3],
                [c1, b1, c2, b2, c3, b3],
            ],
            dtype=float,
        )
        return (B.T @ D @ B) * A * thickness


class SimplexEvaluator:
    """次元汎用の一次単体要素（重心座標勾配による B マトリクス）."""

    def volume(self, coords: np.ndarray) -> float:
        coords = np.asarray(coords, dtype=float)
        dim = coords.shape[1]
        J = (coords[1:] - coords[0]).T
        return float(np.linalg.det(J)) / float(np.prod(np.arange(1, dim + 1)))

    def stiffness(self, coords: np.ndarray, D: np.ndarray, thickness: float) -> np.ndarray:
        coords = np.asarray(coords, dtype=float)
        n_nodes, dim = coords.shape
        vol = self.volume(coords)
        if vol <= 0.0:
            raise ValueError(f"零体積または反転要素: V={vol}")
        # [1 x y (z)] の逆行列の行が重心座標の係数
        P = np.hstack([np.ones((n_nodes, 1)), coords])
        grads = np.linalg.inv(P)[1:, :].T  # (n_nodes, dim)

        n_voigt = dim * (dim + 1) // 2
        B = np.zeros((n_voigt, n_nodes * dim))
        for a in range(n_nodes):
            for i in range(dim):
                B[i, a * dim + i] = grads[a, i]
        # せん断成分（工学ひずみ）: 2D は (xy), 3D は (yz, xz, xy)
        shear_pairs = [(0, 1)] if dim == 2 else [(1, 2), (0, 2), (0, 1)]
        for k, (i, j) in enumerate(shear_pairs):
            row = dim + k
            for a in range(n_nodes):
                B[row, a * dim + i] = grads[a, j]
                B[row, a * dim + j] = grads[a, i]
        scale = thickness if dim == 2 else 1.0
        return (B.T @ D @ B) * vol * scale


ELEMENT_EVALUATORS: dict[str, ElementEvaluator] = {
    "tri3": Tri3Evaluator(),
}

_GENERIC = SimplexEvaluator()


def get_element_evaluator(
    element_type: str, diagnostics: DiagnosticsSink | None = None
) -> ElementEvaluator:
    """形状タグに対応する評価器を返す（未登録なら汎用評価器）."""
    evaluator = ELEMENT_EVALUATORS.get(element_type)
    if evaluator is not None:
        return evaluator
    if diagnostics is not None:
        diagnostics.warn_once(
            f"generic-evaluator:{element_type}",
            f"要素形状 '{element_type}' の特化評価器がないため汎用単体要素評価器を使用",
        )
    return _GENERIC
