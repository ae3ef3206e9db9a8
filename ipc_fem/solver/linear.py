"""疎行列連立方程式ソルバー.

mode:
  "direct"    : spsolve（SuperLU）
  "iterative" : GMRES + ILU 前処理
  "auto"      : direct を試行し、特異警告または非有限解なら iterative へ退避

解が得られない（特異・非有限・GMRES 非収束）場合は LinearSolverFailure を送出する。
"""

from __future__ import annotations

import warnings

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from ipc_fem.core.errors import LinearSolverFailure


class LinearSolver:
    """線形ソルバー.

    Args:
        mode: "direct" | "iterative" | "auto"
        iterative_tol: GMRES 収束判定
        ilu_drop_tol: ILU 前処理の drop tolerance
    """

    def __init__(
        self,
        mode: str = "direct",
        *,
        iterative_tol: float = 1e-10,
        ilu_drop_tol: float = 1e-4,
    ) -> None:
        if mode not in ("direct", "iterative", "auto"):
            raise ValueError(f"mode は direct / iterative / auto: {mode}")
        self.mode = mode
        self.iterative_tol = iterative_tol
        self.ilu_drop_tol = ilu_drop_tol
        self.n_solves = 0

    def solve(self, A: sp.spmatrix, b: np.ndarray) -> np.ndarray:
        """A x = b を解く."""
        self.n_solves += 1
        A = sp.csc_matrix(A)
        if self.mode == "iterative":
            return self._solve_iterative(A, b)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                x = spla.spsolve(A, b)
            except RuntimeError as exc:
                # SuperLU の特異判定
                if self.mode == "auto":
                    return self._solve_iterative(A, b)
                raise LinearSolverFailure(f"直接法の分解に失敗: {exc}", mode=self.mode) from exc

        singular = any(
            "MatrixRankWarning" in w.category.__name__ or "singular" in str(w.message).lower()
            for w in caught
        )
        if singular or not np.all(np.isfinite(x)):
            if self.mode == "auto":
                return self._solve_iterative(A, b)
            raise LinearSolverFailure("直接法で特異または非有限の解", mode=self.mode)
        return np.asarray(x, dtype=float)

    def _solve_iterative(self, A: sp.csc_matrix, b: np.ndarray) -> np.ndarray:
        """GMRES + ILU 前処理."""
        try:
            ilu = spla.spilu(A, drop_tol=self.ilu_drop_tol)
            M = spla.LinearOperator(A.shape, ilu.solve)
        except RuntimeError:
            # ILU 分解失敗 → 前処理なし
            M = None
        tol = self.iterative_tol
        x, info = spla.gmres(A, b, M=M, rtol=tol, atol=tol, maxiter=max(500, A.shape[0]))
        if info != 0 or not np.all(np.isfinite(x)):
            raise LinearSolverFailure("GMRES が収束しない", info=info, mode=self.mode)
        return np.asarray(x, dtype=float)
