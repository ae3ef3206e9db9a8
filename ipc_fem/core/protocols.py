"""ソルバー層の抽象インタフェース定義.

Protocol 階層:
  ProblemProtocol         — 最小化対象（値・勾配・ヘッセ + ステップ妥当性）
  MinimizerProtocol       — 非線形最小化（init + minimize）
  LinearSolverProtocol    — 疎行列連立方程式（解 or LinearSolverFailure）
  TimeIntegratorProtocol  — 時間積分（init / update / predict）

構造的部分型なので、テスト用のスタブも明示的継承なしで差し込める。
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np
import scipy.sparse as sp

from ipc_fem.core.results import MinimizeInfo


@runtime_checkable
class ProblemProtocol(Protocol):
    """Minimizer が要求する目的関数のインタフェース."""

    def value(self, x: np.ndarray) -> float: ...

    def gradient(self, x: np.ndarray) -> np.ndarray: ...

    def hessian(self, x: np.ndarray) -> sp.csr_matrix | None: ...

    def has_hessian(self) -> bool: ...

    def is_step_valid(self, x0: np.ndarray, x1: np.ndarray) -> bool: ...

    def max_step_size(self, x0: np.ndarray, x1: np.ndarray) -> float: ...

    def solution_changed(self, x: np.ndarray) -> None: ...


@runtime_checkable
class MinimizerProtocol(Protocol):
    """非線形最小化のインタフェース.

    init(x) は履歴（前回勾配・準ニュートン近似）を再確保なしでリセットする。
    """

    def init(self, x: np.ndarray) -> None: ...

    def minimize(
        self, problem: ProblemProtocol, x0: np.ndarray
    ) -> tuple[np.ndarray, MinimizeInfo]: ...


@runtime_checkable
class LinearSolverProtocol(Protocol):
    """線形ソルバーのインタフェース."""

    def solve(self, A: sp.spmatrix, b: np.ndarray) -> np.ndarray: ...


@runtime_checkable
class TimeIntegratorProtocol(Protocol):
    """陰的時間積分のインタフェース.

    x は変位。predict() は慣性項の基準配置 x̃、acceleration_scaling() は
    慣性エネルギー (x - x̃)ᵀM(x - x̃) / (2 s) の s を返す。
    """

    dt: float

    def init(
        self, x_prev: np.ndarray, v_prev: np.ndarray, a_prev: np.ndarray, dt: float
    ) -> None: ...

    def update(self, x: np.ndarray) -> None: ...

    def predict(self) -> np.ndarray: ...

    def acceleration_scaling(self) -> float: ...
