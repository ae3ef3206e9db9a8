"""Backtracking line search（Armijo + ステップ妥当性）.

x_trial = x + η Δx（η ∈ (0, η0]）について、η を段階的に縮小し

  1. Step Validity Oracle が x → x_trial を許可する
  2. エネルギー評価が例外（非有限・定義域外）を出さない
  3. Armijo 条件 E(x_trial) <= E(x) + c η gᵀΔx を満たす

最初の η を採用する。初期 η0 は CCD による衝突手前の上限 min(1, max_step_size)。
縮小回数を使い切ったら失敗を返す（呼び出し側が終了状態として報告する）。
"""

from __future__ import annotations

import numpy as np

from ipc_fem.core.errors import FormEvaluationError
from ipc_fem.core.protocols import ProblemProtocol
from ipc_fem.core.results import LineSearchResult


def backtracking_line_search(
    problem: ProblemProtocol,
    x: np.ndarray,
    direction: np.ndarray,
    energy: float,
    grad: np.ndarray,
    *,
    max_steps: int = 40,
    shrink: float = 0.5,
    c_armijo: float = 1e-4,
    min_step_size: float = 1e-14,
    initial_step: float | None = None,
) -> LineSearchResult:
    """Backtracking line search でステップ長 η を決定する.

    Args:
        problem: 目的関数（value, is_step_valid, max_step_size）
        x: 現在配置
        direction: 降下方向 Δx
        energy: E(x)
        grad: ∇E(x)
        max_steps: 最大試行回数
        shrink: η の縮小率
        c_armijo: Armijo 係数
        min_step_size: η の下限（下回ったら打ち切り）
        initial_step: 初期 η（None なら min(1, max_step_size)）

    Returns:
        LineSearchResult
    """
    if initial_step is None:
        initial_step = min(1.0, float(problem.max_step_size(x, x + direction)))
    eta = float(initial_step)
    slope = float(grad @ direction)
    # 収束近傍の丸め誤差分だけ Armijo 判定を緩める
    slack = 1e-10 * max(1.0, abs(energy))

    n_eval = 0
    n_invalid = 0
    for _ in range(max_steps):
        if not (eta >= min_step_size):
            break
        x_trial = x + eta * direction
        n_eval += 1

        if not problem.is_step_valid(x, x_trial):
            n_invalid += 1
            eta *= shrink
            continue
        try:
            e_trial = float(problem.value(x_trial))
        except FormEvaluationError:
            n_invalid += 1
            eta *= shrink
            continue

        if np.isfinite(e_trial) and e_trial <= energy + c_armijo * eta * slope + slack:
            return LineSearchResult(True, eta, x_trial, e_trial, n_eval, n_invalid)
        eta *= shrink

    return LineSearchResult(False, eta, np.array(x, copy=True), energy, n_eval, n_invalid)
