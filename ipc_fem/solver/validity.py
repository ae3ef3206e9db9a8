"""Step Validity Oracle.

is_valid(x0, x1) は次の両方を満たすときのみ True:
  1. x1 で反転・縮退要素がない（各フォームの is_step_valid）
  2. x0 → x1 の線形経路で接触面が交差しない（CCD）

ライン探索の各試行と、AL/ラギング解の受理判定で参照される。
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from ipc_fem.forms.base import Form


class StepValidityOracle:
    """ステップ妥当性の判定.

    Args:
        forms: 判定に参加するフォーム
    """

    def __init__(self, forms: Sequence[Form]) -> None:
        self.forms = list(forms)
        self.n_queries = 0
        self.n_rejections = 0

    def is_valid(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        self.n_queries += 1
        ok = bool(np.all(np.isfinite(x1))) and self._non_degenerate(x0, x1) and self._collision_free(x0, x1)
        if not ok:
            self.n_rejections += 1
        return ok

    def _non_degenerate(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        return all(f.is_step_valid(x0, x1) for f in self.forms)

    def _collision_free(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        return all(f.is_step_collision_free(x0, x1) for f in self.forms if f.enabled)

    def max_step_size(self, x0: np.ndarray, x1: np.ndarray) -> float:
        step = 1.0
        for f in self.forms:
            if f.enabled:
                step = min(step, float(f.max_step_size(x0, x1)))
        return step

    def is_intersection_free(self, x: np.ndarray) -> bool:
        """静的な交差がないか（初期配置・最終受理の判定）."""
        for f in self.forms:
            check = getattr(f, "is_intersection_free", None)
            if check is not None and f.enabled and not check(x):
                return False
        return True
