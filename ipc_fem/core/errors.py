"""ソルバー例外階層.

分類:
  FormEvaluationError        — フォーム評価の異常（ステップ棄却で回復）
    NonFiniteError           — エネルギー/勾配に NaN/Inf
    OutOfDomainError         — バリア定義域外（距離 <= 0）で評価
  InvalidStepError           — Step Validity Oracle が拒否した配置
  SolverError                — ステップを終了させる致命的失敗（診断コンテキスト付き）
    ConstraintEscalationExhausted — AL 重みが上限を超えても拘束未達
    LinearSolverFailure      — 線形ソルバーが解を返せない

摩擦ラギングの非収束は例外ではなく LaggingStatus で報告する。
"""

from __future__ import annotations

from typing import Any


class IpcFemError(Exception):
    """ipc_fem の基底例外."""


class FormEvaluationError(IpcFemError):
    """フォーム評価の失敗（ライン探索でステップ棄却として扱う）.

    Args:
        form_name: 評価に失敗したフォーム名
        message: 詳細メッセージ
    """

    def __init__(self, form_name: str, message: str = "") -> None:
        self.form_name = form_name
        super().__init__(f"{form_name}: {message}" if message else form_name)


class NonFiniteError(FormEvaluationError):
    """値・勾配が NaN/Inf になった."""


class OutOfDomainError(FormEvaluationError):
    """定義域外の配置で評価された（貫通・接触距離ゼロ）."""


class InvalidStepError(IpcFemError):
    """Step Validity Oracle が配置を不許可と判定した."""


class SolverError(IpcFemError):
    """ステップを失敗させる致命的エラー.

    Args:
        message: エラーメッセージ
        **context: 診断用コンテキスト（重み, 反復数, 残差など）
    """

    def __init__(self, message: str, **context: Any) -> None:
        self.context = dict(context)
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if not self.context:
            return base
        items = ", ".join(f"{k}={_fmt(v)}" for k, v in self.context.items())
        return f"{base} ({items})"


class ConstraintEscalationExhausted(SolverError):
    """AL ペナルティ重みが上限を超えた."""

    @property
    def weight(self) -> float:
        return float(self.context.get("weight", float("nan")))

    @property
    def n_escalations(self) -> int:
        return int(self.context.get("n_escalations", 0))


class LinearSolverFailure(SolverError):
    """線形連立方程式の求解失敗（特異・不定・非有限解）."""


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3e}"
    if isinstance(value, (list, tuple)) and len(value) > 6:
        return f"[{len(value)} items]"
    return str(value)
