"""対数バリア関数とバリア剛性の初期化・更新.

バリア（d < d̂ で正, d >= d̂ でゼロ, d → 0 で発散）:
    b(d)   = -(d - d̂)² ln(d / d̂)
    b'(d)  = -2 (d - d̂) ln(d / d̂) - (d - d̂)² / d
    b''(d) = -2 ln(d / d̂) - 4 (d - d̂) / d + (d - d̂)² / d²

0 < d < d̂ で b >= 0, b' <= 0, b'' > 0。
"""

from __future__ import annotations

import numpy as np


def barrier(d: np.ndarray | float, dhat: float) -> np.ndarray:
    """バリア値 b(d)（d <= 0 は inf）."""
    shape = np.shape(d)
    d = np.atleast_1d(np.asarray(d, dtype=float))
    out = np.zeros_like(d)
    active = (d > 0.0) & (d < dhat)
    da = d[active]
    out[active] = -((da - dhat) ** 2) * np.log(da / dhat)
    out[d <= 0.0] = np.inf
    return out.reshape(shape)


def barrier_first_derivative(d: np.ndarray | float, dhat: float) -> np.ndarray:
    """b'(d)."""
    shape = np.shape(d)
    d = np.atleast_1d(np.asarray(d, dtype=float))
    out = np.zeros_like(d)
    active = (d > 0.0) & (d < dhat)
    da = d[active]
    diff = da - dhat
    out[active] = -2.0 * diff * np.log(da / dhat) - diff**2 / da
    out[d <= 0.0] = -np.inf
    return out.reshape(shape)


def barrier_second_derivative(d: np.ndarray | float, dhat: float) -> np.ndarray:
    """b''(d)."""
    shape = np.shape(d)
    d = np.atleast_1d(np.asarray(d, dtype=float))
    out = np.zeros_like(d)
    active = (d > 0.0) & (d < dhat)
    da = d[active]
    diff = da - dhat
    out[active] = -2.0 * np.log(da / dhat) - 4.0 * diff / da + diff**2 / da**2
    out[d <= 0.0] = np.inf
    return out.reshape(shape)


# ====================================================================
# バリア剛性
# ====================================================================


def initial_barrier_stiffness(
    bbox_diagonal: float,
    dhat: float,
    average_mass: float,
    grad_energy: np.ndarray,
    grad_barrier: np.ndarray,
    *,
    min_barrier_stiffness_scale: float = 1e11,
    lower_bound: float = 0.0,
    max_barrier_stiffness: float | None = None,
) -> tuple[float, float]:
    """勾配の釣り合いからバリア剛性 κ を推定する.

    κ = -(∇b · ∇E) / |∇b|² を [κ_min, κ_max] にクランプする。
    κ_min は微小距離 d0 でのバリア曲率と平均質量から決め、κ_max = 100 κ_min。

    Args:
        bbox_diagonal: バウンディングボックス対角長
        dhat: バリア活性距離
        average_mass: 接触節点の平均質量
        grad_energy: 接触以外の全エネルギーの勾配
        grad_barrier: 剛性 1 のバリア勾配
        min_barrier_stiffness_scale: κ_min のスケール
        lower_bound: κ_min の下限（設定値）
        max_barrier_stiffness: κ_max（None で 100 κ_min）

    Returns:
        (kappa, kappa_max)
    """
    d0 = 1e-8 * bbox_diagonal
    if d0 <= 0.0 or d0 >= dhat:
        d0 = 0.5 * dhat
    curvature = float(barrier_second_derivative(d0, dhat))
    kappa_min = min_barrier_stiffness_scale * average_mass / curvature
    kappa_min = max(kappa_min, lower_bound)
    kappa_max = 100.0 * kappa_min if max_barrier_stiffness is None else max(max_barrier_stiffness, kappa_min)

    kappa = 1.0
    gb2 = float(grad_barrier @ grad_barrier)
    if gb2 > 0.0:
        kappa = -float(grad_barrier @ grad_energy) / gb2
    return float(min(max(kappa, kappa_min), kappa_max)), float(kappa_max)


def update_barrier_stiffness(
    prev_min_distance: float,
    min_distance: float,
    max_barrier_stiffness: float,
    barrier_stiffness: float,
    bbox_diagonal: float,
    *,
    dhat_epsilon_scale: float = 1e-9,
) -> float:
    """接触が閾値以下でさらに接近したら κ を倍にする（上限 max_barrier_stiffness）.

    Examples:
        >>> update_barrier_stiffness(1e-10, 5e-11, 1e6, 1e3, 1.0)
        2000.0
        >>> update_barrier_stiffness(1e-3, 1e-3, 1e6, 1e3, 1.0)
        1000.0
    """
    dhat_epsilon = dhat_epsilon_scale * bbox_diagonal
    if (
        prev_min_distance < dhat_epsilon
        and min_distance < dhat_epsilon
        and min_distance < prev_min_distance
    ):
        return float(min(max_barrier_stiffness, 2.0 * barrier_stiffness))
    return float(barrier_stiffness)
