"""陰的時間積分（慣性フォーム用）.

変位 x を未知量とする増分ポテンシャル形式:
    慣性エネルギー (x - x̃)ᵀ M (x - x̃) / (2 s)

  後退 Euler:  x̃ = x_n + Δt v_n,                         s = Δt²
               v_{n+1} = (x_{n+1} - x_n) / Δt,  a_{n+1} = (v_{n+1} - v_n) / Δt
  Newmark-β:   x̃ = x_n + Δt v_n + Δt² (0.5 - β) a_n,      s = β Δt²
               a_{n+1} = (x_{n+1} - x̃) / (β Δt²)
               v_{n+1} = v_n + Δt [(1 - γ) a_n + γ a_{n+1}]
"""

from __future__ import annotations

import numpy as np


class ImplicitTimeIntegrator:
    """陰的時間積分の基底.

    Attributes:
        dt: 時間刻み
        x_prev, v_prev, a_prev: 直前に確定した変位・速度・加速度
    """

    name = "implicit"

    def __init__(self) -> None:
        self.dt = 1.0
        self.x_prev: np.ndarray | None = None
        self.v_prev: np.ndarray | None = None
        self.a_prev: np.ndarray | None = None

    def init(self, x_prev: np.ndarray, v_prev: np.ndarray, a_prev: np.ndarray, dt: float) -> None:
        if dt <= 0:
            raise ValueError(f"dt は正値: {dt}")
        x_prev = np.asarray(x_prev, dtype=float)
        if np.shape(v_prev) != x_prev.shape or np.shape(a_prev) != x_prev.shape:
            raise ValueError("x_prev, v_prev, a_prev の形状が一致しない")
        self.dt = float(dt)
        self.x_prev = x_prev.copy()
        self.v_prev = np.asarray(v_prev, dtype=float).copy()
        self.a_prev = np.asarray(a_prev, dtype=float).copy()

    def _check(self) -> None:
        if self.x_prev is None:
            raise RuntimeError("init() が呼ばれていない")

    # ----------------------------------------------------------------
    # 派生クラスで実装
    # ----------------------------------------------------------------

    def x_tilde(self) -> np.ndarray:
        raise NotImplementedError

    def acceleration_scaling(self) -> float:
        raise NotImplementedError

    def velocity_scaling(self) -> float:
        """dv_{n+1}/dx（速度は x の 1 次関数）."""
        raise NotImplementedError

    def compute_velocity(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def compute_acceleration(self, x: np.ndarray, v: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    # ----------------------------------------------------------------
    # 共通
    # ----------------------------------------------------------------

    def predict(self) -> np.ndarray:
        """慣性項の基準配置 x̃."""
        return self.x_tilde()

    def update_quantities(self, x: np.ndarray) -> None:
        """確定した x で速度・加速度を更新する."""
        self._check()
        x = np.asarray(x, dtype=float)
        v = self.compute_velocity(x)
        a = self.compute_acceleration(x, v)
        self.x_prev = x.copy()
        self.v_prev = v
        self.a_prev = a

    def update(self, x: np.ndarray) -> None:
        self.update_quantities(x)


class ImplicitEuler(ImplicitTimeIntegrator):
    """後退 Euler."""

    name = "implicit_euler"

    def x_tilde(self) -> np.ndarray:
        self._check()
        return self.x_prev + self.dt * self.v_prev

    def acceleration_scaling(self) -> float:
        return self.dt**2

    def velocity_scaling(self) -> float:
        return 1.0 / self.dt

    def compute_velocity(self, x: np.ndarray) -> np.ndarray:
        return (x - self.x_prev) / self.dt

    def compute_acceleration(self, x: np.ndarray, v: np.ndarray) -> np.ndarray:
        return (v - self.v_prev) / self.dt


class ImplicitNewmark(ImplicitTimeIntegrator):
    """Newmark-β（既定は平均加速度法 β=1/4, γ=1/2）.

    Args:
        beta: Newmark β
        gamma: Newmark γ
    """

    name = "implicit_newmark"

    def __init__(self, beta: float = 0.25, gamma: float = 0.5) -> None:
        super().__init__()
        if beta <= 0:
            raise ValueError(f"beta は正値: {beta}")
        if gamma < 0.5 - 1e-12:
            raise ValueError(f"gamma は 0.5 以上: {gamma}")
        self.beta = beta
        self.gamma = gamma

    def x_tilde(self) -> np.ndarray:
        self._check()
        dt = self.dt
        return self.x_prev + dt * self.v_prev + dt * dt * (0.5 - self.beta) * self.a_prev

    def acceleration_scaling(self) -> float:
        return self.beta * self.dt**2

    def velocity_scaling(self) -> float:
        return self.gamma / (self.beta * self.dt)

    def compute_velocity(self, x: np.ndarray) -> np.ndarray:
        a = self._acceleration(x)
        return self.v_prev + self.dt * ((1.0 - self.gamma) * self.a_prev + self.gamma * a)

    def compute_acceleration(self, x: np.ndarray, v: np.ndarray) -> np.ndarray:
        return self._acceleration(x)

    def _acceleration(self, x: np.ndarray) -> np.ndarray:
        return (x - self.x_tilde()) / self.acceleration_scaling()


def construct_time_integrator(name: str, **kwargs: float) -> ImplicitTimeIntegrator:
    """名前から時間積分を作る.

    Args:
        name: "implicit_euler" | "implicit_newmark"
        **kwargs: Newmark の beta, gamma
    """
    if name == "implicit_euler":
        return ImplicitEuler()
    if name == "implicit_newmark":
        return ImplicitNewmark(**kwargs)
    raise ValueError(f"未知の時間積分: {name}")
