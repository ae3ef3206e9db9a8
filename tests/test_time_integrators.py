"""陰的時間積分のテスト."""

from __future__ import annotations

import numpy as np
import pytest

from ipc_fem.time_integrator import ImplicitEuler, ImplicitNewmark, construct_time_integrator

DT = 0.1


def _init(integrator, x=(0.0, 0.0), v=(1.0, -2.0), a=(0.0, 0.0)):
    integrator.init(np.array(x), np.array(v), np.array(a), DT)
    return integrator


class TestImplicitEuler:
    def test_prediction_and_scaling(self):
        ti = _init(ImplicitEuler())
        np.testing.assert_allclose(ti.predict(), [0.1, -0.2])
        assert ti.acceleration_scaling() == pytest.approx(DT**2)
        assert ti.velocity_scaling() == pytest.approx(1.0 / DT)

    def test_update(self):
        """v = (x - x_n)/Δt, a = (v - v_n)/Δt."""
        ti = _init(ImplicitEuler())
        ti.update(np.array([0.2, -0.2]))
        np.testing.assert_allclose(ti.v_prev, [2.0, -2.0])
        np.testing.assert_allclose(ti.a_prev, [10.0, 0.0])
        np.testing.assert_allclose(ti.x_prev, [0.2, -0.2])

    def test_constant_velocity_preserved(self):
        ti = _init(ImplicitEuler())
        for _ in range(3):
            ti.update(ti.predict())
        np.testing.assert_allclose(ti.v_prev, [1.0, -2.0])
        np.testing.assert_allclose(ti.x_prev, [0.3, -0.6])


class TestImplicitNewmark:
    def test_scaling(self):
        ti = _init(ImplicitNewmark(beta=0.25))
        assert ti.acceleration_scaling() == pytest.approx(0.25 * DT**2)

    def test_constant_acceleration_exact(self):
        """等加速度運動 x = x_n + Δt v + ½Δt² a を与えると a, v が厳密に更新される."""
        a = np.array([0.0, -9.8])
        v = np.array([1.0, 0.5])
        ti = _init(ImplicitNewmark(), v=v, a=a)
        x_new = DT * v + 0.5 * DT**2 * a
        ti.update(x_new)
        np.testing.assert_allclose(ti.a_prev, a, atol=1e-10)
        np.testing.assert_allclose(ti.v_prev, v + DT * a, atol=1e-10)

    def test_velocity_scaling(self):
        """v_{n+1} は x の 1 次関数で傾き γ/(βΔt)."""
        ti = _init(ImplicitNewmark(beta=0.25, gamma=0.5))
        assert ti.velocity_scaling() == pytest.approx(20.0)
        x = np.array([0.3, -0.1])
        e = np.array([1e-3, 0.0])
        dv = ti.compute_velocity(x + e) - ti.compute_velocity(x)
        np.testing.assert_allclose(dv, ti.velocity_scaling() * e, rtol=1e-9, atol=1e-14)

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            ImplicitNewmark(beta=0.0)
        with pytest.raises(ValueError):
            ImplicitNewmark(gamma=0.3)


class TestCommon:
    def test_factory(self):
        assert isinstance(construct_time_integrator("implicit_euler"), ImplicitEuler)
        ti = construct_time_integrator("implicit_newmark", beta=0.3, gamma=0.6)
        assert isinstance(ti, ImplicitNewmark)
        assert ti.beta == 0.3
        with pytest.raises(ValueError):
            construct_time_integrator("central_difference")

    def test_requires_init(self):
        with pytest.raises(RuntimeError):
            ImplicitEuler().predict()

    def test_invalid_init(self):
        with pytest.raises(ValueError):
            ImplicitEuler().init(np.zeros(2), np.zeros(2), np.zeros(2), 0.0)
        with pytest.raises(ValueError):
            ImplicitEuler().init(np.zeros(2), np.zeros(3), np.zeros(2), 0.1)
