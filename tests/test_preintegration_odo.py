import numpy as np
import pytest

from gvinsfactors.geometry import PoseParameterization, Quaternion, rotvec_to_quaternion
from gvinsfactors.integration_state import (
    Imu,
    IntegrationParameters,
    IntegrationState,
    IntegrationStateData,
)
from gvinsfactors.preintegration_odo import PreintegrationOdo

DT = 0.1


def make_parameters(**overrides):
    values = dict(
        acc_vrw=0.1,
        gyr_arw=0.01,
        gyr_bias_std=0.01,
        acc_bias_std=0.05,
        corr_time=3600.0,
        gravity=9.8,
        odo_std=[0.1, 0.1, 0.1],
        odo_srw=0.01,
        abv=[0.0, 0.01, 0.02],
        lodo=[0.2, -0.1, 0.3],
    )
    values.update(overrides)
    return IntegrationParameters(**values)


def initial_state():
    return IntegrationState(
        time=0.0,
        p=[1.0, 2.0, 3.0],
        q=rotvec_to_quaternion([0.1, -0.2, 0.3]),
        v=[1.0, 0.5, 0.0],
        bg=[1e-4, -2e-4, 3e-4],
        ba=[0.01, 0.0, -0.02],
        sodo=0.002,
    )


def moving_preintegration(n=10):
    parameters = make_parameters()
    pre = PreintegrationOdo(parameters, Imu(time=0.0, dt=DT, dtheta=[0.001, 0.002, 0.01], dvel=[0.1, 0.0, -0.98]), initial_state())
    for k in range(1, n + 1):
        pre.add_new_imu(
            Imu(
                time=k * DT,
                dt=DT,
                dtheta=[0.001, 0.002 * k / n, 0.01],
                dvel=[0.1, 0.02, -0.98],
                odovel=0.11,
            )
        )
    return pre


def straight_preintegration(sodo=0.0, n=10, odovel=0.1):
    parameters = make_parameters(gravity=0.0, abv=[0.0, 0.0, 0.0], lodo=[0.0, 0.0, 0.0])
    state = IntegrationState(q=Quaternion.identity(), v=[1.0, 0.0, 0.0], sodo=sodo)
    pre = PreintegrationOdo(parameters, Imu(time=0.0, dt=DT), state)
    for k in range(1, n + 1):
        pre.add_new_imu(Imu(time=k * DT, dt=DT, odovel=odovel))
    return pre, state


def blocks_of(state0, state1):
    d0 = PreintegrationOdo.state_to_data(state0)
    d1 = PreintegrationOdo.state_to_data(state1)
    return [d0.pose.copy(), d0.mix[:10].copy(), d1.pose.copy(), d1.mix[:10].copy()]


def perturbed(block, k, eps, is_pose):
    if is_pose:
        delta = np.zeros(6)
        delta[k] = eps
        return PoseParameterization().plus(block, delta)
    out = block.copy()
    out[k] += eps
    return out


def numeric_jacobian(pre, blocks, which, eps=1e-6):
    is_pose = which in (0, 2)
    size = 6 if is_pose else 10
    columns = []
    for k in range(size):
        plus = list(blocks)
        minus = list(blocks)
        plus[which] = perturbed(blocks[which], k, eps, is_pose)
        minus[which] = perturbed(blocks[which], k, -eps, is_pose)
        rp = pre.evaluate(*pre.construct_state(plus))
        rm = pre.evaluate(*pre.construct_state(minus))
        columns.append((rp - rm) / (2.0 * eps))
    return np.column_stack(columns)


def test_block_layout():
    pre = moving_preintegration(3)
    assert pre.num_blocks_parameters() == [7, 10, 7, 10]
    assert pre.num_residuals() == 19
    assert pre.num_mix_parameters_blocks() == 10


def test_state_data_round_trip_keeps_odometer_scale():
    state = initial_state()
    state.time = 4.5
    data = PreintegrationOdo.state_to_data(state)
    assert data.mix[9] == pytest.approx(state.sodo)
    back = PreintegrationOdo.state_from_data(data)
    assert back.time == pytest.approx(4.5)
    assert back.sodo == pytest.approx(state.sodo)
    np.testing.assert_allclose(back.p, state.p)
    np.testing.assert_allclose(back.v, state.v)
    np.testing.assert_allclose(back.bg, state.bg)
    np.testing.assert_allclose(back.ba, state.ba)
    np.testing.assert_allclose(back.q.coeffs(), state.q.coeffs())


def test_state_from_data_reads_index_nine():
    mix = np.zeros(18)
    mix[9] = 0.25
    data = IntegrationStateData(pose=[0, 0, 0, 0, 0, 0, 2.0], mix=mix)
    state = PreintegrationOdo.state_from_data(data)
    assert state.sodo == pytest.approx(0.25)
    assert state.q.w == pytest.approx(1.0)


def test_construct_state_reads_blocks():
    pre = moving_preintegration(3)
    state0 = initial_state()
    state1 = pre.current_state.copy()
    state1.sodo = 0.01
    s0, s1 = pre.construct_state(blocks_of(state0, state1))
    assert s0.sodo == pytest.approx(state0.sodo)
    assert s1.sodo == pytest.approx(0.01)
    np.testing.assert_allclose(s1.p, state1.p)
    np.testing.assert_allclose(s0.v, state0.v)


def test_construct_state_rejects_short_mixed_block():
    pre = moving_preintegration(3)
    blocks = blocks_of(initial_state(), initial_state())
    blocks[1] = blocks[1][:9]
    with pytest.raises(ValueError):
        pre.construct_state(blocks)


def test_jacobian_before_evaluate_raises():
    pre = moving_preintegration(3)
    state = initial_state()
    with pytest.raises(RuntimeError):
        pre.residual_jacobian_pose0(state, state)


def test_non_positive_correlation_time_raises():
    with pytest.raises(ValueError):
        PreintegrationOdo(make_parameters(corr_time=0.0), Imu(dt=DT), initial_state())


def test_covariance_is_symmetric_positive_definite():
    pre = moving_preintegration(10)
    cov = pre.covariance
    assert cov.shape == (19, 19)
    np.testing.assert_allclose(cov, cov.T, atol=1e-15)
    assert np.linalg.eigvalsh(0.5 * (cov + cov.T)).min() > 0.0


def test_straight_motion_odometer_distance():
    n, odovel, sodo = 10, 0.1, 0.5
    pre, _ = straight_preintegration(sodo=sodo, n=n, odovel=odovel)
    np.testing.assert_allclose(pre.delta_state.s, [n * odovel * (1.0 + sodo), 0.0, 0.0], atol=1e-12)
    assert pre.delta_time == pytest.approx(n * DT)
    assert pre.end_time == pytest.approx(n * DT)


def test_straight_motion_residual_vanishes():
    pre, state0 = straight_preintegration()
    state1 = pre.current_state.copy()
    np.testing.assert_allclose(state1.p, [1.0, 0.0, 0.0], atol=1e-12)
    residual = pre.evaluate(state0, state1)
    assert residual.shape == (19,)
    np.testing.assert_allclose(residual, np.zeros(19), atol=1e-6)


def test_odometer_scale_residual_component():
    pre, state0 = straight_preintegration()
    state1 = pre.current_state.copy()
    state1.sodo = state0.sodo + 0.03
    whitened = pre.evaluate(state0, state1)
    raw = np.linalg.solve(pre.sqrt_information, whitened)
    assert raw[18] == pytest.approx(0.03, abs=1e-9)
    np.testing.assert_allclose(raw[:15], np.zeros(15), atol=1e-8)


def test_reintegration_reproduces_delta_state():
    pre = moving_preintegration(8)
    s_before = pre.delta_state.s.copy()
    p_before = pre.delta_state.p.copy()
    cov_before = pre.covariance.copy()
    pre.reintegration(initial_state())
    np.testing.assert_allclose(pre.delta_state.s, s_before, atol=1e-12)
    np.testing.assert_allclose(pre.delta_state.p, p_before, atol=1e-12)
    np.testing.assert_allclose(pre.covariance, cov_before, rtol=1e-10, atol=1e-20)


def test_reintegration_with_new_scale_changes_displacement():
    pre = moving_preintegration(8)
    s_before = pre.delta_state.s.copy()
    state = initial_state()
    state.sodo = 0.1
    pre.reintegration(state)
    assert pre.delta_state.sodo == pytest.approx(0.1)
    assert np.linalg.norm(pre.delta_state.s - s_before) > 1e-3


@pytest.mark.parametrize(
    "which, method",
    [
        (0, "residual_jacobian_pose0"),
        (1, "residual_jacobian_mix0"),
        (2, "residual_jacobian_pose1"),
        (3, "residual_jacobian_mix1"),
    ],
)
def test_jacobians_match_finite_differences(which, method):
    pre = moving_preintegration(10)
    state0 = initial_state()
    state1 = pre.current_state.copy()
    state1.p = state1.p + np.array([0.01, -0.02, 0.005])
    state1.q = (state1.q * rotvec_to_quaternion([0.002, -0.001, 0.003])).normalized()
    state1.sodo = state0.sodo + 0.01
    blocks = blocks_of(state0, state1)

    s0, s1 = pre.construct_state(blocks)
    pre.evaluate(s0, s1)
    analytic = getattr(pre, method)(s0, s1)
    numeric = numeric_jacobian(pre, blocks, which)

    if which in (0, 2):
        assert analytic.shape == (19, 7)
        np.testing.assert_allclose(analytic[:, 6], np.zeros(19))
        analytic = analytic[:, :6]
    else:
        assert analytic.shape == (19, 10)

    scale = np.abs(analytic).max()
    np.testing.assert_allclose(numeric, analytic, rtol=1e-4, atol=1e-5 * scale)