import numpy as np
import pytest

from gvinsfactors.geometry import PoseParameterization, Quaternion, rotvec_to_quaternion
from gvinsfactors.imu_factors import ImuErrorFactor, ImuMixPriorFactor, ImuPosePriorFactor
from gvinsfactors.preintegration import PreintegrationOptions


def _mix(size):
    return np.linspace(0.1, 0.1 * size, size) * 1e-2


def test_error_factor_sizes():
    normal = ImuErrorFactor(PreintegrationOptions.NORMAL)
    odo = ImuErrorFactor(PreintegrationOptions.EARTH_ODO)
    assert normal.num_residuals == 6
    assert normal.parameter_block_sizes == [9]
    assert odo.num_residuals == 7
    assert odo.parameter_block_sizes == [10]


def test_error_factor_scales_biases():
    factor = ImuErrorFactor(PreintegrationOptions.ODO)
    mix = _mix(10)
    residuals, _ = factor.evaluate([mix], compute_jacobians=False)
    np.testing.assert_allclose(residuals[0:3] * factor.IMU_GRY_BIAS_STD, mix[3:6])
    np.testing.assert_allclose(residuals[3:6] * factor.IMU_ACC_BIAS_STD, mix[6:9])
    assert residuals[6] * factor.ODO_SCALE_STD == pytest.approx(mix[9])


@pytest.mark.parametrize("options", list(PreintegrationOptions))
def test_error_factor_is_linear(options):
    factor = ImuErrorFactor(options)
    mix = _mix(factor.parameter_block_sizes[0])
    residuals, jacobians = factor.evaluate([mix])
    assert jacobians[0].shape == (factor.num_residuals, mix.size)
    np.testing.assert_allclose(jacobians[0] @ mix, residuals)
    assert not jacobians[0][:, 0:3].any()


def test_error_factor_rejects_short_block():
    with pytest.raises(ValueError):
        ImuErrorFactor(PreintegrationOptions.ODO).evaluate([np.zeros(9)])


@pytest.mark.parametrize("options", list(PreintegrationOptions))
def test_mix_prior_zero_at_prior(options):
    prior = _mix(18)
    factor = ImuMixPriorFactor(options, prior, np.full(18, 0.5))
    n = factor.num_residuals
    residuals, jacobians = factor.evaluate([prior[:n]])
    np.testing.assert_allclose(residuals, np.zeros(n))
    assert jacobians[0].shape == (n, n)


def test_mix_prior_residual_and_jacobian():
    prior = _mix(18)
    std = np.linspace(0.5, 2.0, 18)
    factor = ImuMixPriorFactor(PreintegrationOptions.ODO, prior, std)
    assert factor.num_residuals == 10
    x = prior[:10] + 0.3
    residuals, jacobians = factor.evaluate([x])
    np.testing.assert_allclose(residuals * std[:10], x - prior[:10])
    np.testing.assert_allclose(jacobians[0] @ (x - prior[:10]), residuals)


def test_mix_prior_rejects_short_prior():
    with pytest.raises(ValueError):
        ImuMixPriorFactor(PreintegrationOptions.ODO, np.zeros(9), np.ones(18))


def _pose(position, rotvec):
    q = rotvec_to_quaternion(rotvec)
    return np.concatenate([position, q.coeffs()])


def test_pose_prior_zero_at_prior():
    pose = _pose([1.0, 2.0, 3.0], [0.1, -0.2, 0.3])
    factor = ImuPosePriorFactor(pose, np.ones(6))
    residuals, _ = factor.evaluate([pose], compute_jacobians=False)
    np.testing.assert_allclose(residuals, np.zeros(6), atol=1e-12)


def test_pose_prior_position_residual():
    pose = _pose([1.0, 2.0, 3.0], [0.1, -0.2, 0.3])
    std = np.array([0.5, 1.0, 2.0, 0.1, 0.1, 0.1])
    factor = ImuPosePriorFactor(pose, std)
    x = pose.copy()
    x[0:3] += [0.5, -1.0, 4.0]
    residuals, _ = factor.evaluate([x])
    np.testing.assert_allclose(residuals[0:3] * std[0:3], [0.5, -1.0, 4.0])


def test_pose_prior_jacobian_matches_manifold_finite_difference():
    prior = _pose([1.0, 2.0, 3.0], [0.1, -0.2, 0.3])
    std = np.array([0.5, 1.0, 2.0, 0.1, 0.2, 0.3])
    factor = ImuPosePriorFactor(prior, std)
    x = _pose([1.2, 1.9, 3.1], [0.15, -0.25, 0.2])
    _, jacobians = factor.evaluate([x])

    manifold = PoseParameterization()
    h = 1e-6
    numeric = np.zeros((6, 6))
    for k in range(6):
        delta = np.zeros(6)
        delta[k] = h
        r_plus, _ = factor.evaluate([manifold.plus(x, delta)], compute_jacobians=False)
        r_minus, _ = factor.evaluate([manifold.plus(x, -delta)], compute_jacobians=False)
        numeric[:, k] = (r_plus - r_minus) / (2.0 * h)

    np.testing.assert_allclose(jacobians[0][:, 0:6], numeric, atol=1e-4)
    assert not jacobians[0][:, 6].any()


def test_pose_prior_attitude_jacobian_at_prior_is_negative_scaled_identity():
    pose = np.concatenate([[0.0, 0.0, 0.0], Quaternion.identity().coeffs()])
    std = np.array([1.0, 1.0, 1.0, 0.5, 0.5, 0.5])
    _, jacobians = ImuPosePriorFactor(pose, std).evaluate([pose])
    np.testing.assert_allclose(jacobians[0][3:6, 3:6], -np.eye(3) / 0.5)
    np.testing.assert_allclose(jacobians[0][0:3, 0:3], np.eye(3))


def test_pose_prior_rejects_bad_sizes():
    with pytest.raises(ValueError):
        ImuPosePriorFactor(np.zeros(7), np.ones(5))
    with pytest.raises(ValueError):
        ImuPosePriorFactor(np.zeros(6), np.ones(6))