import math

import numpy as np
import pytest

from gvinsfactors.geometry import (
    PoseParameterization,
    Quaternion,
    euler_to_matrix,
    quaternion_left,
    quaternion_right,
    rotvec_to_quaternion,
    skew_symmetric,
)


def wxyz(q):
    return np.array([q.w, *q.vec()])


Q1 = rotvec_to_quaternion([0.3, -0.2, 0.5])
Q2 = rotvec_to_quaternion([-0.1, 0.7, 0.2])


def test_identity_coefficients_order():
    assert np.allclose(Quaternion.identity().coeffs(), [0.0, 0.0, 0.0, 1.0])


def test_coeffs_round_trip():
    coeffs = [0.1, 0.2, 0.3, 0.9]
    q = Quaternion.from_coeffs(coeffs)
    assert q.w == 0.9
    assert np.allclose(q.coeffs(), coeffs)
    assert np.allclose(q.vec(), coeffs[:3])


def test_from_coeffs_rejects_wrong_size():
    with pytest.raises(ValueError):
        Quaternion.from_coeffs([1.0, 2.0, 3.0])


def test_product_with_inverse_is_identity():
    q = Quaternion(2.0, 0.5, -1.0, 0.3)
    prod = q * q.inverse()
    assert np.allclose(prod.coeffs(), Quaternion.identity().coeffs())


def test_inverse_of_zero_is_zero():
    assert np.allclose(Quaternion(0.0, 0.0, 0.0, 0.0).inverse().coeffs(), np.zeros(4))


def test_normalized_has_unit_norm():
    q = Quaternion(2.0, 0.5, -1.0, 0.3).normalized()
    assert math.isclose(q.norm(), 1.0)


def test_rotation_matrix_is_orthonormal():
    r = Q1.to_matrix()
    assert np.allclose(r @ r.T, np.eye(3))
    assert math.isclose(np.linalg.det(r), 1.0)


def test_rotate_matches_matrix_and_operator():
    v = np.array([1.0, -2.0, 0.5])
    assert np.allclose(Q1.rotate(v), Q1.to_matrix() @ v)
    assert np.allclose(Q1 * v, Q1.to_matrix() @ v)


def test_product_composes_rotations():
    assert np.allclose((Q1 * Q2).to_matrix(), Q1.to_matrix() @ Q2.to_matrix())


def test_rotvec_quarter_turn_about_z():
    q = rotvec_to_quaternion([0.0, 0.0, math.pi / 2])
    assert np.allclose(q.rotate([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


def test_rotvec_zero_is_identity():
    assert np.allclose(rotvec_to_quaternion(np.zeros(3)).coeffs(), Quaternion.identity().coeffs())


def test_rotvec_axis_is_fixed():
    rv = np.array([0.2, 0.4, -0.3])
    assert np.allclose(rotvec_to_quaternion(rv).rotate(rv), rv)


def test_skew_symmetric_is_cross_product():
    a = np.array([1.0, 2.0, 3.0])
    b = np.array([-0.5, 0.4, 2.0])
    s = skew_symmetric(a)
    assert np.allclose(s @ b, np.cross(a, b))
    assert np.allclose(s, -s.T)


def test_quaternion_left_and_right_products():
    assert np.allclose(quaternion_left(Q1) @ wxyz(Q2), wxyz(Q1 * Q2))
    assert np.allclose(quaternion_right(Q2) @ wxyz(Q1), wxyz(Q1 * Q2))


def test_euler_yaw_only_matches_rotvec():
    assert np.allclose(euler_to_matrix([0.0, 0.0, 0.7]), rotvec_to_quaternion([0.0, 0.0, 0.7]).to_matrix())


def test_euler_order_is_z_y_x():
    roll, pitch, yaw = 0.1, -0.3, 1.2
    expected = (
        rotvec_to_quaternion([0, 0, yaw])
        * rotvec_to_quaternion([0, pitch, 0])
        * rotvec_to_quaternion([roll, 0, 0])
    ).to_matrix()
    assert np.allclose(euler_to_matrix([roll, pitch, yaw]), expected)


def test_pose_plus_zero_delta_keeps_pose():
    x = np.concatenate([[1.0, 2.0, 3.0], Q1.coeffs()])
    assert np.allclose(PoseParameterization().plus(x, np.zeros(6)), x)


def test_pose_plus_composes_rotation_and_translation():
    x = np.concatenate([[1.0, 2.0, 3.0], Q1.coeffs()])
    delta = np.array([0.1, -0.2, 0.3, 0.05, 0.02, -0.04])
    out = PoseParameterization().plus(x, delta)
    assert np.allclose(out[:3], x[:3] + delta[:3])
    q = Quaternion.from_coeffs(out[3:])
    assert math.isclose(q.norm(), 1.0)
    assert np.allclose(q.to_matrix(), Q1.to_matrix() @ rotvec_to_quaternion(delta[3:]).to_matrix())


def test_pose_jacobian_layout():
    j = PoseParameterization().compute_jacobian(np.zeros(7))
    assert j.shape == (7, 6)
    assert np.allclose(j[:6], np.eye(6))
    assert np.allclose(j[6], np.zeros(6))


def test_pose_plus_rejects_bad_delta():
    with pytest.raises(ValueError):
        PoseParameterization().plus(np.zeros(7), np.zeros(5))