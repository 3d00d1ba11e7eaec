"""Quaternion algebra, rotation helpers and the pose manifold parameterization."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

ArrayLike = Union[Sequence[float], np.ndarray]


def _vector(values: ArrayLike, size: int, name: str = "vector") -> np.ndarray:
    arr = np.asarray(values, dtype=float).reshape(-1)
    if arr.size != size:
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


@dataclass(frozen=True)
class Quaternion:
    """Hamilton quaternion ``w + xi + yj + zk``; coefficient order is x, y, z, w."""

    w: float
    x: float
    y: float
    z: float

    @classmethod
    def identity(cls) -> "Quaternion":
        return cls(1.0, 0.0, 0.0, 0.0)

    @classmethod
    def from_coeffs(cls, coeffs: ArrayLike) -> "Quaternion":
        """Build from coefficients stored as x, y, z, w."""
        x, y, z, w = _vector(coeffs, 4, "quaternion coefficients")
        return cls(float(w), float(x), float(y), float(z))

    def coeffs(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z, self.w], dtype=float)

    def vec(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    def squared_norm(self) -> float:
        return self.w * self.w + self.x * self.x + self.y * self.y + self.z * self.z

    def norm(self) -> float:
        return math.sqrt(self.squared_norm())

    def conjugate(self) -> "Quaternion":
        return Quaternion(self.w, -self.x, -self.y, -self.z)

    def inverse(self) -> "Quaternion":
        """Inverse; a zero quaternion yields the zero quaternion."""
        n2 = self.squared_norm()
        if n2 <= 0.0:
            return Quaternion(0.0, 0.0, 0.0, 0.0)
        return Quaternion(self.w / n2, -self.x / n2, -self.y / n2, -self.z / n2)

    def normalized(self) -> "Quaternion":
        """Unit quaternion; a zero quaternion is returned unchanged."""
        n = self.norm()
        if n <= 0.0:
            return self
        return Quaternion(self.w / n, self.x / n, self.y / n, self.z / n)

    def to_matrix(self) -> np.ndarray:
        """Rotation matrix of a unit quaternion."""
        w, x, y, z = self.w, self.x, self.y, self.z
        tx, ty, tz = 2.0 * x, 2.0 * y, 2.0 * z
        twx, twy, twz = tx * w, ty * w, tz * w
        txx, txy, txz = tx * x, ty * x, tz * x
        tyy, tyz, tzz = ty * y, tz * y, tz * z
        return np.array(
            [
                [1.0 - (tyy + tzz), txy - twz, txz + twy],
                [txy + twz, 1.0 - (txx + tzz), tyz - twx],
                [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
            ]
        )

    def rotate(self, v: ArrayLike) -> np.ndarray:
        """Rotate a 3-vector by this (unit) quaternion."""
        v = _vector(v, 3)
        u = self.vec()
        uv = 2.0 * np.cross(u, v)
        return v + self.w * uv + np.cross(u, uv)

    def __mul__(self, other):
        if isinstance(other, Quaternion):
            v1, v2 = self.vec(), other.vec()
            w = self.w * other.w - float(v1 @ v2)
            v = self.w * v2 + other.w * v1 + np.cross(v1, v2)
            return Quaternion(w, float(v[0]), float(v[1]), float(v[2]))
        if isinstance(other, (np.ndarray, list, tuple)):
            return self.rotate(other)
        return NotImplemented


def skew_symmetric(v: ArrayLike) -> np.ndarray:
    """Cross-product matrix: ``skew_symmetric(a) @ b == cross(a, b)``."""
    x, y, z = _vector(v, 3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def rotvec_to_quaternion(rotvec: ArrayLike) -> Quaternion:
    """Quaternion of the rotation given as axis times angle."""
    rv = _vector(rotvec, 3, "rotation vector")
    angle = float(np.linalg.norm(rv))
    if angle == 0.0:
        return Quaternion.identity()
    axis = rv / angle
    s = math.sin(0.5 * angle)
    return Quaternion(math.cos(0.5 * angle), s * axis[0], s * axis[1], s * axis[2])


def quaternion_left(q: Quaternion) -> np.ndarray:
    """Matrix L(q) with ``L(q) @ [p.w, p.vec] == q * p``."""
    m = np.empty((4, 4))
    m[0, 0] = q.w
    m[0, 1:] = -q.vec()
    m[1:, 0] = q.vec()
    m[1:, 1:] = q.w * np.eye(3) + skew_symmetric(q.vec())
    return m


def quaternion_right(q: Quaternion) -> np.ndarray:
    """Matrix R(q) with ``R(q) @ [p.w, p.vec] == p * q``."""
    m = np.empty((4, 4))
    m[0, 0] = q.w
    m[0, 1:] = -q.vec()
    m[1:, 0] = q.vec()
    m[1:, 1:] = q.w * np.eye(3) - skew_symmetric(q.vec())
    return m


def euler_to_matrix(euler: ArrayLike) -> np.ndarray:
    """Rotation matrix from roll, pitch, yaw applied as Rz(yaw) Ry(pitch) Rx(roll)."""
    roll, pitch, yaw = _vector(euler, 3, "euler angles")
    rz = rotvec_to_quaternion([0.0, 0.0, yaw]).to_matrix()
    ry = rotvec_to_quaternion([0.0, pitch, 0.0]).to_matrix()
    rx = rotvec_to_quaternion([roll, 0.0, 0.0]).to_matrix()
    return rz @ ry @ rx


class PoseParameterization:
    """Manifold of a pose stored as position (3) and quaternion x, y, z, w (4)."""

    global_size = 7
    local_size = 6

    def plus(self, x: ArrayLike, delta: ArrayLike) -> np.ndarray:
        x = _vector(x, self.global_size, "pose")
        delta = _vector(delta, self.local_size, "pose increment")
        p = x[:3] + delta[:3]
        q = (Quaternion.from_coeffs(x[3:7]) * rotvec_to_quaternion(delta[3:6])).normalized()
        return np.concatenate([p, q.coeffs()])

    def compute_jacobian(self, x: ArrayLike) -> np.ndarray:
        _vector(x, self.global_size, "pose")
        jacobian = np.zeros((self.global_size, self.local_size))
        jacobian[: self.local_size, :] = np.eye(self.local_size)
        return jacobian