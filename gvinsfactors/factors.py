"""GNSS position and visual reprojection cost functions."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from gvinsfactors.geometry import Quaternion, skew_symmetric
from gvinsfactors.integration_state import Gnss
from gvinsfactors.residual_block import CostFunction


def _pose(block) -> Tuple[np.ndarray, Quaternion]:
    arr = np.asarray(block, dtype=float).reshape(-1)
    if arr.size != 7:
        raise ValueError(f"pose block must have 7 elements, got {arr.size}")
    return arr[:3], Quaternion(arr[6], arr[3], arr[4], arr[5])


def _scalar(block) -> float:
    return float(np.asarray(block, dtype=float).reshape(-1)[0])


class GnssFactor(CostFunction):
    """Position residual between a pose with antenna lever arm and a GNSS fix."""

    def __init__(self, gnss: Gnss, lever):
        super().__init__(3, [7])
        self.gnss = gnss
        self.lever = np.asarray(lever, dtype=float).reshape(3)

    def update_gnss_state(self, gnss: Gnss) -> None:
        self.gnss = gnss

    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        p, q = _pose(parameters[0])
        rotation = q.to_matrix()
        sqrt_info = np.diag(1.0 / self.gnss.std)

        residual = sqrt_info @ (p + rotation @ self.lever - self.gnss.blh)
        if not compute_jacobians:
            return residual, None

        jacobian = np.zeros((3, 7))
        jacobian[:, 0:3] = np.eye(3)
        jacobian[:, 3:6] = -rotation @ skew_symmetric(self.lever)
        return residual, [sqrt_info @ jacobian]


class ReprojectionFactor(CostFunction):
    """Reprojection error of a feature seen in two frames, parameterized by inverse depth.

    Blocks: reference pose, current pose, camera extrinsic pose, inverse depth, time delay.
    ``std`` is the observation noise on the normalized image plane (pixel / focal length).
    """

    def __init__(self, pts0, pts1, vel0, vel1, td0: float, td1: float, std: float):
        super().__init__(2, [7, 7, 7, 1, 1])
        self.pts0 = np.asarray(pts0, dtype=float).reshape(3)
        self.pts1 = np.asarray(pts1, dtype=float).reshape(3)
        self.vel0 = np.asarray(vel0, dtype=float).reshape(3)
        self.vel1 = np.asarray(vel1, dtype=float).reshape(3)
        self.td0 = float(td0)
        self.td1 = float(td1)
        self.sqrt_info = np.eye(2) / float(std)

    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        p0, q0 = _pose(parameters[0])
        p1, q1 = _pose(parameters[1])
        tic, qic = _pose(parameters[2])
        id0 = _scalar(parameters[3])
        td = _scalar(parameters[4])

        pts_0_td = self.pts0 - (td - self.td0) * self.vel0
        pts_1_td = self.pts1 - (td - self.td1) * self.vel1

        pts_c_0 = pts_0_td / id0
        pts_b_0 = qic * pts_c_0 + tic
        pts_n = q0 * pts_b_0 + p0
        pts_b_1 = q1.inverse() * (pts_n - p1)
        pts_1 = qic.inverse() * (pts_b_1 - tic)

        d1 = pts_1[2]
        residual = self.sqrt_info @ (pts_1[:2] / d1 - pts_1_td[:2])
        if not compute_jacobians:
            return residual, None

        cb0n = q0.to_matrix()
        cnb1 = q1.to_matrix().T
        cbc = qic.to_matrix().T
        reduce = self.sqrt_info @ np.array(
            [
                [1.0 / d1, 0.0, -pts_1[0] / (d1 * d1)],
                [0.0, 1.0 / d1, -pts_1[1] / (d1 * d1)],
            ]
        )

        jaco_i = np.hstack([cbc @ cnb1, -cbc @ cnb1 @ cb0n @ skew_symmetric(pts_b_0)])
        jaco_j = np.hstack([-cbc @ cnb1, cbc @ skew_symmetric(pts_b_1)])

        tmp_r = cbc @ cnb1 @ cb0n @ cbc.T
        jaco_ex = np.hstack(
            [
                cbc @ (cnb1 @ cb0n - np.eye(3)),
                -tmp_r @ skew_symmetric(pts_c_0)
                + skew_symmetric(tmp_r @ pts_c_0)
                + skew_symmetric(cbc @ (cnb1 @ (cb0n @ tic + p0 - p1) - tic)),
            ]
        )

        def pose_jacobian(local: np.ndarray) -> np.ndarray:
            return np.hstack([reduce @ local, np.zeros((2, 1))])

        jacobian_feature = (-reduce @ tmp_r @ pts_0_td / (id0 * id0)).reshape(2, 1)
        jacobian_td = (-reduce @ tmp_r @ self.vel0 / id0 + self.sqrt_info @ self.vel1[:2]).reshape(2, 1)

        return residual, [
            pose_jacobian(jaco_i),
            pose_jacobian(jaco_j),
            pose_jacobian(jaco_ex),
            jacobian_feature,
            jacobian_td,
        ]