"""Prior and bias-error cost functions on IMU state blocks."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from gvinsfactors.geometry import Quaternion, quaternion_right
from gvinsfactors.preintegration import PreintegrationOptions, num_mix_parameter
from gvinsfactors.preintegration_base import PreintegrationBase
from gvinsfactors.residual_block import CostFunction

_WITHOUT_ODO = (PreintegrationOptions.NORMAL, PreintegrationOptions.EARTH)


def _block(values, min_size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float).reshape(-1)
    if arr.size < min_size:
        raise ValueError(f"{name} must have at least {min_size} elements, got {arr.size}")
    return arr


class ImuErrorFactor(CostFunction):
    """Soft bound on the IMU biases (and odometer scale) of a mixed block."""

    IMU_GRY_BIAS_STD = PreintegrationBase.IMU_GRY_BIAS_STD
    IMU_ACC_BIAS_STD = PreintegrationBase.IMU_ACC_BIAS_STD
    ODO_SCALE_STD = PreintegrationBase.ODO_SCALE_STD

    def __init__(self, options):
        self.options = PreintegrationOptions(options)
        self.with_odo = self.options not in _WITHOUT_ODO
        super().__init__(7 if self.with_odo else 6, [num_mix_parameter(self.options)])

    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        size = self.parameter_block_sizes[0]
        mix = _block(parameters[0], size, "mixed block")

        residuals = np.zeros(self.num_residuals)
        residuals[0:3] = mix[3:6] / self.IMU_GRY_BIAS_STD
        residuals[3:6] = mix[6:9] / self.IMU_ACC_BIAS_STD
        if self.with_odo:
            residuals[6] = mix[9] / self.ODO_SCALE_STD

        if not compute_jacobians:
            return residuals, None

        jacobian = np.zeros((self.num_residuals, size))
        jacobian[0:3, 3:6] = np.eye(3) / self.IMU_GRY_BIAS_STD
        jacobian[3:6, 6:9] = np.eye(3) / self.IMU_ACC_BIAS_STD
        if self.with_odo:
            jacobian[6, 9] = 1.0 / self.ODO_SCALE_STD
        return residuals, [jacobian]


class ImuMixPriorFactor(CostFunction):
    """Prior on velocity, biases and, with an odometer, its scale factor."""

    def __init__(self, options, mix, mix_std):
        self.options = PreintegrationOptions(options)
        size = num_mix_parameter(self.options)
        super().__init__(size, [size])
        self.mix = _block(mix, size, "mix").copy()
        self.mix_std = _block(mix_std, size, "mix_std").copy()

    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        n = self.num_residuals
        x = _block(parameters[0], n, "mixed block")[:n]
        std = self.mix_std[:n]

        residuals = (x - self.mix[:n]) / std
        if not compute_jacobians:
            return residuals, None
        return residuals, [np.diag(1.0 / std)]


class ImuPosePriorFactor(CostFunction):
    """Prior on a pose block: position and attitude with six standard deviations."""

    def __init__(self, pose, std):
        super().__init__(6, [7])
        pose = np.asarray(pose, dtype=float).reshape(-1)
        std = np.asarray(std, dtype=float).reshape(-1)
        if pose.size != 7:
            raise ValueError(f"pose must have 7 elements, got {pose.size}")
        if std.size != 6:
            raise ValueError(f"std must have 6 elements, got {std.size}")
        self.pose = pose.copy()
        self.sqrt_info = np.diag(1.0 / std)

    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        x = np.asarray(parameters[0], dtype=float).reshape(-1)
        if x.size != 7:
            raise ValueError(f"pose block must have 7 elements, got {x.size}")

        q_prior = Quaternion(self.pose[6], self.pose[3], self.pose[4], self.pose[5])
        q = Quaternion(x[6], x[3], x[4], x[5])
        dq = q.inverse() * q_prior

        residual = np.concatenate([x[0:3] - self.pose[0:3], 2.0 * dq.vec()])
        residuals = self.sqrt_info @ residual
        if not compute_jacobians:
            return residuals, None

        jacobian = np.zeros((6, 7))
        jacobian[0:3, 0:3] = np.eye(3)
        jacobian[3:6, 3:6] = -quaternion_right(dq)[1:4, 1:4]
        return residuals, [self.sqrt_info @ jacobian]