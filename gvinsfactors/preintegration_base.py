"""Common machinery of IMU preintegration: buffering, continuous integration and state blocks."""

from __future__ import annotations

import dataclasses
import math
from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

import numpy as np

from gvinsfactors.geometry import Quaternion, rotvec_to_quaternion
from gvinsfactors.integration_state import (
    Imu,
    IntegrationParameters,
    IntegrationState,
    IntegrationStateData,
)


class PreintegrationBase(ABC):
    """IMU preintegration between two states.

    Holds the buffered IMU samples, the continuously integrated navigation state and
    the preintegrated relative motion, along with its jacobian with respect to the
    biases and its covariance. Subclasses define the error-state model.
    """

    NUM_POSE = 7
    NUM_STATE = 0
    NUM_NOISE = 0
    NUM_MIX = 0

    IMU_GRY_BIAS_STD = 7200 / 3600.0 * math.pi / 180.0  # 7200 deg / hr
    IMU_ACC_BIAS_STD = 2.0e4 * 1.0e-5  # 20000 mGal
    IMU_SCALE_STD = 5.0e3 * 1.0e-6  # 5000 PPM
    ODO_SCALE_STD = 2.0e4 * 1.0e-6  # 0.02

    def __init__(self, parameters: IntegrationParameters, imu0: Imu, state: IntegrationState):
        self.parameters = parameters
        self.current_state = state.copy()
        self.delta_state = IntegrationState()

        self.imu_buffer: List[Imu] = [imu0]
        self.delta_time = 0.0
        self.start_time = imu0.time
        self.end_time = imu0.time

        self.gravity = np.array([0.0, 0.0, float(parameters.gravity)])

        self.jacobian = np.zeros((0, 0))
        self.covariance = np.zeros((0, 0))
        self.noise = np.zeros((0, 0))
        self.sqrt_information = None

        self.corrected_p = np.zeros(3)
        self.corrected_v = np.zeros(3)
        self.corrected_q = Quaternion.identity()

        self._reset_state(self.current_state)
        self._set_noise_matrix()

    # ------------------------------------------------------------------ public

    def add_new_imu(self, imu: Imu) -> None:
        """Append an IMU sample and integrate it."""
        self.imu_buffer.append(imu)
        self._integration_process(len(self.imu_buffer) - 1)

    def reintegration(self, state: IntegrationState) -> None:
        """Restart from ``state`` and integrate every buffered sample again."""
        self.current_state = state.copy()
        self._reset_state(self.current_state)
        for index in range(1, len(self.imu_buffer)):
            self._integration_process(index)

    def num_residuals(self) -> int:
        return self.NUM_STATE

    def num_mix_parameters_blocks(self) -> int:
        return self.NUM_MIX

    def num_blocks_parameters(self) -> List[int]:
        """Sizes of the parameter blocks: pose0, mix0, pose1, mix1."""
        return [self.NUM_POSE, self.NUM_MIX, self.NUM_POSE, self.NUM_MIX]

    @abstractmethod
    def evaluate(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        """Whitened residual between two states; must precede the jacobian methods."""

    @abstractmethod
    def residual_jacobian_pose0(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        """Jacobian of the residual with respect to the first pose block."""

    @abstractmethod
    def residual_jacobian_pose1(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        """Jacobian of the residual with respect to the second pose block."""

    @abstractmethod
    def residual_jacobian_mix0(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        """Jacobian of the residual with respect to the first mixed block."""

    @abstractmethod
    def residual_jacobian_mix1(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        """Jacobian of the residual with respect to the second mixed block."""

    @abstractmethod
    def construct_state(
        self, parameters: Sequence[np.ndarray]
    ) -> Tuple[IntegrationState, IntegrationState]:
        """Build the two states from the pose0, mix0, pose1, mix1 blocks."""

    @staticmethod
    def state_to_data(state: IntegrationState) -> IntegrationStateData:
        """Flatten position, attitude, velocity and biases into parameter blocks."""
        pose = np.concatenate([state.p, state.q.coeffs()])
        mix = np.zeros(18)
        mix[0:3] = state.v
        mix[3:6] = state.bg
        mix[6:9] = state.ba
        return IntegrationStateData(time=state.time, pose=pose, mix=mix)

    @staticmethod
    def state_from_data(data: IntegrationStateData) -> IntegrationState:
        """Rebuild a state from parameter blocks, normalizing the attitude."""
        return IntegrationState(
            time=data.time,
            p=data.pose[0:3],
            q=Quaternion.from_coeffs(data.pose[3:7]).normalized(),
            v=data.mix[0:3],
            bg=data.mix[3:6],
            ba=data.mix[6:9],
        )

    # --------------------------------------------------------------- protected

    @abstractmethod
    def _update_jacobian_and_covariance(self, imu_pre: Imu, imu_cur: Imu) -> None:
        """Propagate the bias jacobian and the covariance by one step."""

    @abstractmethod
    def _reset_state(self, state: IntegrationState) -> None:
        """Clear the preintegrated quantities, taking the biases from ``state``."""

    @abstractmethod
    def _integration_process(self, index: int) -> None:
        """Integrate the buffered sample at ``index``."""

    @abstractmethod
    def _set_noise_matrix(self) -> None:
        """Build the continuous noise matrix."""

    def _require_evaluated(self) -> np.ndarray:
        if self.sqrt_information is None:
            raise RuntimeError("evaluate() must be called before the residual jacobians")
        return self.sqrt_information

    def _update_sqrt_information(self) -> np.ndarray:
        self.sqrt_information = np.linalg.cholesky(np.linalg.inv(self.covariance)).T
        return self.sqrt_information

    def _integration(self, imu_pre: Imu, imu_cur: Imu) -> None:
        """Integrate the navigation state and the relative motion over one sample."""
        dt = imu_cur.dt
        self.delta_time += dt

        self.end_time = imu_cur.time
        state = self.current_state
        state.time = imu_cur.time

        dvfb = (
            imu_cur.dvel
            + 0.5 * np.cross(imu_cur.dtheta, imu_cur.dvel)
            + 1.0 / 12.0 * (np.cross(imu_pre.dtheta, imu_cur.dvel) + np.cross(imu_pre.dvel, imu_cur.dtheta))
        )
        dvel = state.q.to_matrix() @ dvfb + self.gravity * dt

        state.p = state.p + dt * state.v + 0.5 * dt * dvel
        state.v = state.v + dvel

        dtheta = imu_cur.dtheta + 1.0 / 12.0 * np.cross(imu_pre.dtheta, imu_cur.dtheta)
        dq = rotvec_to_quaternion(dtheta)
        state.q = (state.q * dq).normalized()

        delta = self.delta_state
        dvel = delta.q.to_matrix() @ dvfb
        delta.p = delta.p + dt * delta.v + 0.5 * dt * dvel
        delta.v = delta.v + dvel
        delta.q = (delta.q * dq).normalized()

    def _compensation_bias(self, imu: Imu) -> Imu:
        return dataclasses.replace(
            imu,
            dtheta=imu.dtheta - imu.dt * self.delta_state.bg,
            dvel=imu.dvel - imu.dt * self.delta_state.ba,
        )

    def _compensation_scale(self, imu: Imu) -> Imu:
        return dataclasses.replace(
            imu,
            dtheta=imu.dtheta * (1.0 - self.delta_state.sg),
            dvel=imu.dvel * (1.0 - self.delta_state.sa),
        )

    def _position_difference(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        dt = self.delta_time
        return state1.p - state0.p - state0.v * dt - 0.5 * self.gravity * dt * dt

    def _velocity_difference(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        return state1.v - state0.v - self.gravity * self.delta_time

    @staticmethod
    def _state_from_blocks(pose_block, mix_block) -> IntegrationState:
        pose = np.asarray(pose_block, dtype=float).reshape(-1)
        mix = np.asarray(mix_block, dtype=float).reshape(-1)
        if pose.size != 7:
            raise ValueError(f"pose block must have 7 elements, got {pose.size}")
        if mix.size < 9:
            raise ValueError(f"mixed block must have at least 9 elements, got {mix.size}")
        return IntegrationState(
            p=pose[0:3],
            q=Quaternion(pose[6], pose[3], pose[4], pose[5]),
            v=mix[0:3],
            bg=mix[3:6],
            ba=mix[6:9],
        )