"""IMU preintegration without odometer or Earth rotation."""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from gvinsfactors.geometry import (
    quaternion_left,
    quaternion_right,
    rotvec_to_quaternion,
    skew_symmetric,
)
from gvinsfactors.integration_state import Imu, IntegrationState, IntegrationStateData
from gvinsfactors.preintegration_base import PreintegrationBase

_I3 = np.eye(3)


class PreintegrationNormal(PreintegrationBase):
    """Error state: position, velocity, attitude, gyroscope bias, accelerometer bias."""

    NUM_MIX = 9
    NUM_STATE = 15
    NUM_NOISE = 12

    def evaluate(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._update_sqrt_information()

        j = self.jacobian
        dp_dbg = j[0:3, 9:12]
        dp_dba = j[0:3, 12:15]
        dv_dbg = j[3:6, 9:12]
        dv_dba = j[3:6, 12:15]
        dq_dbg = j[6:9, 9:12]

        dbg = state0.bg - self.delta_state.bg
        dba = state0.ba - self.delta_state.ba

        self.corrected_p = self.delta_state.p + dp_dba @ dba + dp_dbg @ dbg
        self.corrected_v = self.delta_state.v + dv_dba @ dba + dv_dbg @ dbg
        self.corrected_q = self.delta_state.q * rotvec_to_quaternion(dq_dbg @ dbg)

        q0_inv = state0.q.inverse()
        residual = np.concatenate(
            [
                q0_inv * self._position_difference(state0, state1) - self.corrected_p,
                q0_inv * self._velocity_difference(state0, state1) - self.corrected_v,
                2.0 * (self.corrected_q.inverse() * q0_inv * state1.q).vec(),
                state1.bg - state0.bg,
                state1.ba - state0.ba,
            ]
        )
        return sqrt_info @ residual

    def residual_jacobian_pose0(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_POSE))

        q0_inv = state0.q.inverse()
        jaco[0:3, 0:3] = -q0_inv.to_matrix()
        jaco[0:3, 3:6] = skew_symmetric(q0_inv * self._position_difference(state0, state1))
        jaco[3:6, 3:6] = skew_symmetric(q0_inv * self._velocity_difference(state0, state1))
        jaco[6:9, 3:6] = -(
            quaternion_left(state1.q.inverse() * state0.q) @ quaternion_right(self.corrected_q)
        )[1:4, 1:4]

        return sqrt_info @ jaco

    def residual_jacobian_pose1(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_POSE))

        q0_inv = state0.q.inverse()
        jaco[0:3, 0:3] = q0_inv.to_matrix()
        jaco[6:9, 3:6] = quaternion_left(self.corrected_q.inverse() * q0_inv * state1.q)[1:4, 1:4]

        return sqrt_info @ jaco

    def residual_jacobian_mix0(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_MIX))

        j = self.jacobian
        dp_dbg = j[0:3, 9:12]
        dp_dba = j[0:3, 12:15]
        dv_dbg = j[3:6, 9:12]
        dv_dba = j[3:6, 12:15]
        dq_dbg = j[6:9, 9:12]

        cnb0 = state0.q.inverse().to_matrix()
        jaco[0:3, 0:3] = -cnb0 * self.delta_time
        jaco[0:3, 3:6] = -dp_dbg
        jaco[0:3, 6:9] = -dp_dba
        jaco[3:6, 0:3] = -cnb0
        jaco[3:6, 3:6] = -dv_dbg
        jaco[3:6, 6:9] = -dv_dba
        jaco[6:9, 3:6] = (
            -quaternion_left(state1.q.inverse() * state0.q * self.delta_state.q)[1:4, 1:4] @ dq_dbg
        )
        jaco[9:12, 3:6] = -_I3
        jaco[12:15, 6:9] = -_I3

        return sqrt_info @ jaco

    def residual_jacobian_mix1(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_MIX))

        jaco[3:6, 0:3] = state0.q.inverse().to_matrix()
        jaco[9:12, 3:6] = _I3
        jaco[12:15, 6:9] = _I3

        return sqrt_info @ jaco

    def construct_state(
        self, parameters: Sequence[np.ndarray]
    ) -> Tuple[IntegrationState, IntegrationState]:
        state0 = self._state_from_blocks(parameters[0], parameters[1])
        state1 = self._state_from_blocks(parameters[2], parameters[3])
        return state0, state1

    @staticmethod
    def state_to_data(state: IntegrationState) -> IntegrationStateData:
        return PreintegrationBase.state_to_data(state)

    @staticmethod
    def state_from_data(data: IntegrationStateData) -> IntegrationState:
        return PreintegrationBase.state_from_data(data)

    def _integration_process(self, index: int) -> None:
        imu_pre = self._compensation_bias(self.imu_buffer[index - 1])
        imu_cur = self._compensation_bias(self.imu_buffer[index])

        self._integration(imu_pre, imu_cur)
        self._update_jacobian_and_covariance(imu_pre, imu_cur)

    def _reset_state(self, state: IntegrationState) -> None:
        self.delta_time = 0.0
        delta = self.delta_state
        delta.p = np.zeros(3)
        delta.q = delta.q.identity()
        delta.v = np.zeros(3)
        delta.bg = state.bg.copy()
        delta.ba = state.ba.copy()

        self.jacobian = np.eye(self.NUM_STATE)
        self.covariance = np.zeros((self.NUM_STATE, self.NUM_STATE))

    def _update_jacobian_and_covariance(self, imu_pre: Imu, imu_cur: Imu) -> None:
        dt = imu_cur.dt
        corr = 1.0 - dt / self.parameters.corr_time
        rotation = self.delta_state.q.to_matrix()

        phi = np.zeros((self.NUM_STATE, self.NUM_STATE))
        phi[0:3, 0:3] = _I3
        phi[0:3, 3:6] = _I3 * dt
        phi[3:6, 3:6] = _I3
        phi[3:6, 6:9] = -rotation @ skew_symmetric(imu_cur.dvel)
        phi[3:6, 12:15] = -rotation * dt
        phi[6:9, 6:9] = _I3 - skew_symmetric(imu_cur.dtheta)
        phi[6:9, 9:12] = -_I3 * dt
        phi[9:12, 9:12] = _I3 * corr
        phi[12:15, 12:15] = _I3 * corr

        self.jacobian = phi @ self.jacobian

        gt = np.zeros((self.NUM_STATE, self.NUM_NOISE))
        gt[3:6, 3:6] = rotation
        gt[6:9, 0:3] = _I3
        gt[9:12, 6:9] = _I3
        gt[12:15, 9:12] = _I3

        gqg = gt @ self.noise @ gt.T
        qk = 0.5 * dt * (phi @ gqg + gqg @ phi.T)
        self.covariance = phi @ self.covariance @ phi.T + qk

    def _set_noise_matrix(self) -> None:
        p = self.parameters
        if p.corr_time <= 0.0:
            raise ValueError("corr_time must be positive")
        noise = np.eye(self.NUM_NOISE)
        noise[0:3, 0:3] *= p.gyr_arw * p.gyr_arw
        noise[3:6, 3:6] *= p.acc_vrw * p.acc_vrw
        noise[6:9, 6:9] *= 2.0 * p.gyr_bias_std * p.gyr_bias_std / p.corr_time
        noise[9:12, 9:12] *= 2.0 * p.acc_bias_std * p.acc_bias_std / p.corr_time
        self.noise = noise