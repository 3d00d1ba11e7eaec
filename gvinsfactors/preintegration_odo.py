"""IMU preintegration with an odometer, without Earth rotation."""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from gvinsfactors.geometry import (
    euler_to_matrix,
    quaternion_left,
    quaternion_right,
    rotvec_to_quaternion,
    skew_symmetric,
)
from gvinsfactors.integration_state import (
    Imu,
    IntegrationParameters,
    IntegrationState,
    IntegrationStateData,
)
from gvinsfactors.preintegration_base import PreintegrationBase

_I3 = np.eye(3)


class PreintegrationOdo(PreintegrationBase):
    """Error state: position, velocity, attitude, gyroscope bias, accelerometer bias,
    odometer displacement and odometer scale factor.

    The mixed parameter block holds velocity, gyroscope bias, accelerometer bias and
    the odometer scale factor.
    """

    NUM_MIX = 10
    NUM_STATE = 19
    NUM_NOISE = 16
    NUM_ERROR_RESIDUAL = 7

    def __init__(self, parameters: IntegrationParameters, imu0: Imu, state: IntegrationState):
        # Rotation from the vehicle frame to the body frame and odometer lever arm.
        self.cvb = euler_to_matrix(parameters.abv).T
        self.lodo = np.array(parameters.lodo, dtype=float)
        self.corrected_s = np.zeros(3)
        super().__init__(parameters, imu0, state)

    # ------------------------------------------------------------------ public

    def evaluate(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._update_sqrt_information()
        dp_dbg, dp_dba, dv_dbg, dv_dba, dq_dbg, ds_dsodo, ds_dbg = self._bias_jacobians()

        delta = self.delta_state
        dbg = state0.bg - delta.bg
        dba = state0.ba - delta.ba
        dsodo = state0.sodo - delta.sodo

        self.corrected_p = delta.p + dp_dba @ dba + dp_dbg @ dbg
        self.corrected_v = delta.v + dv_dba @ dba + dv_dbg @ dbg
        self.corrected_q = delta.q * rotvec_to_quaternion(dq_dbg @ dbg)
        self.corrected_s = delta.s + ds_dbg @ dbg + ds_dsodo * dsodo

        q0_inv = state0.q.inverse()
        residual = np.concatenate(
            [
                q0_inv * self._position_difference(state0, state1) - self.corrected_p,
                q0_inv * self._velocity_difference(state0, state1) - self.corrected_v,
                2.0 * (self.corrected_q.inverse() * q0_inv * state1.q).vec(),
                state1.bg - state0.bg,
                state1.ba - state0.ba,
                q0_inv * (state1.p - state0.p) - self.corrected_s,
                [state1.sodo - state0.sodo],
            ]
        )
        return sqrt_info @ residual

    def residual_jacobian_pose0(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_POSE))

        q0_inv = state0.q.inverse()
        cnb0 = q0_inv.to_matrix()
        jaco[0:3, 0:3] = -cnb0
        jaco[0:3, 3:6] = skew_symmetric(q0_inv * self._position_difference(state0, state1))
        jaco[3:6, 3:6] = skew_symmetric(q0_inv * self._velocity_difference(state0, state1))
        jaco[6:9, 3:6] = -(
            quaternion_left(state1.q.inverse() * state0.q) @ quaternion_right(self.corrected_q)
        )[1:4, 1:4]
        jaco[15:18, 0:3] = -cnb0
        jaco[15:18, 3:6] = skew_symmetric(q0_inv * (state1.p - state0.p))

        return sqrt_info @ jaco

    def residual_jacobian_pose1(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_POSE))

        q0_inv = state0.q.inverse()
        cnb0 = q0_inv.to_matrix()
        jaco[0:3, 0:3] = cnb0
        jaco[6:9, 3:6] = quaternion_left(self.corrected_q.inverse() * q0_inv * state1.q)[1:4, 1:4]
        jaco[15:18, 0:3] = cnb0

        return sqrt_info @ jaco

    def residual_jacobian_mix0(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_MIX))
        dp_dbg, dp_dba, dv_dbg, dv_dba, dq_dbg, ds_dsodo, ds_dbg = self._bias_jacobians()

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
        jaco[15:18, 3:6] = -ds_dbg
        jaco[15:18, 9] = -ds_dsodo
        jaco[18, 9] = -1.0

        return sqrt_info @ jaco

    def residual_jacobian_mix1(self, state0: IntegrationState, state1: IntegrationState) -> np.ndarray:
        sqrt_info = self._require_evaluated()
        jaco = np.zeros((self.NUM_STATE, self.NUM_MIX))

        jaco[3:6, 0:3] = state0.q.inverse().to_matrix()
        jaco[9:12, 3:6] = _I3
        jaco[12:15, 6:9] = _I3
        jaco[18, 9] = 1.0

        return sqrt_info @ jaco

    def construct_state(
        self, parameters: Sequence[np.ndarray]
    ) -> Tuple[IntegrationState, IntegrationState]:
        state0 = self._odo_state_from_blocks(parameters[0], parameters[1])
        state1 = self._odo_state_from_blocks(parameters[2], parameters[3])
        return state0, state1

    @staticmethod
    def state_to_data(state: IntegrationState) -> IntegrationStateData:
        data = PreintegrationBase.state_to_data(state)
        data.mix[9] = state.sodo
        return data

    @staticmethod
    def state_from_data(data: IntegrationStateData) -> IntegrationState:
        state = PreintegrationBase.state_from_data(data)
        state.sodo = float(data.mix[9])
        return state

    # --------------------------------------------------------------- internals

    def _bias_jacobians(self):
        j = self.jacobian
        return (
            j[0:3, 9:12],
            j[0:3, 12:15],
            j[3:6, 9:12],
            j[3:6, 12:15],
            j[6:9, 9:12],
            j[15:18, 18],
            j[15:18, 9:12],
        )

    @classmethod
    def _odo_state_from_blocks(cls, pose_block, mix_block) -> IntegrationState:
        mix = np.asarray(mix_block, dtype=float).reshape(-1)
        if mix.size < cls.NUM_MIX:
            raise ValueError(f"mixed block must have at least {cls.NUM_MIX} elements, got {mix.size}")
        state = cls._state_from_blocks(pose_block, mix)
        state.sodo = float(mix[9])
        return state

    def _integration_process(self, index: int) -> None:
        imu_pre = self._compensation_bias(self.imu_buffer[index - 1])
        imu_cur = self._compensation_bias(self.imu_buffer[index])

        # Relative odometer displacement, accumulated before the attitude update.
        delta = self.delta_state
        dsodo = np.array([imu_cur.odovel, 0.0, 0.0])
        lever_motion = rotvec_to_quaternion(imu_cur.dtheta).to_matrix() @ self.lodo
        delta.s = delta.s + delta.q.to_matrix() @ (
            self.cvb @ dsodo * (1.0 + delta.sodo) - lever_motion + self.lodo
        )

        self._integration(imu_pre, imu_cur)
        self._update_jacobian_and_covariance(imu_pre, imu_cur)

    def _reset_state(self, state: IntegrationState) -> None:
        self.delta_time = 0.0
        delta = self.delta_state
        delta.p = np.zeros(3)
        delta.q = delta.q.identity()
        delta.v = np.zeros(3)
        delta.s = np.zeros(3)
        delta.bg = state.bg.copy()
        delta.ba = state.ba.copy()
        delta.sodo = float(state.sodo)

        self.jacobian = np.eye(self.NUM_STATE)
        self.covariance = np.zeros((self.NUM_STATE, self.NUM_STATE))

    def _update_jacobian_and_covariance(self, imu_pre: Imu, imu_cur: Imu) -> None:
        dt = imu_cur.dt
        corr = 1.0 - dt / self.parameters.corr_time
        rotation = self.delta_state.q.to_matrix()
        sodo = self.delta_state.sodo

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

        dsodo = np.array([imu_cur.odovel, 0.0, 0.0])
        stheta = self.cvb @ dsodo * (1.0 + sodo) - np.cross(imu_cur.dtheta, self.lodo)

        phi[15:18, 6:9] = -rotation @ skew_symmetric(stheta)
        phi[15:18, 9:12] = -rotation @ skew_symmetric(self.lodo) * dt
        phi[15:18, 15:18] = _I3
        phi[15:18, 18] = rotation @ self.cvb @ dsodo
        phi[18, 18] = 1.0

        self.jacobian = phi @ self.jacobian

        gt = np.zeros((self.NUM_STATE, self.NUM_NOISE))
        gt[3:6, 3:6] = rotation
        gt[6:9, 0:3] = _I3
        gt[9:12, 6:9] = _I3
        gt[12:15, 9:12] = _I3
        gt[15:18, 0:3] = rotation @ skew_symmetric(self.lodo)
        gt[15:18, 12:15] = rotation @ self.cvb * (1.0 + sodo)
        gt[18, 15] = 1.0

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
        for k in range(3):
            noise[12 + k, 12 + k] *= p.odo_std[k] * p.odo_std[k]
        noise[15, 15] *= p.odo_srw * p.odo_srw
        self.noise = noise