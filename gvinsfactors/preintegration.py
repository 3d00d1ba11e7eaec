"""Choice of preintegration model and the cost function that wraps a preintegration."""

from __future__ import annotations

from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple, Type

import numpy as np

from gvinsfactors.integration_state import (
    Imu,
    IntegrationConfiguration,
    IntegrationParameters,
    IntegrationState,
    IntegrationStateData,
)
from gvinsfactors.preintegration_base import PreintegrationBase
from gvinsfactors.preintegration_normal import PreintegrationNormal
from gvinsfactors.preintegration_odo import PreintegrationOdo
from gvinsfactors.residual_block import CostFunction


class PreintegrationOptions(IntEnum):
    """Preintegration model; the value is the sum of the odometer and Earth-rotation flags."""

    NORMAL = 0
    ODO = 1
    EARTH = 2
    EARTH_ODO = 3


# Mixed block sizes of the Earth-rotation models: velocity and biases, plus the
# odometer scale factor when the odometer is used.
_EARTH_NUM_MIX = 9
_EARTH_ODO_NUM_MIX = 10

_MODELS: Dict[PreintegrationOptions, Type[PreintegrationBase]] = {
    PreintegrationOptions.NORMAL: PreintegrationNormal,
    PreintegrationOptions.ODO: PreintegrationOdo,
}

# The Earth-rotation models store their states exactly like their plain counterparts.
_DATA_LAYOUT: Dict[PreintegrationOptions, Type[PreintegrationBase]] = {
    PreintegrationOptions.NORMAL: PreintegrationNormal,
    PreintegrationOptions.ODO: PreintegrationOdo,
    PreintegrationOptions.EARTH: PreintegrationNormal,
    PreintegrationOptions.EARTH_ODO: PreintegrationOdo,
}

_NUM_MIX: Dict[PreintegrationOptions, int] = {
    PreintegrationOptions.NORMAL: PreintegrationNormal.NUM_MIX,
    PreintegrationOptions.ODO: PreintegrationOdo.NUM_MIX,
    PreintegrationOptions.EARTH: _EARTH_NUM_MIX,
    PreintegrationOptions.EARTH_ODO: _EARTH_ODO_NUM_MIX,
}


def get_options(config: IntegrationConfiguration) -> PreintegrationOptions:
    """Model selected by a configuration."""
    value = PreintegrationOptions.NORMAL.value
    if config.isuseodo:
        value += PreintegrationOptions.ODO.value
    if config.iswithearth:
        value += PreintegrationOptions.EARTH.value
    return PreintegrationOptions(value)


def create_preintegration(
    parameters: IntegrationParameters,
    imu0: Imu,
    state: IntegrationState,
    options,
) -> PreintegrationBase:
    """Start a preintegration of the chosen model from the first IMU sample and state."""
    options = PreintegrationOptions(options)
    try:
        model = _MODELS[options]
    except KeyError:
        raise ValueError(f"no preintegration model available for {options.name}") from None
    return model(parameters, imu0, state)


def num_pose_parameter() -> int:
    return PreintegrationBase.NUM_POSE


def num_mix_parameter(options) -> int:
    return _NUM_MIX[PreintegrationOptions(options)]


def state_to_data(state: IntegrationState, options) -> IntegrationStateData:
    return _DATA_LAYOUT[PreintegrationOptions(options)].state_to_data(state)


def state_from_data(data: IntegrationStateData, options) -> IntegrationState:
    return _DATA_LAYOUT[PreintegrationOptions(options)].state_from_data(data)


class PreintegrationFactor(CostFunction):
    """Residual of a preintegration between blocks pose0, mix0, pose1, mix1."""

    def __init__(self, preintegration: PreintegrationBase):
        super().__init__(preintegration.num_residuals(), preintegration.num_blocks_parameters())
        self.preintegration = preintegration

    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        pre = self.preintegration
        state0, state1 = pre.construct_state(parameters)

        residuals = pre.evaluate(state0, state1)
        if not compute_jacobians:
            return residuals, None

        jacobians = [
            pre.residual_jacobian_pose0(state0, state1),
            pre.residual_jacobian_mix0(state0, state1),
            pre.residual_jacobian_pose1(state0, state1),
            pre.residual_jacobian_mix1(state0, state1),
        ]
        return residuals, jacobians