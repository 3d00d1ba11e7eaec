"""Sensor samples and navigation state containers."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

import numpy as np

from gvinsfactors.geometry import Quaternion


def _zeros(size: int):
    return field(default_factory=lambda: np.zeros(size))


def _as_vector(value, size: int, name: str) -> np.ndarray:
    arr = np.array(value, dtype=float).reshape(-1)
    if arr.size != size:
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


@dataclass
class Imu:
    """Incremental IMU sample: angle and velocity increments over ``dt``."""

    time: float = 0.0
    dt: float = 0.0
    dtheta: np.ndarray = _zeros(3)
    dvel: np.ndarray = _zeros(3)
    odovel: float = 0.0

    def __post_init__(self):
        self.dtheta = _as_vector(self.dtheta, 3, "dtheta")
        self.dvel = _as_vector(self.dvel, 3, "dvel")


@dataclass
class Gnss:
    """GNSS position fix with per-axis standard deviation."""

    blh: np.ndarray
    std: np.ndarray
    time: float = 0.0

    def __post_init__(self):
        self.blh = _as_vector(self.blh, 3, "blh")
        self.std = _as_vector(self.std, 3, "std")


@dataclass
class IntegrationState:
    """Navigation state used by preintegration."""

    time: float = 0.0
    p: np.ndarray = _zeros(3)
    q: Quaternion = field(default_factory=lambda: Quaternion(0.0, 0.0, 0.0, 0.0))
    v: np.ndarray = _zeros(3)
    bg: np.ndarray = _zeros(3)
    ba: np.ndarray = _zeros(3)
    s: np.ndarray = _zeros(3)
    sodo: float = 0.0
    avb: np.ndarray = _zeros(2)
    sg: np.ndarray = _zeros(3)
    sa: np.ndarray = _zeros(3)

    def __post_init__(self):
        for name in ("p", "v", "bg", "ba", "s", "sg", "sa"):
            setattr(self, name, _as_vector(getattr(self, name), 3, name))
        self.avb = _as_vector(self.avb, 2, "avb")

    def copy(self) -> "IntegrationState":
        """Deep copy whose arrays are independent of this state."""
        arrays = {
            name: getattr(self, name).copy()
            for name in ("p", "v", "bg", "ba", "s", "avb", "sg", "sa")
        }
        return dataclasses.replace(self, **arrays)


@dataclass
class IntegrationStateData:
    """Flat parameter blocks: pose (position, quaternion x y z w) and mixed parameters."""

    time: float = 0.0
    pose: np.ndarray = _zeros(7)
    mix: np.ndarray = _zeros(18)

    def __post_init__(self):
        self.pose = _as_vector(self.pose, 7, "pose")
        self.mix = _as_vector(self.mix, 18, "mix")


@dataclass
class IntegrationParameters:
    """IMU and odometer noise model and mounting parameters."""

    acc_vrw: float = 0.0
    gyr_arw: float = 0.0
    gyr_bias_std: float = 0.0
    acc_bias_std: float = 0.0
    gyr_scale_std: float = 0.0
    acc_scale_std: float = 0.0
    corr_time: float = 0.0
    gravity: float = 0.0
    odo_std: np.ndarray = _zeros(3)
    odo_srw: float = 0.0
    abv: np.ndarray = _zeros(3)
    lodo: np.ndarray = _zeros(3)
    station: np.ndarray = _zeros(3)

    def __post_init__(self):
        for name in ("odo_std", "abv", "lodo", "station"):
            setattr(self, name, _as_vector(getattr(self, name), 3, name))


@dataclass
class IntegrationConfiguration:
    """Which preintegration model to use."""

    isuseodo: bool = False
    iswithscale: bool = False
    iswithearth: bool = False
    origin: np.ndarray = _zeros(3)
    gravity: np.ndarray = _zeros(3)
    iewn: np.ndarray = _zeros(3)

    def __post_init__(self):
        for name in ("origin", "gravity", "iewn"):
            setattr(self, name, _as_vector(getattr(self, name), 3, name))