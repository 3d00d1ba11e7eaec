"""Factors, IMU preintegration (with optional odometer) and marginalization for GNSS-visual-inertial estimation."""

__version__ = "0.1.0"

__all__ = [
    "factors",
    "geometry",
    "imu_factors",
    "integration_state",
    "marginalization",
    "preintegration",
    "preintegration_base",
    "preintegration_normal",
    "preintegration_odo",
    "residual_block",
]