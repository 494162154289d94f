"""Sensor fusion module: angle estimation and sample combination."""

from .estimator import FilterEstimator, accel_tilt_deg
from .channel import FusionChannel, SampleStream

__all__ = [
    "FilterEstimator",
    "accel_tilt_deg",
    "FusionChannel",
    "SampleStream",
]
