"""Dual-filter elevation-angle estimator.

Turns each RawSample into two angle estimates:

- Algorithm A: exponentially-weighted moving average of the
  accelerometer tilt angle.
- Algorithm B: complementary filter blending the integrated gyroscope
  X-axis rate with the accelerometer tilt angle.

Mounting convention: Y axis along the limb, Z axis out of the limb,
rotation about X.
"""

import logging
import numpy as np

from ..core.types import EstimatedSample, FilterState, RawSample

logger = logging.getLogger(__name__)

NS_PER_S = 1_000_000_000

DEFAULT_ALPHA = 0.1   # EWMA weight of the new accelerometer angle
DEFAULT_BETA = 0.98   # complementary filter weight of the gyro angle


def accel_tilt_deg(sample: RawSample) -> float:
    """Tilt angle inferred from the Y and Z acceleration axes.

    atan2(0, 0) is 0, so a zero vector yields 0 degrees.
    """
    _, ay, az = sample.acceleration
    return float(np.rad2deg(np.arctan2(ay, az)))


class FilterEstimator:
    """Stateful EWMA + complementary filter pair.

    Single writer: ``process`` must be called once per sample, in
    arrival order, never concurrently.
    """

    def __init__(self, alpha: float = DEFAULT_ALPHA, beta: float = DEFAULT_BETA):
        """Initialize estimator.

        Args:
            alpha: EWMA smoothing factor. Fixed in normal use.
            beta: Complementary filter gyro weight. Fixed in normal use.
        """
        self._alpha = alpha
        self._beta = beta
        self._state = FilterState()

    @property
    def state(self) -> FilterState:
        """Copy of the current filter state."""
        return FilterState(
            last_angle_a=self._state.last_angle_a,
            last_angle_b=self._state.last_angle_b,
            last_timestamp=self._state.last_timestamp,
        )

    def reset(self) -> None:
        """Clear filter state to its zero sentinel."""
        self._state.reset()
        logger.debug("Filter state reset")

    def process(self, sample: RawSample) -> EstimatedSample:
        """Run both filters on one sample.

        Args:
            sample: Combined raw sample (m/s^2, rad/s, ns).

        Returns:
            Estimated angles in degrees, stamped with the sample time.
        """
        state = self._state

        if state.last_timestamp == 0:
            dt = 0.0
        else:
            dt = (sample.timestamp - state.last_timestamp) / NS_PER_S
        state.last_timestamp = sample.timestamp

        angle_from_accel = accel_tilt_deg(sample)

        angle_a = self._alpha * angle_from_accel + (1.0 - self._alpha) * state.last_angle_a
        state.last_angle_a = angle_a

        gyro_x = sample.angular_rate[0]
        angle_from_gyro = state.last_angle_b + float(np.rad2deg(gyro_x)) * dt
        angle_b = self._beta * angle_from_gyro + (1.0 - self._beta) * angle_from_accel
        state.last_angle_b = angle_b

        return EstimatedSample(
            timestamp=sample.timestamp,
            angle_a=angle_a,
            angle_b=angle_b,
        )
