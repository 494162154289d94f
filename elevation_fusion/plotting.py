"""Plots of recorded elevation sessions."""

import logging
from pathlib import Path
from typing import Sequence, Union

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np

from .core.types import EstimatedSample

logger = logging.getLogger(__name__)


def plot_session(
    samples: Sequence[EstimatedSample],
    path: Union[str, Path],
    title: str = "Elevation angle",
) -> Path:
    """Save a two-panel plot of a sample series.

    Top panel: both angle estimates over time. Bottom panel: the
    distribution of inter-sample intervals.

    Args:
        samples: Ordered series, at least one sample.
        path: Output image path.
        title: Title of the angle panel.

    Returns:
        Path of the written image.

    Raises:
        ValueError: If ``samples`` is empty.
    """
    if not samples:
        raise ValueError("Nothing to plot")

    path = Path(path)
    timestamps = np.array([s.timestamp for s in samples], dtype=np.int64)
    t = (timestamps - timestamps[0]) / 1e9
    angle_a = [s.angle_a for s in samples]
    angle_b = [s.angle_b for s in samples]

    fig, axes = plt.subplots(2, 1, figsize=(12, 8))

    ax = axes[0]
    ax.plot(t, angle_a, label="Accelerometer (EWMA)", alpha=0.8)
    ax.plot(t, angle_b, label="Complementary filter", alpha=0.8)
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Angle (deg)")
    ax.set_title(title)
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    dt_ms = np.diff(timestamps) / 1e6
    if dt_ms.size:
        ax.hist(dt_ms, bins=50, edgecolor="black")
        ax.axvline(float(np.mean(dt_ms)), color="r", linestyle="--")
        ax.set_title(f"Sample interval (mean={np.mean(dt_ms):.2f} ms)")
    else:
        ax.set_title("Sample interval")
    ax.set_xlabel("dt (ms)")
    ax.set_ylabel("Count")
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=150)
    plt.close(fig)

    logger.info("Saved plot of %d samples to %s", len(samples), path)
    return path
