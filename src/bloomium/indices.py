"""indices.py

Spectral index and anomaly math on aligned grids.

- ARI (Anthocyanin Reflectance Index) = 1/B03 - 1/B05, a pigment proxy
- week-over-week delta of ARI
- rolling per-pixel baseline (mean/std over the last few weeks)
- z-score against that baseline
- bloom score blending z and delta

Every function is NaN-propagating: a masked pixel stays masked.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from bloomium.grid import Baseline, Grid, require_same_shape

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 1e-4
Z_EPSILON = 1e-6
BASELINE_WINDOW = 5

# Fusion weights: statistical anomaly dominates short-term change.
Z_WEIGHT = 0.6
DELTA_WEIGHT = 0.4
DELTA_GAIN = 5.0


def compute_index(band_a: Grid, band_b: Grid, epsilon: float = DEFAULT_EPSILON) -> Grid:
    """ARI = 1/max(a, eps) - 1/max(b, eps)."""
    require_same_shape(band_a, band_b)
    a = np.maximum(band_a.data.astype(np.float64), epsilon)
    b = np.maximum(band_b.data.astype(np.float64), epsilon)
    return band_a.with_data(1.0 / a - 1.0 / b)


def delta(current: Grid, previous: Optional[Grid] = None) -> Grid:
    """current - previous, or zeros when there is no usable previous grid."""
    if previous is None:
        return Grid.filled(current, 0.0)
    if previous.shape != current.shape:
        logger.warning(
            "current and previous grids differ (%dx%d vs %dx%d), using zero delta",
            current.width, current.height, previous.width, previous.height,
        )
        return Grid.filled(current, 0.0)
    return current.with_data(current.data - previous.data)


def rolling_baseline(recent: Sequence[Grid], max_window: int = BASELINE_WINDOW) -> Baseline:
    """Per-pixel mean and population std over the last `max_window` grids.

    NaN samples are ignored. Mean is NaN where no sample is valid; std is
    exactly 1.0 where fewer than two samples are valid.
    """
    if not recent:
        raise ValueError("Cannot create baseline from empty grid list")
    window = list(recent)[-max_window:]
    require_same_shape(*window)

    stack = np.stack([g.data.astype(np.float64) for g in window])
    valid = ~np.isnan(stack)
    count = valid.sum(axis=0)

    total = np.where(valid, stack, 0.0).sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = np.where(count > 0, total / count, np.nan)
        sq = np.where(valid, (stack - mean) ** 2, 0.0).sum(axis=0)
        std = np.where(count > 1, np.sqrt(sq / count), 1.0)

    ref = window[-1]
    return Baseline(mean=ref.with_data(mean), std=ref.with_data(std))


def z_score(current: Grid, baseline: Baseline, epsilon: float = Z_EPSILON) -> Grid:
    """(x - mean) / max(std, eps)."""
    require_same_shape(current, baseline.mean, baseline.std)
    x = current.data.astype(np.float64)
    mean = baseline.mean.data.astype(np.float64)
    std = np.maximum(baseline.std.data.astype(np.float64), epsilon)
    return current.with_data((x - mean) / std)


def bloom_score(z: Grid, d: Grid) -> Grid:
    """clip((0.6*tanh(z) + 0.4*tanh(5*delta) + 1) / 2, 0, 1)."""
    require_same_shape(z, d)
    zv = z.data.astype(np.float64)
    dv = d.data.astype(np.float64)
    score = (Z_WEIGHT * np.tanh(zv) + DELTA_WEIGHT * np.tanh(DELTA_GAIN * dv) + 1.0) / 2.0
    return z.with_data(np.clip(score, 0.0, 1.0))
