"""colormap.py

Value -> RGBA mapping for the two published layers.

bloom:   score in [0, 1], pink -> green -> yellow, alpha 50..220
anomaly: z in [-3, 3], blue -> white -> red, alpha 100..220 with |z|

NaN is always fully transparent.
"""

from __future__ import annotations

from enum import Enum

import numpy as np

PINK = (255, 150, 200)
GREEN = (50, 255, 50)
YELLOW = (255, 255, 200)
BLUE = (0, 100, 255)
WHITE = (255, 255, 255)
RED = (255, 50, 0)

Z_CLAMP = 3.0


class LayerKind(str, Enum):
    BLOOM = "bloom"
    ANOMALY = "anomaly"


def blend(c0: float, c1: float, t: np.ndarray) -> np.ndarray:
    """Linear blend from c0 (t=0) to c1 (t=1)."""
    return c0 + (c1 - c0) * t


def _two_stop(n: np.ndarray, low, mid, high) -> np.ndarray:
    """RGB for n in [0, 1]: low->mid over [0, 0.5), mid->high over [0.5, 1]."""
    lower = n < 0.5
    t = np.where(lower, n * 2.0, (n - 0.5) * 2.0)
    rgb = np.empty(n.shape + (3,), dtype=np.float64)
    for ch in range(3):
        rgb[..., ch] = np.where(lower, blend(low[ch], mid[ch], t), blend(mid[ch], high[ch], t))
    return rgb


def _pack(rgb: np.ndarray, alpha: np.ndarray, nan: np.ndarray) -> np.ndarray:
    out = np.empty(rgb.shape[:-1] + (4,), dtype=np.uint8)
    out[..., :3] = np.floor(rgb)
    out[..., 3] = np.floor(alpha)
    out[nan] = 0
    return out


def bloom_rgba(values) -> np.ndarray:
    """Bloom score -> RGBA (uint8, trailing channel axis)."""
    v = np.asarray(values, dtype=np.float64)
    nan = np.isnan(v)
    s = np.clip(np.where(nan, 0.0, v), 0.0, 1.0)
    return _pack(_two_stop(s, PINK, GREEN, YELLOW), 50.0 + s * 170.0, nan)


def anomaly_rgba(values) -> np.ndarray:
    """Z-score -> RGBA (uint8, trailing channel axis)."""
    v = np.asarray(values, dtype=np.float64)
    nan = np.isnan(v)
    z = np.clip(np.where(nan, 0.0, v), -Z_CLAMP, Z_CLAMP)
    n = (z + Z_CLAMP) / (2 * Z_CLAMP)
    alpha = 100.0 + np.minimum(np.abs(z) / Z_CLAMP, 1.0) * 120.0
    return _pack(_two_stop(n, BLUE, WHITE, RED), alpha, nan)


COLORMAPS = {
    LayerKind.BLOOM: bloom_rgba,
    LayerKind.ANOMALY: anomaly_rgba,
}


def colorize(values, kind) -> np.ndarray:
    return COLORMAPS[LayerKind(kind)](values)
