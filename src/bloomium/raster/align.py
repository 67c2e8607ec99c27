#!/usr/bin/env python3
"""align.py

Read the B03 / B05 / SCL bands of a scene over an AOI and put them on one
pixel grid.

The band with the finest native resolution defines the canonical grid.
Every band is windowed independently at its own resolution (the AOI bbox is
transformed into that band's CRS first), then resampled onto the canonical
width/height: bilinear for reflectance, nearest-neighbour for the SCL
classification codes.

Called by:
  bloomium.worker.job (once per processed date)
"""

from __future__ import annotations

import logging
import math
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

import numpy as np
from rasterio.errors import RasterioError
from rasterio.warp import transform_bounds

from bloomium.errors import BandReadError, MissingBandError, ReprojectionError
from bloomium.grid import WGS84, BandSet, BBox, Grid, Mask, Scene, is_wgs84
from bloomium.raster.sources import PixelWindow, open_band, pixel_window, read_window

logger = logging.getLogger(__name__)

# role -> accepted asset names (compared case-insensitively)
BAND_ALIASES: Dict[str, Tuple[str, ...]] = {
    "primary": ("B03", "green"),
    "secondary": ("B05", "rededge1"),
    "classification": ("SCL",),
}
ROLES = ("primary", "secondary", "classification")


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def find_band_assets(scene: Scene) -> Dict[str, str]:
    """Map each role to an asset href; raise MissingBandError listing absent roles."""
    by_lower = {name.lower(): href for name, href in scene.assets.items()}
    found: Dict[str, str] = {}
    missing: List[str] = []
    for role in ROLES:
        href = next((by_lower[a.lower()] for a in BAND_ALIASES[role] if a.lower() in by_lower), None)
        if href is None:
            missing.append(BAND_ALIASES[role][0])
        else:
            found[role] = href
    if missing:
        raise MissingBandError(scene.id, missing)
    return found


def transform_bbox(bbox: BBox, dst_crs, src_crs: str = WGS84) -> BBox:
    """Transform a bbox between CRSs; identity when both are WGS84.

    Raises ReprojectionError instead of guessing when the transform fails.
    """
    if is_wgs84(src_crs) and is_wgs84(dst_crs):
        return tuple(bbox)  # type: ignore[return-value]
    try:
        out = transform_bounds(src_crs, dst_crs, *bbox, densify_pts=21)
    except (ValueError, RasterioError) as e:
        raise ReprojectionError(f"Failed to transform bbox to {dst_crs}: {e}") from e
    if not all(math.isfinite(v) for v in out):
        raise ReprojectionError(f"Bbox transform to {dst_crs} produced non-finite bounds: {out}")
    return tuple(out)  # type: ignore[return-value]


def resample_bilinear(src: np.ndarray, out_h: int, out_w: int) -> np.ndarray:
    """Bilinear resample of a 2D float array; NaN neighbours propagate."""
    in_h, in_w = src.shape
    if (in_h, in_w) == (out_h, out_w):
        return src.astype(np.float32, copy=True)

    sx = np.arange(out_w, dtype=np.float64) * (in_w / out_w)
    sy = np.arange(out_h, dtype=np.float64) * (in_h / out_h)
    x0 = np.floor(sx).astype(np.intp)
    y0 = np.floor(sy).astype(np.intp)
    # exact hits reuse the same sample so a NaN neighbour with zero weight is ignored
    x1 = np.minimum(x0 + (sx > x0), in_w - 1)
    y1 = np.minimum(y0 + (sy > y0), in_h - 1)
    fx = (sx - x0)[np.newaxis, :]
    fy = (sy - y0)[:, np.newaxis]

    v = src.astype(np.float64)
    top = v[np.ix_(y0, x0)] * (1 - fx) + v[np.ix_(y0, x1)] * fx
    bottom = v[np.ix_(y1, x0)] * (1 - fx) + v[np.ix_(y1, x1)] * fx
    return (top * (1 - fy) + bottom * fy).astype(np.float32)


def resample_nearest(src: np.ndarray, out_h: int, out_w: int) -> np.ndarray:
    """Nearest-neighbour resample; values are copied, never averaged."""
    in_h, in_w = src.shape
    cols = np.minimum(np.floor(np.arange(out_w) * (in_w / out_w)).astype(np.intp), in_w - 1)
    rows = np.minimum(np.floor(np.arange(out_h) * (in_h / out_h)).astype(np.intp), in_h - 1)
    return src[np.ix_(rows, cols)].copy()


# -----------------------------------------------------------------------------
# Aligner
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class _BandWindow:
    role: str
    crs: str
    res: float
    origin_x: float
    origin_y: float
    res_y: float
    window: PixelWindow


class BandAligner:
    def __init__(self, opener: Callable = open_band):
        self.opener = opener

    def _window_for(self, role: str, src, bbox: BBox) -> _BandWindow:
        crs = str(src.crs)
        t = src.transform
        native = transform_bbox(bbox, crs)
        win = pixel_window(native, t.c, t.f, t.a, t.e, src.width, src.height)
        return _BandWindow(role, crs, abs(t.a), t.c, t.f, t.e, win)

    def align(self, scene: Scene, query_bbox: BBox) -> BandSet:
        """Read and co-register the three bands of `scene` over `query_bbox`.

        Raises MissingBandError, ReprojectionError, or BandReadError when a
        band cannot be opened or read.
        """
        hrefs = find_band_assets(scene)
        logger.info("[BANDS] reading %s", scene.id)
        try:
            return self._align(hrefs, query_bbox)
        except RasterioError as e:
            raise BandReadError(f"Failed to read bands of {scene.id}: {e}") from e

    def _align(self, hrefs: Dict[str, str], query_bbox: BBox) -> BandSet:
        with ExitStack() as stack:
            srcs = {role: stack.enter_context(self.opener(hrefs[role])) for role in ROLES}
            windows = {role: self._window_for(role, srcs[role], query_bbox) for role in ROLES}

            canon = min(windows.values(), key=lambda w: w.res)
            out_w, out_h = canon.window.width, canon.window.height
            geom = dict(
                width=out_w,
                height=out_h,
                origin_x=canon.origin_x + canon.window.col_off * canon.res,
                origin_y=canon.origin_y + canon.window.row_off * canon.res_y,
                pixel_size=canon.res,
                crs=canon.crs,
            )

            layers: Dict[str, np.ndarray] = {}
            for role in ROLES:
                w = windows[role]
                continuous = role != "classification"
                arr = read_window(srcs[role], w.window, continuous=continuous)
                if arr.shape != (out_h, out_w):
                    logger.debug(
                        "[BANDS] resampling %s %dx%d -> %dx%d",
                        role, arr.shape[1], arr.shape[0], out_w, out_h,
                    )
                    arr = resample_bilinear(arr, out_h, out_w) if continuous else resample_nearest(arr, out_h, out_w)
                layers[role] = arr

        logger.info("[BANDS] aligned grids: %dx%d px (%s)", out_w, out_h, canon.crs)
        return BandSet(
            primary=Grid(data=layers["primary"], **geom),
            secondary=Grid(data=layers["secondary"], **geom),
            classification=Mask(data=layers["classification"], **geom),
        )
