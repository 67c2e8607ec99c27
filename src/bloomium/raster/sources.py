#!/usr/bin/env python3
"""sources.py

Open band rasters (local GeoTIFFs or remote COGs) with rasterio.

Remote hrefs are routed through GDAL's /vsicurl/ so only the windows we
actually read are fetched with HTTP range requests.
"""

from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np
import rasterio
from rasterio.windows import Window

from bloomium.errors import BandReadError

# GDAL_DISABLE_READDIR_ON_OPEN avoids expensive directory listings on remote stores.
REMOTE_ENV = {
    "GDAL_DISABLE_READDIR_ON_OPEN": "EMPTY_DIR",
    "CPL_VSIL_CURL_ALLOWED_EXTENSIONS": ".tif,.tiff",
}


def _vsi_url(href: str) -> str:
    """Force GDAL to use HTTP range requests (important for COG window reads)."""
    if href.startswith("/vsicurl/"):
        return href
    if href.startswith(("http://", "https://")):
        return f"/vsicurl/{href}"
    return href


@contextmanager
def open_band(href: str) -> Iterator[rasterio.io.DatasetReader]:
    """Open a single-band raster for window reads."""
    with rasterio.Env(**REMOTE_ENV):
        with rasterio.open(_vsi_url(href)) as src:
            if src.crs is None:
                raise BandReadError(f"Raster has no CRS: {href}")
            yield src


@dataclass(frozen=True)
class PixelWindow:
    col_off: int
    row_off: int
    width: int
    height: int

    def to_rasterio(self) -> Window:
        return Window(self.col_off, self.row_off, self.width, self.height)


def pixel_window(
    bbox: Tuple[float, float, float, float],
    origin_x: float,
    origin_y: float,
    res_x: float,
    res_y: float,
    width: int,
    height: int,
) -> PixelWindow:
    """Pixel window covering `bbox` (already in the raster CRS).

    Bounds are floored/ceiled against the raster origin and clamped to the
    raster extent; the window is never smaller than 1x1 and always starts
    inside the raster.
    """
    minx, miny, maxx, maxy = bbox
    rx, ry = abs(res_x), abs(res_y)

    col0 = max(0, math.floor((minx - origin_x) / rx))
    row0 = max(0, math.floor((origin_y - maxy) / ry))
    col1 = min(width, math.ceil((maxx - origin_x) / rx))
    row1 = min(height, math.ceil((origin_y - miny) / ry))

    col0 = min(col0, width - 1)
    row0 = min(row0, height - 1)
    return PixelWindow(col0, row0, max(1, col1 - col0), max(1, row1 - row0))


def read_window(src, window: PixelWindow, *, continuous: bool = True) -> np.ndarray:
    """Read band 1 over `window`.

    Continuous bands come back as float32 with nodata replaced by NaN and the
    band scale/offset applied when the file carries them. Categorical bands
    come back as raw uint8 codes.
    """
    arr = src.read(1, window=window.to_rasterio())
    if not continuous:
        return arr.astype(np.uint8)

    out = arr.astype(np.float32)
    nodata: Optional[float] = src.nodata
    if nodata is not None and not np.isnan(nodata):
        out[arr == nodata] = np.nan

    scale = (src.scales or (1.0,))[0]
    offset = (src.offsets or (0.0,))[0]
    if scale not in (None, 1.0) or offset not in (None, 0.0):
        out = out * np.float32(1.0 if scale is None else scale) + np.float32(0.0 if offset is None else offset)
    return out
