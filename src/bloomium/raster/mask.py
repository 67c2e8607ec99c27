"""mask.py

Quality masking from the Sentinel-2 L2A Scene Classification Layer (SCL).

SCL codes:
  0 no data            4 vegetation        8 cloud, medium probability
  1 saturated/defect   5 bare soils        9 cloud, high probability
  2 dark area/shadow   6 water            10 thin cirrus
  3 cloud shadow       7 cloud, low prob. 11 snow/ice
"""

from __future__ import annotations

import numpy as np

from bloomium.errors import ShapeMismatchError
from bloomium.grid import Grid, Mask

NO_DATA = 0
VALID_CODES = (4, 5)
CLOUD_CODES = (7, 8, 9, 10)


def build_valid_mask(scl: Mask) -> Mask:
    """1 where the pixel is vegetation or bare soil, 0 everywhere else."""
    return Mask(
        width=scl.width,
        height=scl.height,
        origin_x=scl.origin_x,
        origin_y=scl.origin_y,
        pixel_size=scl.pixel_size,
        crs=scl.crs,
        data=np.isin(scl.data, VALID_CODES).astype(np.uint8),
    )


def cloud_fraction(scl: Mask) -> float:
    """Percentage of cloud pixels among pixels that carry data.

    A scene window with no data at all counts as fully obscured (100).
    """
    has_data = scl.data != NO_DATA
    total = int(np.count_nonzero(has_data))
    if total == 0:
        return 100.0
    clouds = int(np.count_nonzero(np.isin(scl.data, CLOUD_CODES)))
    return clouds / total * 100.0


def apply_mask(grid: Grid, mask: Mask) -> Grid:
    """Copy of `grid` with NaN wherever `mask` is 0."""
    if not grid.same_geometry(mask):
        raise ShapeMismatchError(
            f"Grid and mask geometry mismatch: {grid.width}x{grid.height} vs {mask.width}x{mask.height}"
        )
    return grid.with_data(np.where(mask.data == 0, np.float32(np.nan), grid.data))
