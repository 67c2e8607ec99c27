#!/usr/bin/env python3
"""render.py

Render a grid into an XYZ PNG tile pyramid.

Rendering is inverse: for each output pixel we find its Web-Mercator
position, convert to lon/lat, drop it if it falls outside the AOI, then
project it into the grid CRS and sample the grid bilinearly. Tiles share
nothing but the read-only source grid, so a pyramid can be rendered on a
thread pool.
"""

from __future__ import annotations

import io
import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from PIL import Image

from bloomium.grid import WGS84, BBox, Grid, TileCoordinate
from bloomium.tiles.colormap import LayerKind, colorize
from bloomium.tiles.mercator import enumerate_tiles, get_transformer, mercator_to_lonlat, tile_bounds

logger = logging.getLogger(__name__)

TILE_SIZE = 256
PNG_CONTENT_TYPE = "image/png"


def tile_path(aoi_id: str, date: str, kind, coord: TileCoordinate) -> str:
    return f"{aoi_id}/{date}/tiles/{LayerKind(kind).value}/{coord.zoom}/{coord.x}/{coord.y}.png"


def sample_bilinear(grid: Grid, gx: np.ndarray, gy: np.ndarray) -> np.ndarray:
    """Bilinear samples of `grid` at grid-CRS points.

    NaN where the point is outside [0, w-1) x [0, h-1) in pixel space, or
    where any of the four surrounding samples is NaN.
    """
    x = (np.asarray(gx, dtype=np.float64) - grid.origin_x) / grid.pixel_size
    y = (grid.origin_y - np.asarray(gy, dtype=np.float64)) / grid.pixel_size
    out = np.full(x.shape, np.nan, dtype=np.float64)

    ok = (x >= 0) & (x < grid.width - 1) & (y >= 0) & (y < grid.height - 1)
    if not ok.any():
        return out

    xs, ys = x[ok], y[ok]
    x0 = np.floor(xs).astype(np.intp)
    y0 = np.floor(ys).astype(np.intp)
    # always the full 2x2 neighbourhood: a NaN anywhere in it blanks the sample
    x1 = x0 + 1
    y1 = y0 + 1
    fx = xs - x0
    fy = ys - y0

    d = grid.data.astype(np.float64)
    top = d[y0, x0] * (1 - fx) + d[y0, x1] * fx
    bottom = d[y1, x0] * (1 - fx) + d[y1, x1] * fx
    out[ok] = top * (1 - fy) + bottom * fy
    return out


def render_tile(
    grid: Grid,
    coord: TileCoordinate,
    aoi_bbox: BBox,
    kind,
    size: int = TILE_SIZE,
) -> np.ndarray:
    """(size, size, 4) uint8 RGBA tile of `grid` colormapped for `kind`."""
    minx, miny, maxx, maxy = tile_bounds(coord)
    frac = np.arange(size, dtype=np.float64) / size
    mx, my = np.meshgrid(minx + frac * (maxx - minx), maxy - frac * (maxy - miny))

    lon, lat = mercator_to_lonlat(mx, my)
    lon = np.asarray(lon)
    lat = np.asarray(lat)

    west, south, east, north = aoi_bbox
    inside = (lon >= west) & (lon <= east) & (lat >= south) & (lat <= north)

    values = np.full((size, size), np.nan, dtype=np.float64)
    if inside.any():
        if grid.crs == WGS84:
            gx, gy = lon[inside], lat[inside]
        else:
            gx, gy = get_transformer(WGS84, grid.crs).transform(lon[inside], lat[inside])
        values[inside] = sample_bilinear(grid, gx, gy)

    rgba = colorize(values, kind)
    rgba[~inside] = 0
    return rgba


def encode_png(rgba: np.ndarray) -> bytes:
    """PNG bytes for an RGBA array; identical input gives identical bytes."""
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8)).save(buf, format="PNG")
    return buf.getvalue()


def write_pyramid(
    grid: Grid,
    aoi_id: str,
    date: str,
    kind,
    aoi_bbox: BBox,
    zoom_min: int,
    zoom_max: int,
    storage,
    *,
    workers: int = 1,
    size: int = TILE_SIZE,
) -> int:
    """Render and store every tile covering the AOI for zooms [zoom_min, zoom_max].

    Returns the number of tiles written.
    """
    kind = LayerKind(kind)
    coords = [c for z in range(zoom_min, zoom_max + 1) for c in enumerate_tiles(aoi_bbox, z)]
    logger.info("[TILES] writing %d %s tiles (z=%d..%d)", len(coords), kind.value, zoom_min, zoom_max)

    def _one(coord: TileCoordinate) -> None:
        png = encode_png(render_tile(grid, coord, aoi_bbox, kind, size))
        storage.write(tile_path(aoi_id, date, kind, coord), png, PNG_CONTENT_TYPE)

    if workers <= 1:
        for coord in coords:
            _one(coord)
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            # list() re-raises the first worker exception here
            list(pool.map(_one, coords))

    return len(coords)
