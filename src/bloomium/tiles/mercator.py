"""mercator.py

Slippy-map (XYZ) tile math in Web Mercator.

Tile (0, 0) is the north-west corner of the world at every zoom; y grows
southwards.
"""

from __future__ import annotations

import math
import threading
from typing import List, Tuple

from pyproj import Transformer

from bloomium.grid import WEB_MERCATOR, WGS84, BBox, TileCoordinate

ORIGIN_SHIFT = 20037508.342789244  # half the Web-Mercator world width (m)
MAX_LATITUDE = 85.0511287798066

_local = threading.local()


def get_transformer(src_crs: str, dst_crs: str) -> Transformer:
    """Cached lon/lat-ordered transformer, one per thread."""
    cache = getattr(_local, "transformers", None)
    if cache is None:
        cache = _local.transformers = {}
    key = (src_crs, dst_crs)
    if key not in cache:
        cache[key] = Transformer.from_crs(src_crs, dst_crs, always_xy=True)
    return cache[key]


def tile_bounds(coord: TileCoordinate) -> Tuple[float, float, float, float]:
    """(minx, miny, maxx, maxy) of a tile in Web-Mercator metres."""
    size = 2 * ORIGIN_SHIFT / (2 ** coord.zoom)
    minx = -ORIGIN_SHIFT + coord.x * size
    maxy = ORIGIN_SHIFT - coord.y * size
    return (minx, maxy - size, minx + size, maxy)


def mercator_to_lonlat(x, y):
    return get_transformer(WEB_MERCATOR, WGS84).transform(x, y)


def lonlat_to_mercator(lon, lat):
    return get_transformer(WGS84, WEB_MERCATOR).transform(lon, lat)


def lonlat_to_tile(lon: float, lat: float, zoom: int) -> Tuple[int, int]:
    """Tile (x, y) containing a lon/lat point, clamped to the tile range."""
    n = 2 ** zoom
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    lat_rad = math.radians(lat)
    x = math.floor((lon + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n)
    return (min(max(x, 0), n - 1), min(max(y, 0), n - 1))


def enumerate_tiles(bbox: BBox, zoom: int) -> List[TileCoordinate]:
    """Every tile at `zoom` whose bounds intersect the lon/lat bbox, in (x, y) order."""
    west, south, east, north = bbox
    x0, y0 = lonlat_to_tile(west, north, zoom)
    x1, y1 = lonlat_to_tile(east, south, zoom)
    return [TileCoordinate(zoom, x, y) for x in range(x0, x1 + 1) for y in range(y0, y1 + 1)]
