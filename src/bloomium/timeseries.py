"""timeseries.py

AOI-level time series of mean ARI and bloom probability.

Each processed date contributes one point, sampled at five locations (the
AOI centre and its four corners inset by 10%). The series written for a
date merges every series already stored under the AOI, so the latest file
always holds the complete history.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from bloomium.grid import WGS84, BBox, Grid
from bloomium.tiles.mercator import get_transformer

logger = logging.getLogger(__name__)

INSET = 0.1
TIMESERIES_FILE = "timeseries.json"


@dataclass(frozen=True)
class TimeseriesPoint:
    date: str
    ari: float
    bloom_probability: float


def timeseries_path(aoi_id: str, date: str) -> str:
    return f"{aoi_id}/{date}/{TIMESERIES_FILE}"


def pick_sample_points(bbox: BBox) -> List[Tuple[float, float]]:
    """(lon, lat) of the centre and the four inset corners: C, SW, SE, NW, NE."""
    west, south, east, north = bbox
    dx = (east - west) * INSET
    dy = (north - south) * INSET
    return [
        ((west + east) / 2, (south + north) / 2),
        (west + dx, south + dy),
        (east - dx, south + dy),
        (west + dx, north - dy),
        (east - dx, north - dy),
    ]


def sample_points(grid: Grid, points: Sequence[Tuple[float, float]]) -> np.ndarray:
    """Nearest-pixel values of `grid` at lon/lat points; NaN off the grid."""
    lons = np.array([p[0] for p in points], dtype=np.float64)
    lats = np.array([p[1] for p in points], dtype=np.float64)
    if grid.crs == WGS84:
        gx, gy = lons, lats
    else:
        gx, gy = get_transformer(WGS84, grid.crs).transform(lons, lats)
        gx, gy = np.asarray(gx), np.asarray(gy)

    col = np.floor((gx - grid.origin_x) / grid.pixel_size)
    row = np.floor((grid.origin_y - gy) / grid.pixel_size)
    out = np.full(len(points), np.nan, dtype=np.float64)
    ok = (col >= 0) & (col < grid.width) & (row >= 0) & (row < grid.height)
    out[ok] = grid.data[row[ok].astype(np.intp), col[ok].astype(np.intp)]
    return out


def _mean_or_zero(values: np.ndarray) -> float:
    valid = values[~np.isnan(values)]
    return float(valid.mean()) if valid.size else 0.0


def summarize(date: str, bbox: BBox, ari: Grid, bloom: Grid) -> TimeseriesPoint:
    points = pick_sample_points(bbox)
    return TimeseriesPoint(
        date=date,
        ari=round(_mean_or_zero(sample_points(ari, points)), 4),
        bloom_probability=round(_mean_or_zero(sample_points(bloom, points)), 4),
    )


def load_series(storage, aoi_id: str) -> List[TimeseriesPoint]:
    """Every point stored under the AOI (unordered, possibly duplicated).

    Only the date directories directly under the AOI are visited.
    """
    points: List[TimeseriesPoint] = []
    for date in storage.listdir(aoi_id):
        path = timeseries_path(aoi_id, date)
        if not storage.exists(path):
            continue
        try:
            raw = storage.read_json(path)
        except ValueError as e:
            logger.warning("[TIMESERIES] skipping unreadable %s: %s", path, e)
            continue
        for item in raw if isinstance(raw, list) else [raw]:
            try:
                points.append(
                    TimeseriesPoint(
                        date=str(item["date"]),
                        ari=float(item["ari"]),
                        bloom_probability=float(item["bloom_probability"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("[TIMESERIES] skipping malformed point in %s: %r", path, item)
    return points


def update_timeseries(storage, aoi_id: str, point: TimeseriesPoint) -> List[TimeseriesPoint]:
    """Merge `point` into the AOI history and write it under the point's date.

    Deduplicated by date (the new point wins) and sorted by date.
    """
    by_date: Dict[str, TimeseriesPoint] = {p.date: p for p in load_series(storage, aoi_id)}
    by_date[point.date] = point
    series = [by_date[d] for d in sorted(by_date)]

    storage.write_json(timeseries_path(aoi_id, point.date), [asdict(p) for p in series])
    logger.info("[TIMESERIES] updated %s (%d points)", timeseries_path(aoi_id, point.date), len(series))
    return series
