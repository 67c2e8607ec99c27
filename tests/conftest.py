#!/usr/bin/env python3
"""Shared fixtures for the bloomium tests."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from pathlib import Path

import numpy as np
import pytest

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from bloomium.config import WorkerConfig
from bloomium.grid import Grid, Mask
from bloomium.storage import LocalStorage

AOI_BBOX = (-121.5, 38.2, -121.0, 38.6)


def make_grid(values, origin=(-121.5, 38.6), pixel_size=0.05, crs="EPSG:4326") -> Grid:
    arr = np.asarray(values, dtype=np.float32)
    h, w = arr.shape
    return Grid(width=w, height=h, origin_x=origin[0], origin_y=origin[1],
                pixel_size=pixel_size, crs=crs, data=arr)


def make_mask(values, origin=(-121.5, 38.6), pixel_size=0.05, crs="EPSG:4326") -> Mask:
    arr = np.asarray(values, dtype=np.uint8)
    h, w = arr.shape
    return Mask(width=w, height=h, origin_x=origin[0], origin_y=origin[1],
                pixel_size=pixel_size, crs=crs, data=arr)


def write_geotiff(path: Path, arr: np.ndarray, origin, res: float, crs: str = "EPSG:4326", nodata=None) -> str:
    import rasterio
    from rasterio.transform import from_origin

    profile = dict(
        driver="GTiff",
        width=arr.shape[1],
        height=arr.shape[0],
        count=1,
        dtype=str(arr.dtype),
        crs=crs,
        transform=from_origin(origin[0], origin[1], res, res),
    )
    if nodata is not None:
        profile["nodata"] = nodata
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(arr, 1)
    return str(path)


class UnreadableBand:
    """Band whose metadata opens fine but whose pixels cannot be read."""

    crs = "EPSG:4326"
    width = 20
    height = 20

    def __init__(self):
        from rasterio.transform import from_origin

        self.transform = from_origin(0.0, 10.0, 0.5, 0.5)

    def read(self, *args, **kwargs):
        from rasterio.errors import WindowError

        raise WindowError("window does not intersect the dataset")


@contextmanager
def unreadable_opener(href):
    yield UnreadableBand()


@pytest.fixture
def config(tmp_path) -> WorkerConfig:
    return WorkerConfig.from_dict(
        {
            "storage": {"path": str(tmp_path / "store")},
            "tiles": {"z_min": 7, "z_max": 8},
        }
    )


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "store")
