"""bloomium.grid

Raster data model shared by every pipeline stage.

A Grid is a north-up raster: (origin_x, origin_y) is the top-left corner in
the grid CRS, rows run south, and `data` is a (height, width) array. Grids
are float32 with NaN as the missing-value sentinel; Masks carry uint8 codes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

import numpy as np

from bloomium.errors import ShapeMismatchError

BBox = Tuple[float, float, float, float]

WGS84 = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"
DEFAULT_NODATA = -9999.0


def _normalize_crs(crs) -> str:
    s = str(crs).strip() if crs is not None else WGS84
    if s.upper() in ("WGS84", "EPSG:4326", "OGC:CRS84"):
        return WGS84
    return s


def is_wgs84(crs) -> bool:
    return _normalize_crs(crs) == WGS84


@dataclass(frozen=True)
class _Raster:
    width: int
    height: int
    origin_x: float
    origin_y: float
    pixel_size: float
    crs: str
    data: np.ndarray

    def __post_init__(self):
        data = np.asarray(self.data)
        if data.size != self.width * self.height:
            raise ValueError(
                f"data has {data.size} samples, expected {self.width}x{self.height}={self.width * self.height}"
            )
        object.__setattr__(self, "data", data.reshape(self.height, self.width))
        object.__setattr__(self, "crs", _normalize_crs(self.crs))

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    def same_geometry(self, other: "_Raster") -> bool:
        return (
            self.width == other.width
            and self.height == other.height
            and self.origin_x == other.origin_x
            and self.origin_y == other.origin_y
            and self.pixel_size == other.pixel_size
            and self.crs == other.crs
        )


@dataclass(frozen=True)
class Grid(_Raster):
    nodata: float = DEFAULT_NODATA

    def __post_init__(self):
        object.__setattr__(self, "data", np.asarray(self.data, dtype=np.float32))
        super().__post_init__()

    def with_data(self, data: np.ndarray) -> "Grid":
        """Same geometry, new samples."""
        return replace(self, data=np.asarray(data, dtype=np.float32))

    @classmethod
    def filled(cls, like: "_Raster", value: float) -> "Grid":
        return cls(
            width=like.width,
            height=like.height,
            origin_x=like.origin_x,
            origin_y=like.origin_y,
            pixel_size=like.pixel_size,
            crs=like.crs,
            data=np.full((like.height, like.width), value, dtype=np.float32),
        )

    @classmethod
    def empty(cls, bbox: BBox) -> "Grid":
        """1x1 all-NaN grid anchored at the bbox; renders fully transparent."""
        return cls(
            width=1,
            height=1,
            origin_x=bbox[0],
            origin_y=bbox[3],
            pixel_size=0.01,
            crs=WGS84,
            data=np.full((1, 1), np.nan, dtype=np.float32),
        )


@dataclass(frozen=True)
class Mask(_Raster):
    def __post_init__(self):
        object.__setattr__(self, "data", np.asarray(self.data, dtype=np.uint8))
        super().__post_init__()


@dataclass(frozen=True)
class BandSet:
    """Co-registered bands: green (B03), red-edge (B05), scene classification (SCL)."""

    primary: Grid
    secondary: Grid
    classification: Mask


@dataclass(frozen=True)
class Baseline:
    mean: Grid
    std: Grid


@dataclass(frozen=True)
class Scene:
    id: str
    cloud_cover: Optional[float]
    assets: Dict[str, str] = field(default_factory=dict)
    bbox: Optional[BBox] = None
    datetime: Optional[str] = None

    @classmethod
    def from_feature(cls, feature: dict) -> "Scene":
        """Build a Scene from a STAC item feature."""
        props = feature.get("properties") or {}
        cc = props.get("eo:cloud_cover")
        assets = {
            str(name): str(asset.get("href"))
            for name, asset in (feature.get("assets") or {}).items()
            if isinstance(asset, dict) and asset.get("href")
        }
        bbox = feature.get("bbox")
        return cls(
            id=str(feature.get("id")),
            cloud_cover=float(cc) if cc is not None else None,
            assets=assets,
            bbox=tuple(float(v) for v in bbox[:4]) if bbox else None,
            datetime=props.get("datetime"),
        )


@dataclass(frozen=True, order=True)
class TileCoordinate:
    zoom: int
    x: int
    y: int


def require_same_shape(*rasters: _Raster) -> None:
    """Raise ShapeMismatchError unless all rasters share width and height."""
    first = rasters[0]
    for r in rasters[1:]:
        if r.shape != first.shape:
            raise ShapeMismatchError(
                f"grid shapes differ: {first.width}x{first.height} vs {r.width}x{r.height}"
            )
