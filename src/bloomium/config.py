#!/usr/bin/env python3
"""bloomium.config

Shared configuration utilities for the Bloomium worker.

The worker reads one YAML file (config/worker.yaml by default), lays it over
built-in defaults and then applies a handful of environment overrides so a
container can be tuned without editing the file.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Bbox handling accepts anything indexable with 4 numbers.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml


BBox = Tuple[float, float, float, float]


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------

DEFAULT_CONFIG_YAML = Path("config/worker.yaml")
DEFAULT_STORAGE_PATH = Path("local-data")

DEFAULTS: Dict[str, Any] = {
    "storage": {"path": str(DEFAULT_STORAGE_PATH)},
    "stac": {
        "endpoint": "https://earth-search.aws.element84.com/v1",
        "collection": "sentinel-2-l2a",
        "timeout": 60,
        "user_agent": "Bloomium-Worker/0.1.0",
    },
    "tiles": {"z_min": 7, "z_max": 14, "size": 256, "workers": 1},
    "processing": {
        "max_scenes": 2,
        "search_window_days": 3,
        "epsilon": 1e-4,
        "history_size": 5,
        "isolate_date_failures": True,
    },
    "thresholds": {"z_sig": 2.0, "delta_week": 0.05},
}

# env var -> (section, key, caster)
ENV_OVERRIDES = {
    "BLOOMIUM_STORAGE_PATH": ("storage", "path", str),
    "STAC_ENDPOINT": ("stac", "endpoint", str),
    "TILE_Z_MIN": ("tiles", "z_min", int),
    "TILE_Z_MAX": ("tiles", "z_max", int),
    "MAX_SCENES_PER_WEEK": ("processing", "max_scenes", int),
    "EPSILON": ("processing", "epsilon", float),
}


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    Config errors should fail fast.
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


# -----------------------------------------------------------------------------
# Typed config
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class StacConfig:
    endpoint: str
    collection: str
    timeout: float
    user_agent: str


@dataclass(frozen=True)
class TileConfig:
    z_min: int
    z_max: int
    size: int
    workers: int

    @property
    def zoom_levels(self) -> List[int]:
        return list(range(self.z_min, self.z_max + 1))


@dataclass(frozen=True)
class ProcessingConfig:
    max_scenes: int
    search_window_days: int
    epsilon: float
    history_size: int
    isolate_date_failures: bool


@dataclass(frozen=True)
class Thresholds:
    z_sig: float
    delta_week: float


@dataclass(frozen=True)
class WorkerConfig:
    storage_path: Path
    stac: StacConfig
    tiles: TileConfig
    processing: ProcessingConfig
    thresholds: Thresholds

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkerConfig":
        """Build a config from a (possibly partial) mapping laid over DEFAULTS."""
        d = _merge(DEFAULTS, data)
        tiles = TileConfig(
            z_min=int(d["tiles"]["z_min"]),
            z_max=int(d["tiles"]["z_max"]),
            size=int(d["tiles"]["size"]),
            workers=max(1, int(d["tiles"]["workers"])),
        )
        if tiles.z_min > tiles.z_max:
            raise SystemExit(f"tiles.z_min ({tiles.z_min}) must be <= tiles.z_max ({tiles.z_max})")
        return cls(
            storage_path=Path(d["storage"]["path"]),
            stac=StacConfig(
                endpoint=str(d["stac"]["endpoint"]).rstrip("/"),
                collection=str(d["stac"]["collection"]),
                timeout=float(d["stac"]["timeout"]),
                user_agent=str(d["stac"]["user_agent"]),
            ),
            tiles=tiles,
            processing=ProcessingConfig(
                max_scenes=int(d["processing"]["max_scenes"]),
                search_window_days=int(d["processing"]["search_window_days"]),
                epsilon=float(d["processing"]["epsilon"]),
                history_size=int(d["processing"]["history_size"]),
                isolate_date_failures=bool(d["processing"]["isolate_date_failures"]),
            ),
            thresholds=Thresholds(
                z_sig=float(d["thresholds"]["z_sig"]),
                delta_week=float(d["thresholds"]["delta_week"]),
            ),
        )


def apply_env_overrides(data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return a copy of `data` with ENV_OVERRIDES applied from `environ`."""
    environ = os.environ if environ is None else environ
    out = copy.deepcopy(data)
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError as e:
            raise SystemExit(f"Invalid value for {var}: {raw!r}") from e
        out.setdefault(section, {})[key] = value
    return out


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> WorkerConfig:
    """Load the worker config.

    An explicit `path` must exist. Without one, DEFAULT_CONFIG_YAML is used
    when present and the built-in defaults otherwise.
    """
    if path is not None:
        data = load_yaml(path)
    elif DEFAULT_CONFIG_YAML.exists():
        data = load_yaml(DEFAULT_CONFIG_YAML)
    else:
        data = {}
    return WorkerConfig.from_dict(apply_env_overrides(data, environ))


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------

def coerce_bbox(x: Any) -> Optional[BBox]:
    """Try to coerce [xmin, ymin, xmax, ymax] into a bbox tuple.

    Returns None if input is invalid, missing, or inverted.
    """
    if x is None:
        return None
    if isinstance(x, (list, tuple)) and len(x) == 4:
        try:
            xmin, ymin, xmax, ymax = map(float, x)
        except (TypeError, ValueError):
            return None
        if xmin > xmax or ymin > ymax:
            return None
        return (xmin, ymin, xmax, ymax)
    return None


def format_bbox(b: BBox, precision: int = 5) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"
