"""meta.py

Per-date record ({aoi_id}/{date}/meta.json) describing what was rendered.

Its presence is also what marks a date as processed: the orchestrator skips
dates whose record already exists unless reprocessing is forced.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from bloomium.config import Thresholds

logger = logging.getLogger(__name__)


def meta_path(aoi_id: str, date: str) -> str:
    return f"{aoi_id}/{date}/meta.json"


@dataclass
class DateRecord:
    date: str
    cloud_pct: float
    z_levels: List[int]
    baseline: Dict[str, Any] = field(default_factory=lambda: {"type": "rolling"})
    thresholds: Dict[str, float] = field(default_factory=dict)
    notes: Optional[str] = None

    @classmethod
    def for_date(
        cls,
        date: str,
        cloud_pct: float,
        z_levels: List[int],
        thresholds: Thresholds,
        notes: Optional[str] = None,
    ) -> "DateRecord":
        return cls(
            date=date,
            cloud_pct=round(float(cloud_pct), 2),
            z_levels=list(z_levels),
            baseline={"type": "rolling", "years": []},
            thresholds={"z_sig": thresholds.z_sig, "delta_week": thresholds.delta_week},
            notes=notes,
        )

    @classmethod
    def empty(cls, date: str, thresholds: Thresholds, notes: str) -> "DateRecord":
        """Record for a date that produced no data: fully clouded, no zoom levels."""
        return cls(
            date=date,
            cloud_pct=100,
            z_levels=[],
            baseline={"type": "rolling"},
            thresholds={"z_sig": thresholds.z_sig, "delta_week": thresholds.delta_week},
            notes=notes,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d["notes"] is None:
            del d["notes"]
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DateRecord":
        return cls(
            date=str(d["date"]),
            cloud_pct=d["cloud_pct"],
            z_levels=list(d.get("z_levels") or []),
            baseline=dict(d.get("baseline") or {"type": "rolling"}),
            thresholds=dict(d.get("thresholds") or {}),
            notes=d.get("notes"),
        )


def write_meta(storage, aoi_id: str, record: DateRecord) -> None:
    storage.write_json(meta_path(aoi_id, record.date), record.to_dict())
    logger.info("[META] wrote %s", meta_path(aoi_id, record.date))


def read_meta(storage, aoi_id: str, date: str) -> Optional[DateRecord]:
    """The stored record for a date, or None if it is absent or unreadable.

    A truncated or malformed record (e.g. left by a crashed run) is treated
    as missing so the date gets reprocessed.
    """
    path = meta_path(aoi_id, date)
    if not storage.exists(path):
        return None
    try:
        return DateRecord.from_dict(storage.read_json(path))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning("[META] ignoring unreadable %s: %s", path, e)
        return None
