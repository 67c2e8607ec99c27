#!/usr/bin/env python3
"""job.py

Process one AOI across a sequence of dates.

For every date, in the order given:
  search scenes -> align bands -> mask -> ARI / delta / baseline / z / bloom
  -> bloom + anomaly tile pyramids -> meta.json -> timeseries.json

Delta and baseline only ever see index grids from dates processed earlier in
the same run; that history is a bounded buffer owned by the run.

A date that cannot produce data (no scenes, missing bands, failed search,
mismatched grids) still gets a transparent pyramid and a meta.json with
cloud_pct=100 and no zoom levels, so map clients never hit missing tiles.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from bloomium import indices
from bloomium.catalog import SceneCatalog, average_cloud_cover
from bloomium.config import WorkerConfig, coerce_bbox, format_bbox
from bloomium.errors import (
    BandReadError,
    Err,
    MissingBandError,
    ReprojectionError,
    SceneSearchError,
    ShapeMismatchError,
    attempt,
)
from bloomium.grid import BBox, Grid
from bloomium.meta import DateRecord, read_meta, write_meta
from bloomium.raster.align import BandAligner
from bloomium.raster.mask import apply_mask, build_valid_mask, cloud_fraction
from bloomium.storage import Storage
from bloomium.tiles.colormap import LayerKind
from bloomium.tiles.render import write_pyramid
from bloomium.timeseries import summarize, update_timeseries

logger = logging.getLogger(__name__)

ALIGN_ERRORS = (MissingBandError, ReprojectionError, BandReadError)


class DateStatus(str, Enum):
    SKIPPED = "skipped"
    EMPTY = "empty"
    DONE = "done"


# -----------------------------------------------------------------------------
# Inputs
# -----------------------------------------------------------------------------

def parse_date(s: str) -> dt.date:
    try:
        return dt.date.fromisoformat(s)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid date (expected YYYY-MM-DD): {s!r}") from e


def search_window(date: str, days: int) -> Tuple[str, str]:
    """(start, end) ISO dates spanning `date` +/- `days`."""
    d = parse_date(date)
    delta = dt.timedelta(days=days)
    return ((d - delta).isoformat(), (d + delta).isoformat())


@dataclass(frozen=True)
class JobInput:
    aoi_id: str
    bbox: BBox
    dates: List[str]
    force: bool = False
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "JobInput":
        """Validate a job mapping ({aoi_id, bbox, dates, force?, name?}).

        Raises ValueError describing the first problem found.
        """
        aoi_id = d.get("aoi_id")
        if not aoi_id or not isinstance(aoi_id, str):
            raise ValueError("job must have a non-empty 'aoi_id'")
        bbox = coerce_bbox(d.get("bbox"))
        if bbox is None:
            raise ValueError("job must have 'bbox': [minLon, minLat, maxLon, maxLat]")
        dates = d.get("dates")
        if not isinstance(dates, list) or not dates:
            raise ValueError("job must have a non-empty 'dates' list")
        dates = [str(x).strip() for x in dates]
        for x in dates:
            parse_date(x)
        return cls(
            aoi_id=aoi_id,
            bbox=bbox,
            dates=dates,
            force=bool(d.get("force", False)),
            name=d.get("name"),
        )


# -----------------------------------------------------------------------------
# History
# -----------------------------------------------------------------------------

class IndexHistory:
    """Index grids keyed by date, in insertion order, holding at most `maxlen`."""

    def __init__(self, maxlen: int = 5):
        self.maxlen = maxlen
        self._grids: "OrderedDict[str, Grid]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._grids)

    def __contains__(self, date: str) -> bool:
        return date in self._grids

    def get(self, date: Optional[str]) -> Optional[Grid]:
        return self._grids.get(date) if date is not None else None

    def push(self, date: str, grid: Grid) -> None:
        self._grids.pop(date, None)
        self._grids[date] = grid
        while len(self._grids) > self.maxlen:
            self._grids.popitem(last=False)

    def dates(self) -> List[str]:
        return list(self._grids)

    def matching(self, like: Grid) -> List[Grid]:
        """Grids on the same pixel grid as `like`, oldest first."""
        return [g for g in self._grids.values() if g.same_geometry(like)]


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------

@dataclass
class JobReport:
    aoi_id: str
    statuses: Dict[str, DateStatus] = field(default_factory=dict)

    def count(self, status: DateStatus) -> int:
        return sum(1 for s in self.statuses.values() if s == status)


class JobOrchestrator:
    def __init__(
        self,
        config: WorkerConfig,
        storage: Storage,
        catalog: Optional[SceneCatalog] = None,
        aligner: Optional[BandAligner] = None,
    ):
        self.config = config
        self.storage = storage
        self.catalog = catalog or SceneCatalog(config.stac, max_scenes=config.processing.max_scenes)
        self.aligner = aligner or BandAligner()

    # --- public ---

    def run(self, job: JobInput) -> JobReport:
        logger.info("[JOB] starting %s%s bbox=%s dates=%d force=%s",
                    job.aoi_id, f" ({job.name})" if job.name else "", format_bbox(job.bbox), len(job.dates), job.force)
        history = IndexHistory(self.config.processing.history_size)
        report = JobReport(job.aoi_id)

        for i, date in enumerate(job.dates):
            logger.info("[JOB] %s (%d/%d)", date, i + 1, len(job.dates))
            previous = job.dates[i - 1] if i > 0 else None
            report.statuses[date] = self.process_date(job, date, previous, history)

        logger.info(
            "[JOB] completed %s: %d done, %d empty, %d skipped",
            job.aoi_id,
            report.count(DateStatus.DONE),
            report.count(DateStatus.EMPTY),
            report.count(DateStatus.SKIPPED),
        )
        return report

    def process_date(
        self,
        job: JobInput,
        date: str,
        previous_date: Optional[str],
        history: IndexHistory,
    ) -> DateStatus:
        if not job.force and read_meta(self.storage, job.aoi_id, date) is not None:
            logger.info("[JOB] %s already processed, skipping (use --force to reprocess)", date)
            return DateStatus.SKIPPED

        isolate = self.config.processing.isolate_date_failures

        # Searching
        start, end = search_window(date, self.config.processing.search_window_days)
        found = attempt(self.catalog.search, job.bbox, start, end, recover=(SceneSearchError,))
        if isinstance(found, Err):
            if not isolate:
                raise found.error
            logger.error("[JOB] %s scene search failed: %s", date, found.error)
            return self.write_empty(job, date, f"Scene search failed: {found.error}")
        if not found.value:
            logger.warning("[JOB] %s no scenes found, writing transparent tiles", date)
            return self.write_empty(job, date, "No scenes available")

        # BandsAligning
        scene = found.value[0]
        logger.info("[JOB] using scene %s (%d candidates, mean cloud %.1f%%)",
                    scene.id, len(found.value), average_cloud_cover(found.value))
        aligned = attempt(self.aligner.align, scene, job.bbox, recover=ALIGN_ERRORS)
        if isinstance(aligned, Err):
            logger.error("[JOB] %s band alignment failed: %s", date, aligned.error)
            return self.write_empty(job, date, f"Band alignment failed for scene {scene.id}: {aligned.error}")
        bands = aligned.value

        # Masking + IndexComputing
        try:
            valid = build_valid_mask(bands.classification)
            cloud_pct = cloud_fraction(bands.classification)
            logger.info("[JOB] cloud coverage %.1f%%", cloud_pct)

            eps = self.config.processing.epsilon
            ari = indices.compute_index(apply_mask(bands.primary, valid), apply_mask(bands.secondary, valid), eps)
            prev = history.get(previous_date)
            history.push(date, ari)

            d = indices.delta(ari, prev)
            baseline = indices.rolling_baseline(history.matching(ari), self.config.processing.history_size)
            z = indices.z_score(ari, baseline)
            bloom = indices.bloom_score(z, d)
        except ShapeMismatchError as e:
            if not isolate:
                raise
            logger.error("[JOB] %s index computation failed: %s", date, e)
            return self.write_empty(job, date, f"Index computation failed: {e}")

        # TilesRendering
        tiles = self.config.tiles
        for kind, grid in ((LayerKind.BLOOM, bloom), (LayerKind.ANOMALY, z)):
            write_pyramid(grid, job.aoi_id, date, kind, job.bbox, tiles.z_min, tiles.z_max,
                          self.storage, workers=tiles.workers, size=tiles.size)

        # MetaWriting
        write_meta(
            self.storage,
            job.aoi_id,
            DateRecord.for_date(
                date,
                cloud_pct,
                tiles.zoom_levels,
                self.config.thresholds,
                notes=f"Scene: {scene.id}, Cloud: {cloud_pct:.1f}%",
            ),
        )

        # TimeseriesUpdating
        update_timeseries(self.storage, job.aoi_id, summarize(date, job.bbox, ari, bloom))

        logger.info("[JOB] completed %s", date)
        return DateStatus.DONE

    def write_empty(self, job: JobInput, date: str, notes: str) -> DateStatus:
        """Transparent pyramid for both layers plus an empty date record."""
        empty = Grid.empty(job.bbox)
        tiles = self.config.tiles
        for kind in (LayerKind.BLOOM, LayerKind.ANOMALY):
            write_pyramid(empty, job.aoi_id, date, kind, job.bbox, tiles.z_min, tiles.z_max,
                          self.storage, workers=tiles.workers, size=tiles.size)
        write_meta(self.storage, job.aoi_id, DateRecord.empty(date, self.config.thresholds, notes))
        return DateStatus.EMPTY
