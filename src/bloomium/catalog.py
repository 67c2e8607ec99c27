#!/usr/bin/env python3
"""catalog.py

Search a STAC catalog for Sentinel-2 L2A scenes over an AOI.

One POST per search() call, retried on transient failures (HTTP 429, 5xx,
connection errors, timeouts) according to an injected RetryPolicy. Scenes
come back sorted by cloud cover, lowest first, truncated to `max_scenes`.

Called by:
  bloomium.worker.job (one search per date window)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import requests

from bloomium.config import StacConfig, format_bbox
from bloomium.errors import SceneSearchError
from bloomium.grid import BBox, Scene

logger = logging.getLogger(__name__)

TRANSIENT_STATUS = 429


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts a search gets, and how long to wait after attempt n (1-based)."""

    max_attempts: int = 3
    base: float = 2.0

    def backoff_for_attempt(self, attempt: int) -> float:
        return float(self.base ** attempt)


def _is_transient(status: int) -> bool:
    return status == TRANSIENT_STATUS or status >= 500


def average_cloud_cover(scenes: Sequence[Scene]) -> float:
    """Mean cloud cover of the scenes (unknown counts as 0); 100 for no scenes."""
    if not scenes:
        return 100.0
    return sum(s.cloud_cover or 0.0 for s in scenes) / len(scenes)


class SceneCatalog:
    def __init__(
        self,
        stac: StacConfig,
        *,
        max_scenes: int = 2,
        retry: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.stac = stac
        self.max_scenes = max_scenes
        self.retry = retry or RetryPolicy()
        self.session = session or requests.Session()
        self.sleep = sleep

    def _body(self, bbox: BBox, start: str, end: str) -> dict:
        return {
            "collections": [self.stac.collection],
            "bbox": list(bbox),
            "datetime": f"{start}T00:00:00Z/{end}T23:59:59Z",
            "limit": 100,
            "sortby": [{"field": "properties.eo:cloud_cover", "direction": "asc"}],
        }

    def search(self, bbox: BBox, start: str, end: str) -> List[Scene]:
        """Return scenes intersecting bbox in [start, end], lowest cloud cover first.

        Raises SceneSearchError on a non-transient HTTP status, or once
        transient failures have used up every attempt.
        """
        url = f"{self.stac.endpoint}/search"
        body = self._body(bbox, start, end)
        headers = {"Content-Type": "application/json", "User-Agent": self.stac.user_agent}

        logger.info("[STAC] search %s/%s bbox=%s", start, end, format_bbox(bbox))

        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.post(url, json=body, headers=headers, timeout=self.stac.timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                reason = f"{type(e).__name__}: {e}"
            except requests.RequestException as e:
                raise SceneSearchError(f"STAC search failed: {type(e).__name__}: {e}") from e
            else:
                if resp.ok:
                    break
                if not _is_transient(resp.status_code):
                    raise SceneSearchError(
                        f"STAC search failed: HTTP {resp.status_code} {resp.reason}\n{resp.text}"
                    )
                reason = f"HTTP {resp.status_code}"

            if attempt >= self.retry.max_attempts:
                raise SceneSearchError(f"STAC search failed after {attempt} attempts ({reason})")
            delay = self.retry.backoff_for_attempt(attempt)
            logger.warning("[STAC] %s, retrying in %.0fs (attempt %d/%d)", reason, delay, attempt, self.retry.max_attempts)
            self.sleep(delay)

        try:
            payload = resp.json()
        except ValueError as e:
            raise SceneSearchError(f"STAC search returned invalid JSON: {e}") from e

        scenes = self._parse(payload)
        scenes.sort(key=lambda s: (s.cloud_cover is None, s.cloud_cover or 0.0))
        selected = scenes[: self.max_scenes]

        logger.info("[STAC] found %d scenes", len(scenes))
        if selected:
            logger.info(
                "[STAC] selected %d (cloud cover: %s)",
                len(selected),
                ", ".join("?" if s.cloud_cover is None else f"{s.cloud_cover:.1f}%" for s in selected),
            )
        return selected

    @staticmethod
    def _parse(payload) -> List[Scene]:
        """Scenes from a FeatureCollection; SceneSearchError on anything else."""
        if not isinstance(payload, dict):
            raise SceneSearchError(f"STAC search returned {type(payload).__name__}, expected a FeatureCollection object")
        features = payload.get("features") or []
        if not isinstance(features, list):
            raise SceneSearchError("STAC search response has a non-list 'features' member")
        try:
            return [Scene.from_feature(f) for f in features]
        except (AttributeError, TypeError, ValueError) as e:
            raise SceneSearchError(f"STAC search returned a malformed feature: {e}") from e
