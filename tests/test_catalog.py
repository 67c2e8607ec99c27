#!/usr/bin/env python3

from __future__ import annotations

import pytest
import requests

from bloomium.catalog import RetryPolicy, SceneCatalog, average_cloud_cover
from bloomium.config import WorkerConfig
from bloomium.errors import SceneSearchError
from bloomium.grid import Scene

BBOX = (-121.5, 38.2, -121.0, 38.6)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.ok = status_code < 400
        self.reason = "OK" if self.ok else "Error"
        self.text = text
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Replays queued responses (or exceptions) and records every POST."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def feature(scene_id, cloud):
    return {"id": scene_id, "properties": {"eo:cloud_cover": cloud}, "assets": {}}


def make_catalog(session, sleeps, max_scenes=2):
    stac = WorkerConfig.from_dict({"stac": {"endpoint": "https://stac.test/v1/"}}).stac
    return SceneCatalog(stac, max_scenes=max_scenes, session=session, sleep=sleeps.append)


def test_backoff_doubles():
    policy = RetryPolicy()
    assert [policy.backoff_for_attempt(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_search_sorts_and_truncates():
    payload = {"features": [feature("c", 40.0), feature("a", 5.0), feature("b", 12.0)]}
    session = FakeSession(FakeResponse(200, payload))
    sleeps = []
    scenes = make_catalog(session, sleeps).search(BBOX, "2025-02-01", "2025-02-07")

    assert [s.id for s in scenes] == ["a", "b"]
    assert sleeps == []

    call = session.calls[0]
    assert call["url"] == "https://stac.test/v1/search"
    body = call["json"]
    assert body["collections"] == ["sentinel-2-l2a"]
    assert body["bbox"] == list(BBOX)
    assert body["datetime"] == "2025-02-01T00:00:00Z/2025-02-07T23:59:59Z"
    assert body["limit"] == 100
    assert body["sortby"] == [{"field": "properties.eo:cloud_cover", "direction": "asc"}]


def test_unknown_cloud_cover_sorts_last():
    payload = {"features": [feature("nocc", None), feature("a", 80.0)]}
    scenes = make_catalog(FakeSession(FakeResponse(200, payload)), []).search(BBOX, "2025-02-01", "2025-02-07")
    assert [s.id for s in scenes] == ["a", "nocc"]


def test_empty_result_is_not_an_error():
    scenes = make_catalog(FakeSession(FakeResponse(200, {"features": []})), []).search(BBOX, "2025-02-01", "2025-02-07")
    assert scenes == []


def test_transient_failures_are_retried_with_backoff():
    session = FakeSession(
        FakeResponse(503),
        FakeResponse(503),
        FakeResponse(200, {"features": [feature("a", 1.0)]}),
    )
    sleeps = []
    scenes = make_catalog(session, sleeps).search(BBOX, "2025-02-01", "2025-02-07")
    assert [s.id for s in scenes] == ["a"]
    assert len(session.calls) == 3
    assert sleeps == [2.0, 4.0]


def test_rate_limit_and_connection_errors_are_transient():
    session = FakeSession(
        FakeResponse(429),
        requests.ConnectionError("connection reset"),
        FakeResponse(200, {"features": []}),
    )
    sleeps = []
    assert make_catalog(session, sleeps).search(BBOX, "2025-02-01", "2025-02-07") == []
    assert len(session.calls) == 3


def test_retries_exhausted():
    session = FakeSession(FakeResponse(500), FakeResponse(502), requests.Timeout("read timed out"))
    sleeps = []
    with pytest.raises(SceneSearchError, match="after 3 attempts"):
        make_catalog(session, sleeps).search(BBOX, "2025-02-01", "2025-02-07")
    assert len(session.calls) == 3
    assert sleeps == [2.0, 4.0]


def test_client_error_fails_immediately():
    session = FakeSession(FakeResponse(400, text="bad bbox"), FakeResponse(200, {"features": []}))
    sleeps = []
    with pytest.raises(SceneSearchError, match="HTTP 400"):
        make_catalog(session, sleeps).search(BBOX, "2025-02-01", "2025-02-07")
    assert len(session.calls) == 1
    assert sleeps == []


def test_invalid_json_is_a_search_error():
    with pytest.raises(SceneSearchError):
        make_catalog(FakeSession(FakeResponse(200, None)), []).search(BBOX, "2025-02-01", "2025-02-07")


def test_average_cloud_cover():
    assert average_cloud_cover([]) == 100.0
    assert average_cloud_cover([Scene("a", 10.0), Scene("b", 30.0)]) == 20.0
    assert average_cloud_cover([Scene("a", None), Scene("b", 30.0)]) == 15.0


@pytest.mark.parametrize("exc", [requests.TooManyRedirects("loop"), requests.exceptions.InvalidURL("bad")])
def test_other_request_errors_fail_immediately(exc):
    session = FakeSession(exc, FakeResponse(200, {"features": []}))
    sleeps = []
    with pytest.raises(SceneSearchError, match=type(exc).__name__):
        make_catalog(session, sleeps).search(BBOX, "2025-02-01", "2025-02-07")
    assert len(session.calls) == 1
    assert sleeps == []


@pytest.mark.parametrize(
    "payload",
    [
        [feature("a", 1.0)],
        {"features": {"id": "a"}},
        {"features": [feature("a", 1.0), "not-a-feature"]},
        {"features": [{"id": "a", "properties": {"eo:cloud_cover": "cloudy"}}]},
    ],
)
def test_unexpected_payload_is_a_search_error(payload):
    with pytest.raises(SceneSearchError):
        make_catalog(FakeSession(FakeResponse(200, payload)), []).search(BBOX, "2025-02-01", "2025-02-07")
