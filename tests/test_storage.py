#!/usr/bin/env python3

from __future__ import annotations

import numpy as np
import pytest

from bloomium.config import Thresholds
from bloomium.meta import DateRecord, meta_path, read_meta, write_meta
from bloomium.storage import LocalStorage
from bloomium.timeseries import (
    TimeseriesPoint,
    load_series,
    pick_sample_points,
    sample_points,
    summarize,
    timeseries_path,
    update_timeseries,
)

from conftest import AOI_BBOX, make_grid

THRESHOLDS = Thresholds(z_sig=2.0, delta_week=0.05)


# -----------------------------------------------------------------------------
# LocalStorage
# -----------------------------------------------------------------------------

def test_local_storage_round_trip(storage):
    storage.write("a/b/c.bin", b"\x00\x01", "application/octet-stream")
    assert storage.exists("a/b/c.bin")
    assert not storage.exists("a/b")
    assert storage.read("a/b/c.bin") == b"\x00\x01"


def test_local_storage_json(storage):
    storage.write_json("x/meta.json", {"k": [1, 2]})
    assert storage.read_json("x/meta.json") == {"k": [1, 2]}
    assert storage.read("x/meta.json").decode("utf-8").startswith("{\n  ")


def test_local_storage_list(storage):
    for p in ("aoi/2025-02-10/meta.json", "aoi/2025-02-03/meta.json", "other/meta.json"):
        storage.write(p, b"{}", "application/json")
    assert storage.list("aoi") == ["aoi/2025-02-03/meta.json", "aoi/2025-02-10/meta.json"]
    assert storage.list("missing") == []


def test_local_storage_rejects_escape(storage):
    with pytest.raises(ValueError):
        storage.write("../outside.txt", b"x", "text/plain")


# -----------------------------------------------------------------------------
# meta.json
# -----------------------------------------------------------------------------

def test_meta_record_for_date(storage):
    rec = DateRecord.for_date("2025-02-03", 12.3456, [7, 8], THRESHOLDS, notes="Scene: s1, Cloud: 12.3%")
    write_meta(storage, "aoi", rec)
    raw = storage.read_json(meta_path("aoi", "2025-02-03"))
    assert raw == {
        "date": "2025-02-03",
        "cloud_pct": 12.35,
        "z_levels": [7, 8],
        "baseline": {"type": "rolling", "years": []},
        "thresholds": {"z_sig": 2.0, "delta_week": 0.05},
        "notes": "Scene: s1, Cloud: 12.3%",
    }
    assert read_meta(storage, "aoi", "2025-02-03") == rec


def test_meta_empty_record():
    d = DateRecord.empty("2025-02-03", THRESHOLDS, "No scenes available").to_dict()
    assert d["cloud_pct"] == 100
    assert d["z_levels"] == []
    assert d["notes"] == "No scenes available"


def test_meta_without_notes_omits_key():
    assert "notes" not in DateRecord.for_date("2025-02-03", 0, [7], THRESHOLDS).to_dict()


def test_read_meta_missing(storage):
    assert read_meta(storage, "aoi", "2025-02-03") is None


# -----------------------------------------------------------------------------
# timeseries.json
# -----------------------------------------------------------------------------

def test_sample_points_centre_and_inset_corners():
    pts = pick_sample_points((0.0, 0.0, 10.0, 20.0))
    assert pts == [(5.0, 10.0), (1.0, 2.0), (9.0, 2.0), (1.0, 18.0), (9.0, 18.0)]


def test_sample_points_nearest_pixel_and_off_grid():
    g = make_grid([[1.0, 2.0], [3.0, 4.0]], origin=(0.0, 2.0), pixel_size=1.0)
    out = sample_points(g, [(0.5, 1.5), (1.5, 0.5), (5.0, 5.0)])
    assert out[0] == 1.0
    assert out[1] == 4.0
    assert np.isnan(out[2])


def test_summarize_means_valid_samples():
    ari = make_grid(np.full((8, 10), 2.5))
    bloom = make_grid(np.full((8, 10), np.nan))
    p = summarize("2025-02-03", AOI_BBOX, ari, bloom)
    assert p == TimeseriesPoint("2025-02-03", 2.5, 0.0)


def test_update_timeseries_merges_and_sorts(storage):
    update_timeseries(storage, "aoi", TimeseriesPoint("2025-02-10", 1.0, 0.5))
    update_timeseries(storage, "aoi", TimeseriesPoint("2025-02-03", 2.0, 0.6))
    series = update_timeseries(storage, "aoi", TimeseriesPoint("2025-02-10", 3.0, 0.7))

    assert [p.date for p in series] == ["2025-02-03", "2025-02-10"]
    assert series[1].ari == 3.0
    stored = storage.read_json(timeseries_path("aoi", "2025-02-10"))
    assert stored == [
        {"date": "2025-02-03", "ari": 2.0, "bloom_probability": 0.6},
        {"date": "2025-02-10", "ari": 3.0, "bloom_probability": 0.7},
    ]


def test_load_series_skips_malformed(storage):
    storage.write("aoi/2025-02-03/timeseries.json", b"not json", "application/json")
    storage.write_json("aoi/2025-02-10/timeseries.json", [{"date": "2025-02-10"}, {"date": "2025-02-10", "ari": 1, "bloom_probability": 0.5}])
    assert load_series(storage, "aoi") == [TimeseriesPoint("2025-02-10", 1.0, 0.5)]


def test_local_storage_listdir_is_shallow(storage):
    storage.write("aoi/2025-02-03/tiles/bloom/7/20/49.png", b"png", "image/png")
    storage.write("aoi/2025-02-10/meta.json", b"{}", "application/json")
    storage.write("aoi/notes.txt", b"", "text/plain")
    assert storage.listdir("aoi") == ["2025-02-03", "2025-02-10"]
    assert storage.listdir("missing") == []


def test_load_series_does_not_walk_tiles(tmp_path):
    class NoRecursiveList(LocalStorage):
        def list(self, prefix):
            raise AssertionError("recursive listing")

    store = NoRecursiveList(tmp_path / "store")
    store.write("aoi/2025-02-03/tiles/bloom/7/20/49.png", b"png", "image/png")
    update_timeseries(store, "aoi", TimeseriesPoint("2025-02-03", 1.0, 0.5))
    series = update_timeseries(store, "aoi", TimeseriesPoint("2025-02-10", 2.0, 0.6))
    assert [p.date for p in series] == ["2025-02-03", "2025-02-10"]


@pytest.mark.parametrize("content", [b'{"date": "2025-02-03", "cloud_', b"[1, 2]", b'{"cloud_pct": 5}'])
def test_read_meta_unreadable_record_is_missing(storage, content):
    storage.write(meta_path("aoi", "2025-02-03"), content, "application/json")
    assert read_meta(storage, "aoi", "2025-02-03") is None
