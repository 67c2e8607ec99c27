#!/usr/bin/env python3

from __future__ import annotations

import json

import pytest

from bloomium.worker import __main__ as cli

AOI = {"aoi_id": "demo", "name": "Sacramento Valley", "bbox": [-121.5, 38.2, -121.0, 38.6], "dates": ["2025-02-03", "2025-02-10"]}


@pytest.fixture
def aoi_file(tmp_path):
    p = tmp_path / "aoi.json"
    p.write_text(json.dumps(AOI), encoding="utf-8")
    return p


@pytest.fixture
def config_file(tmp_path):
    p = tmp_path / "worker.yaml"
    p.write_text("tiles:\n  z_min: 7\n  z_max: 8\n", encoding="utf-8")
    return p


def test_load_job_applies_overrides(aoi_file):
    job = cli.load_job(aoi_file, "2025-03-01, 2025-03-08", True)
    assert job.dates == ["2025-03-01", "2025-03-08"]
    assert job.force is True
    assert job.aoi_id == "demo"


def test_load_job_missing_file(tmp_path):
    with pytest.raises(SystemExit):
        cli.load_job(tmp_path / "missing.json", None, False)


def test_load_job_bad_json(tmp_path):
    p = tmp_path / "aoi.json"
    p.write_text("{not json", encoding="utf-8")
    with pytest.raises(SystemExit):
        cli.load_job(p, None, False)


def test_load_job_invalid_content(tmp_path):
    p = tmp_path / "aoi.json"
    p.write_text(json.dumps({"aoi_id": "x", "bbox": [0, 0, 1, 1]}), encoding="utf-8")
    with pytest.raises(SystemExit):
        cli.load_job(p, None, False)


def test_dry_run_prints_plan(aoi_file, config_file, tmp_path, capsys):
    store = tmp_path / "store"
    rc = cli.main(["--config", str(config_file), "--storage", str(store), "run", "--aoi", str(aoi_file), "--dry-run"])
    assert rc == 0
    out = capsys.readouterr().out
    assert "[dry-run] AOI demo" in out
    assert "Sacramento Valley" in out
    assert "2025-02-03: search 2025-01-31..2025-02-06" in out
    assert "z=8:" in out
    assert not store.exists()


def test_run_requires_aoi():
    with pytest.raises(SystemExit):
        cli.main(["run"])
