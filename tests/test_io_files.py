"""Tests for fixture/request readers and output writers."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from adpilot.io_files import (
    InputFileError,
    read_request_file,
    read_rows_file,
    write_json,
)
from adpilot.mappers import map_record_to_metric_row

SAMPLE = Path(__file__).resolve().parent.parent / "fixtures" / "sample_rows.yaml"


def test_sample_fixture_loads():
    data = read_rows_file(SAMPLE)
    assert set(data) == {"campaign", "keyword", "ad_group", "ad"}
    assert map_record_to_metric_row(data["campaign"][0]).campaign_id == "111"


def test_csv_rows_grouped_by_level(tmp_path):
    p = tmp_path / "rows.csv"
    p.write_text(
        "level,campaign_id,keyword_text,ad_group_id,impressions,clicks\n"
        "campaign,111,,,100,5\n"
        "keyword,111,shoes,5,40,2\n",
        encoding="utf-8",
    )
    data = read_rows_file(p)
    assert len(data["campaign"]) == 1
    kw = map_record_to_metric_row(data["keyword"][0])
    assert kw.keyword_text == "shoes"
    assert kw.impressions == 40
    campaign = map_record_to_metric_row(data["campaign"][0])
    assert campaign.keyword_text is None


def test_csv_needs_level_column(tmp_path):
    p = tmp_path / "rows.csv"
    p.write_text("campaign_id,impressions\n111,5\n", encoding="utf-8")
    with pytest.raises(InputFileError, match="level"):
        read_rows_file(p)


def test_unknown_level_rejected(tmp_path):
    p = tmp_path / "rows.yaml"
    p.write_text("account:\n  - {campaign_id: '1'}\n", encoding="utf-8")
    with pytest.raises(InputFileError, match="unknown level"):
        read_rows_file(p)


def test_missing_file():
    with pytest.raises(InputFileError):
        read_rows_file("does/not/exist.yaml")


def test_request_file_json(tmp_path):
    p = tmp_path / "req.json"
    p.write_text(json.dumps({"optimizationType": "BIDS", "settings": {"maxCpcIncrease": 10}}), encoding="utf-8")
    assert read_request_file(p)["settings"]["maxCpcIncrease"] == 10


def test_write_json_creates_parents(tmp_path):
    out = write_json({"success": True}, tmp_path / "nested" / "out.json")
    assert json.loads(out.read_text(encoding="utf-8")) == {"success": True}
