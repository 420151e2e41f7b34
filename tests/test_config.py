"""Tests for configuration loading and query models."""

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from victorialogs_mcp.config import ConfigManager
from victorialogs_mcp.models import LogQuery, QueryType, TimeRange, default_query_type


def _write(tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestConfigManager:
    def test_defaults(self, tmp_path):
        path = _write(tmp_path, {"victoriaLogsConfig": {"baseUrl": "http://localhost:9428"}})

        cfg = ConfigManager.load(str(path))

        ds = cfg.datasource
        assert ds.baseUrl == "http://localhost:9428"
        assert ds.httpMethod == "POST"
        assert ds.customQueryParameters == ""
        assert ds.maxLines == 1000
        assert cfg.global_config.serverPort == 7000

    def test_method_normalized(self, tmp_path):
        path = _write(tmp_path, {"victoriaLogsConfig": {"baseUrl": "http://x", "httpMethod": "get"}})
        assert ConfigManager.load(str(path)).datasource.httpMethod == "GET"

    def test_empty_method_defaults_to_post(self, tmp_path):
        path = _write(tmp_path, {"victoriaLogsConfig": {"baseUrl": "http://x", "httpMethod": ""}})
        assert ConfigManager.load(str(path)).datasource.httpMethod == "POST"

    def test_env_path(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"victoriaLogsConfig": {"baseUrl": "http://env"}, "serverPort": 7100})
        monkeypatch.setenv("VLOGS_CONFIG_PATH", str(path))

        cfg = ConfigManager.load()

        assert cfg.datasource.baseUrl == "http://env"
        assert cfg.global_config.serverPort == 7100

    def test_invalid_config(self, tmp_path):
        path = _write(tmp_path, {"victoriaLogsConfig": {"httpMethod": "GET"}})
        with pytest.raises(RuntimeError):
            ConfigManager.load(str(path))


class TestTimeRange:
    def test_expressions(self):
        tr = TimeRange.model_validate({"from": "now-1h", "to": "now"})
        assert 3599 <= (tr.to - tr.from_).total_seconds() <= 3601
        assert tr.to.tzinfo is not None

    def test_epoch_and_rfc3339(self):
        tr = TimeRange.model_validate({"from": 1704153600, "to": "2024-01-02T01:00:00+01:00"})
        assert tr.from_ == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert tr.to == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_naive_datetime_is_utc(self):
        tr = TimeRange(from_=datetime(2024, 1, 2), to=datetime(2024, 1, 3))
        assert tr.from_ == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_reversed_range(self):
        with pytest.raises(ValidationError):
            TimeRange.model_validate({"from": "now", "to": "now-1h"})

    def test_bad_timestamp(self):
        with pytest.raises(ValidationError):
            TimeRange.model_validate({"from": "1969", "to": "now"})

    def test_negative_epoch_clamps_to_unix_epoch(self):
        tr = TimeRange.model_validate({"from": -5, "to": "now"})
        assert tr.from_ == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_numeric_epoch_is_absolute(self):
        tr = TimeRange.model_validate({"from": 5, "to": 1704153600.5})
        assert tr.from_ == datetime(1970, 1, 1, 0, 0, 5, tzinfo=timezone.utc)
        assert tr.to == datetime(2024, 1, 2, 0, 0, 0, 500000, tzinfo=timezone.utc)

    def test_numeric_milliseconds(self):
        tr = TimeRange.model_validate({"from": 1704153600000, "to": 1704157200000})
        assert tr.from_ == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert tr.to == datetime(2024, 1, 2, 1, tzinfo=timezone.utc)

    def test_nan_epoch(self):
        with pytest.raises(ValidationError):
            TimeRange.model_validate({"from": float("nan"), "to": "now"})


def test_log_query_defaults():
    q = LogQuery.model_validate({"timeRange": {"from": "now-5m", "to": "now"}})
    assert q.refId == "A"
    assert q.expr == ""
    assert q.interval is None
    assert q.intervalMs == 0
    assert q.maxLines == 0
    assert q.queryType is QueryType.STATS_RANGE


@pytest.mark.parametrize(
    "panel,app,expected",
    [
        ("logs", None, QueryType.INSTANT),
        ("table", "dashboard", QueryType.INSTANT),
        ("timeseries", "explore", QueryType.STATS_RANGE),
        ("stat", "explore", QueryType.INSTANT),
        (None, "explore", QueryType.INSTANT),
        (None, "dashboard", QueryType.STATS_RANGE),
        (None, None, QueryType.STATS_RANGE),
    ],
)
def test_default_query_type(panel, app, expected):
    assert default_query_type(panel, app) is expected


def test_explicit_query_type_is_kept():
    q = LogQuery.model_validate(
        {"queryType": "stats", "panelPluginId": "logs", "timeRange": {"from": "now-5m", "to": "now"}}
    )
    assert q.queryType is QueryType.STATS


def test_unknown_query_type_is_rejected():
    with pytest.raises(ValidationError):
        LogQuery.model_validate({"queryType": "bogus", "timeRange": {"from": "now-5m", "to": "now"}})
