"""Tests for interval resolution, step and rate interval calculation."""

from datetime import datetime, timedelta, timezone

import pytest

from victorialogs_mcp.exceptions import InvalidDuration
from victorialogs_mcp.step import (
    IntervalHints,
    calculate_rate_interval,
    calculate_step,
    resolve_interval,
    round_interval,
)


def _hints(ds, query, query_ms, fallback):
    return IntervalHints(
        datasource_interval=ds,
        query_interval=query,
        query_interval_ms=query_ms,
        fallback_interval=fallback,
    )


class TestResolveInterval:
    @pytest.mark.parametrize(
        "ds,query,query_ms,fallback,expected",
        [
            ("", "", 0, timedelta(0), timedelta(0)),
            ("20s", "", 0, timedelta(0), timedelta(seconds=20)),
            ("20s", "10s", 0, timedelta(0), timedelta(seconds=10)),
            ("20s", "10s", 5000, timedelta(0), timedelta(seconds=10)),
            ("20s", "", 5000, timedelta(0), timedelta(seconds=5)),
            ("", "", 5000, timedelta(microseconds=10), timedelta(seconds=5)),
            ("", "", 0, timedelta(seconds=5), timedelta(seconds=5)),
            ("123", "", 0, timedelta(seconds=5), timedelta(minutes=2, seconds=3)),
            ("0s", "2s", 0, timedelta(0), timedelta(seconds=2)),
            ("0s", "", 0, timedelta(seconds=5), timedelta(0)),
            (None, None, 0, timedelta(seconds=15), timedelta(seconds=15)),
        ],
    )
    def test_precedence(self, ds, query, query_ms, fallback, expected):
        assert resolve_interval(_hints(ds, query, query_ms, fallback)) == expected

    @pytest.mark.parametrize(
        "ds,query,query_ms",
        [
            ("a3", "", 0),
            ("", "a3", 0),
            ("20s", "a3", 5000),
        ],
    )
    def test_invalid(self, ds, query, query_ms):
        with pytest.raises(InvalidDuration):
            resolve_interval(_hints(ds, query, query_ms, timedelta(seconds=5)))

    def test_invalid_datasource_interval_shadowed_by_query_interval(self):
        assert resolve_interval(_hints("a3", "10s", 0, timedelta(0))) == timedelta(seconds=10)


class TestCalculateStep:
    @pytest.mark.parametrize(
        "floor,range_,points,expected",
        [
            (timedelta(seconds=20), timedelta(days=30), 43200, timedelta(minutes=1)),
            (timedelta(seconds=1), timedelta(days=30), 43200, timedelta(minutes=1)),
            (timedelta(seconds=5), timedelta(days=30), 10000, timedelta(minutes=5)),
            (timedelta(seconds=5), timedelta(hours=1), 10000, timedelta(seconds=5)),
            (timedelta(minutes=2), timedelta(hours=1), 10000, timedelta(minutes=2)),
            (timedelta(seconds=60), timedelta(days=2), 100, timedelta(minutes=30)),
            (timedelta(seconds=60), timedelta(days=90), 100000, timedelta(minutes=1)),
        ],
    )
    def test_vectors(self, floor, range_, points, expected):
        end = datetime.now(timezone.utc)
        assert calculate_step(floor, end - range_, end, points) == expected

    def test_floor_passed_through_unsnapped(self):
        end = datetime.now(timezone.utc)
        floor = timedelta(seconds=77)
        assert calculate_step(floor, end - timedelta(hours=1), end, 1000) == floor

    def test_zero_points_uses_default_resolution(self):
        end = datetime.now(timezone.utc)
        # 1500 点覆盖 25 小时 => 60s
        assert calculate_step(timedelta(0), end - timedelta(hours=25), end, 0) == timedelta(minutes=1)


@pytest.mark.parametrize(
    "interval,expected",
    [
        (timedelta(milliseconds=5), timedelta(milliseconds=1)),
        (timedelta(seconds=8), timedelta(seconds=10)),
        (timedelta(seconds=77.76), timedelta(minutes=1)),
        (timedelta(hours=5), timedelta(hours=6)),
        (timedelta(days=5), timedelta(days=1)),
        (timedelta(days=20), timedelta(weeks=1)),
        (timedelta(days=30), timedelta(days=30)),
        (timedelta(days=100), timedelta(days=365)),
    ],
)
def test_round_interval(interval, expected):
    assert round_interval(interval) == expected


@pytest.mark.parametrize(
    "interval,scrape,expected",
    [
        (timedelta(0), "", timedelta(minutes=1)),
        (timedelta(seconds=5), "", timedelta(minutes=1)),
        (timedelta(0), "10s", timedelta(seconds=40)),
        (timedelta(seconds=5), "10s", timedelta(seconds=40)),
        (timedelta(seconds=20), "10s", timedelta(seconds=40)),
        (timedelta(minutes=2), "10s", timedelta(minutes=2)),
        (timedelta(seconds=20), "a3", timedelta(0)),
    ],
)
def test_calculate_rate_interval(interval, scrape, expected):
    assert calculate_rate_interval(interval, scrape) == expected
