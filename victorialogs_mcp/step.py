from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger

from victorialogs_mcp.exceptions import InvalidDuration
from victorialogs_mcp.utils import parse_duration

DEFAULT_RESOLUTION = 1500
DEFAULT_SCRAPE_INTERVAL = timedelta(seconds=15)

_MS = timedelta(milliseconds=1)

# (阈值, 取整结果)：区间 <= 阈值 时取对应的整齐值，阈值约为相邻两个整齐值的中点
_ROUNDING_TABLE = [
    (10 * _MS, 1 * _MS),
    (15 * _MS, 10 * _MS),
    (35 * _MS, 20 * _MS),
    (75 * _MS, 50 * _MS),
    (150 * _MS, 100 * _MS),
    (350 * _MS, 200 * _MS),
    (750 * _MS, 500 * _MS),
    (timedelta(seconds=1.5), timedelta(seconds=1)),
    (timedelta(seconds=3.5), timedelta(seconds=2)),
    (timedelta(seconds=7.5), timedelta(seconds=5)),
    (timedelta(seconds=12.5), timedelta(seconds=10)),
    (timedelta(seconds=17.5), timedelta(seconds=15)),
    (timedelta(seconds=25), timedelta(seconds=20)),
    (timedelta(seconds=45), timedelta(seconds=30)),
    (timedelta(minutes=1.5), timedelta(minutes=1)),
    (timedelta(minutes=3.5), timedelta(minutes=2)),
    (timedelta(minutes=7.5), timedelta(minutes=5)),
    (timedelta(minutes=12.5), timedelta(minutes=10)),
    (timedelta(minutes=17.5), timedelta(minutes=15)),
    (timedelta(minutes=25), timedelta(minutes=20)),
    (timedelta(minutes=45), timedelta(minutes=30)),
    (timedelta(hours=1.5), timedelta(hours=1)),
    (timedelta(hours=2.5), timedelta(hours=2)),
    (timedelta(hours=4.5), timedelta(hours=3)),
    (timedelta(hours=9), timedelta(hours=6)),
    (timedelta(hours=24), timedelta(hours=12)),
    (timedelta(hours=48), timedelta(hours=24)),
    (timedelta(weeks=1), timedelta(hours=24)),
    (timedelta(weeks=3), timedelta(weeks=1)),
]
_ROUND_MONTH_LIMIT = timedelta(weeks=6)
_MONTH = timedelta(days=30)
_YEAR = timedelta(days=365)


@dataclass(frozen=True)
class IntervalHints:
    """一次查询声明的各级间隔提示"""
    datasource_interval: Optional[str] = None
    query_interval: Optional[str] = None
    query_interval_ms: int = 0
    fallback_interval: timedelta = timedelta(0)


def resolve_interval(hints: IntervalHints) -> timedelta:
    """按优先级选出最小步长：
    query_interval > query_interval_ms > datasource_interval > fallback_interval。
    非空的 query_interval 总是优先检查，解析失败直接报错。"""
    if hints.query_interval:
        return parse_duration(hints.query_interval)
    if hints.query_interval_ms != 0:
        return timedelta(milliseconds=hints.query_interval_ms)
    if hints.datasource_interval:
        return parse_duration(hints.datasource_interval)
    return hints.fallback_interval


def round_interval(interval: timedelta) -> timedelta:
    for threshold, value in _ROUNDING_TABLE:
        if interval <= threshold:
            return value
    if interval < _ROUND_MONTH_LIMIT:
        return _MONTH
    return _YEAR


def calculate_step(min_interval: timedelta, start: datetime, end: datetime, max_data_points: int) -> timedelta:
    """根据时间范围与点数上限计算查询步长。
    1. 未设置点数上限 => 使用默认分辨率 1500。
    2. raw = range / max_data_points。
    3. raw 小于最小步长 => 原样返回最小步长（不取整）。
    4. 否则将 raw 取整到最接近的整齐值（1s、5s、1m、5m、30m、1h、1d ...）。"""
    resolution = max_data_points if max_data_points > 0 else DEFAULT_RESOLUTION
    raw = (end - start) / resolution
    if raw < min_interval:
        return min_interval
    return round_interval(raw)


def calculate_rate_interval(interval: timedelta, scrape_interval: str) -> timedelta:
    """rate 类聚合窗口：至少覆盖 4 个采集点，且不小于给定的 interval。
    scrape_interval 解析失败时静默返回 0。"""
    if not scrape_interval:
        scrape = DEFAULT_SCRAPE_INTERVAL
    else:
        try:
            scrape = parse_duration(scrape_interval)
        except InvalidDuration as e:
            logger.debug(f"忽略无法解析的 scrapeInterval={scrape_interval!r}: {e}")
            return timedelta(0)
    return max(4 * scrape, interval)
