from __future__ import annotations

import calendar
import math
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from victorialogs_mcp.exceptions import InvalidDuration, InvalidTimestamp

VAR_INTERVAL = "$__interval"

YEAR = timedelta(days=365)
DAY = timedelta(days=1)
HOUR = timedelta(hours=1)
MINUTE = timedelta(minutes=1)
SECOND = timedelta(seconds=1)
MILLISECOND = timedelta(milliseconds=1)

# 毫秒精度时间的取值范围（与 int64 纳秒可表示范围一致，存储不支持负时间）
MIN_TIME_MSECS = 0
MAX_TIME_MSECS = (2 ** 63 - 1) // 1_000_000

MIN_VALID_YEAR = 1970
MAX_VALID_YEAR = 2262

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_DURATION_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
    "y": 365 * 86400,
}
# ms 必须排在 m 前面
_DURATION_PART = r"(\d+(?:\.\d+)?|\.\d+)(ms|s|m|h|d|w|y)"
_DURATION_RE = re.compile(r"^([+-]?)((?:(?:\d+(?:\.\d+)?|\.\d+)(?:ms|s|m|h|d|w|y))+)$")
_DURATION_PART_RE = re.compile(_DURATION_PART)
_BARE_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def parse_duration(text: str) -> timedelta:
    """解析 Prometheus 风格时长，例如 20s、1h30m、1.5d、-5m。
    不带单位的数字按秒处理（123 => 2m3s）。结果截断到毫秒精度。"""
    if not text:
        raise InvalidDuration("duration cannot be empty")
    if _BARE_NUMBER_RE.match(text):
        seconds = float(text)
    else:
        m = _DURATION_RE.match(text)
        if not m:
            raise InvalidDuration(f"cannot parse duration {text!r}")
        sign, body = m.group(1), m.group(2)
        seconds = 0.0
        for value, unit in _DURATION_PART_RE.findall(body):
            seconds += float(value) * _DURATION_UNIT_SECONDS[unit]
        if sign == "-":
            seconds = -seconds
    try:
        return timedelta(milliseconds=int(seconds * 1000))
    except (OverflowError, ValueError) as e:
        raise InvalidDuration(f"duration {text!r} is out of range") from e


def format_duration(d: timedelta) -> str:
    """按最大可用单位向下取整输出，低于 1ms 一律输出 1ms（有损，仅用于展示与模板替换）"""
    for unit, suffix in ((YEAR, "y"), (DAY, "d"), (HOUR, "h"), (MINUTE, "m"), (SECOND, "s"), (MILLISECOND, "ms")):
        if d >= unit:
            return f"{d // unit}{suffix}"
    return "1ms"


def replace_template_variable(expr: str, interval_ms: int) -> str:
    """将查询表达式中的 $__interval 替换为格式化后的步长"""
    return expr.replace(VAR_INTERVAL, format_duration(timedelta(milliseconds=interval_ms)))


_RFC3339_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})[T ](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?([Zz]|[+-]\d{2}:\d{2})$")


def parse_rfc3339(text: str) -> float:
    """将 RFC3339 (可带纳秒小数) 解析为 Unix 秒。
    支持 Z 或 ±HH:MM 偏移。"""
    m = _RFC3339_RE.match(text)
    if not m:
        raise InvalidTimestamp(f"cannot parse {text!r} as RFC3339 timestamp")
    y, mo, d, h, mi, s, frac, tz = m.groups()
    # 右补零至9位
    frac_str = (frac or "").ljust(9, "0")
    fraction_ns = int(frac_str)

    # 偏移量(秒)
    if tz in ("Z", "z"):
        offset_sec = 0
    else:
        sign = 1 if tz[0] == "+" else -1
        offset_sec = sign * (int(tz[1:3]) * 3600 + int(tz[4:6]) * 60)

    try:
        # calendar.timegm 将传入元组按 UTC 解释
        epoch_sec_as_if_utc = calendar.timegm(datetime(int(y), int(mo), int(d), int(h), int(mi), int(s)).timetuple())
    except ValueError as e:
        raise InvalidTimestamp(f"cannot parse {text!r} as RFC3339 timestamp: {e}") from e
    return (epoch_sec_as_if_utc - offset_sec) + fraction_ns / 1e9


# 定长日历格式：按去掉时区后的字符串长度匹配
_CALENDAR_LAYOUTS = {
    7: "%Y-%m",
    10: "%Y-%m-%d",
    13: "%Y-%m-%dT%H",
    16: "%Y-%m-%dT%H:%M",
    19: "%Y-%m-%dT%H:%M:%S",
}


def _parse_utc(s: str, layout: str) -> float:
    try:
        t = datetime.strptime(s, layout)
    except ValueError as e:
        raise InvalidTimestamp(f"cannot parse {s!r}: {e}") from e
    return float(calendar.timegm(t.timetuple()))


def _parse_tz_offset(tz: str) -> float:
    try:
        hour = int(tz[1:3])
    except ValueError as e:
        raise InvalidTimestamp(f"cannot parse hour from timezone offset {tz!r}") from e
    try:
        minute = int(tz[4:])
    except ValueError as e:
        raise InvalidTimestamp(f"cannot parse minute from timezone offset {tz!r}") from e
    offset = float(hour * 3600 + minute * 60)
    # +08:00 表示本地时间比 UTC 早，换算到 UTC 需要减去
    return -offset if tz[0] == "+" else offset


def parse_instant(text: str, now: float) -> float:
    """按以下顺序解析时间表达式，返回 Unix 秒（浮点）：
    1. now
    2. 末尾 ±HH:MM 时区偏移
    3. 末尾 Z
    4. 相对时长：now-1h、-5m、1h（均表示“之前”）
    5. YYYY（年份限定在 [1970, 2262]）
    6. 纯数字时间戳，>= 2^32 视为毫秒
    7. YYYY-MM / YYYY-MM-DD / YYYY-MM-DDTHH / YYYY-MM-DDTHH:MM / YYYY-MM-DDTHH:MM:SS
    8. 其余按 RFC3339 解析
    检查顺序决定了歧义字符串（如 123 与 1234）的归属，不可调整。"""
    if text == "now":
        return now
    orig = text
    s = text
    tz_offset = 0.0
    if len(orig) > 6:
        tz = orig[-6:]
        if tz[0] in "+-" and tz[3] == ":":
            tz_offset = _parse_tz_offset(tz)
            s = orig[:-6]
    if s.endswith("Z"):
        s = s[:-1]

    if (len(s) > 0 and (s[-1] > "9" or s[0] == "-")) or s.startswith("now"):
        # 相对当前时间的时长
        if s.startswith("now"):
            s = s[3:]
        try:
            d = parse_duration(s)
        except InvalidDuration as e:
            raise InvalidTimestamp(f"cannot parse {orig!r}: {e.message}") from e
        if d > timedelta(0):
            d = -d
        return now + d.total_seconds()

    if len(s) == 4:
        year_ts = _parse_utc(s, "%Y")
        if not MIN_VALID_YEAR <= int(s) <= MAX_VALID_YEAR:
            raise InvalidTimestamp(
                f"cannot parse year from {s!r}: year must in range [{MIN_VALID_YEAR}, {MAX_VALID_YEAR}]"
            )
        return tz_offset + year_ts

    if "-" not in orig:
        # 秒或毫秒时间戳
        try:
            ts = float(orig)
        except ValueError as e:
            raise InvalidTimestamp(f"cannot parse {orig!r} as unix timestamp") from e
        if ts >= (1 << 32):
            ts /= 1000
        return ts

    layout = _CALENDAR_LAYOUTS.get(len(s))
    if layout is not None:
        return tz_offset + _parse_utc(s, layout)

    return parse_rfc3339(orig)


def parse_time(text: str) -> float:
    return parse_instant(text, time.time())


def instant_from_unix(secs: float) -> datetime:
    """Unix 秒转为毫秒精度的 UTC datetime，超出范围的值被截断到 [0, MAX_TIME_MSECS]"""
    if math.isnan(secs):
        raise InvalidTimestamp("timestamp cannot be NaN")
    msecs_f = secs * 1e3
    if msecs_f < MIN_TIME_MSECS:
        msecs = MIN_TIME_MSECS
    elif msecs_f > MAX_TIME_MSECS:
        msecs = MAX_TIME_MSECS
    else:
        msecs = int(msecs_f)
    return _UNIX_EPOCH + timedelta(milliseconds=msecs)


def to_unix_seconds(t: datetime) -> int:
    return int((t - _UNIX_EPOCH).total_seconds())


def instant_from_seconds(text: str, now: Optional[float] = None) -> datetime:
    """解析时间表达式并返回毫秒精度的 UTC datetime"""
    return instant_from_unix(parse_time(text) if now is None else parse_instant(text, now))
