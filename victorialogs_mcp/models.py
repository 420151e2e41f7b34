from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from victorialogs_mcp.exceptions import DatasourceError, STATUS_INTERNAL
from victorialogs_mcp.utils import instant_from_seconds, instant_from_unix

STATUS_OK = 200

# 不小于 2^32 的数字时间戳按毫秒处理
_MSECS_THRESHOLD = 1 << 32


def _iso(t: Optional[datetime]) -> Optional[str]:
    return t.isoformat().replace("+00:00", "Z") if t is not None else None


class TimeRange(BaseModel):
    """查询时间范围。
    from/to 支持 datetime、Unix 时间戳，以及任意时间表达式（now-1h、2024-01-02、RFC3339 ...）"""
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(alias="from")
    to: datetime

    @field_validator("from_", "to", mode="before")
    @classmethod
    def _parse_instant(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            # 数字是绝对时间戳，负数截断到 1970-01-01，不按相对时长处理
            secs = v / 1000 if v >= _MSECS_THRESHOLD else v
            return instant_from_unix(secs)
        if isinstance(v, str):
            return instant_from_seconds(v)
        return v

    @field_validator("from_", "to")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if self.from_ > self.to:
            raise ValueError("时间范围无效: from 不能晚于 to")
        return self


class QueryType(str, Enum):
    # 原始日志：/select/logsql/query
    INSTANT = "instant"
    # 单点统计：/select/logsql/stats_query
    STATS = "stats"
    # 时间序列统计：/select/logsql/stats_query_range
    STATS_RANGE = "statsRange"


APP_EXPLORE = "explore"


def default_query_type(panel_plugin_id: Optional[str] = None, app: Optional[str] = None) -> QueryType:
    """未指定 queryType 时的默认值：先看面板类型，无法判断时再看所在应用。
    logs/table 面板与 Explore 查询原始日志，timeseries 面板及其余场景查询时间序列统计。"""
    if panel_plugin_id in ("logs", "table"):
        return QueryType.INSTANT
    if panel_plugin_id == "timeseries":
        return QueryType.STATS_RANGE
    if app == APP_EXPLORE:
        return QueryType.INSTANT
    return QueryType.STATS_RANGE


class LogQuery(BaseModel):
    """单个面板查询（字段名与面板 JSON 保持一致）"""
    refId: str = "A"
    expr: str = ""
    queryType: Optional[QueryType] = None
    # 发起查询的面板插件与应用，仅用于推断缺省的 queryType
    panelPluginId: Optional[str] = None
    app: Optional[str] = None
    # 查询级最小间隔，例如 "10s"
    interval: Optional[str] = None
    # 面板计算出的间隔(毫秒)
    intervalMs: int = 0
    maxLines: int = 0
    maxDataPoints: int = 0
    timeRange: TimeRange

    @model_validator(mode="after")
    def _default_query_type(self) -> "LogQuery":
        if self.queryType is None:
            self.queryType = default_query_type(self.panelPluginId, self.app)
        return self


@dataclass
class Frame:
    """列式结果：time/message 每条记录一行，labels 每列重复 rows 次"""
    time: List[Optional[datetime]] = field(default_factory=list)
    message: List[str] = field(default_factory=list)
    labels: Dict[str, List[str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": [_iso(t) for t in self.time],
            "message": list(self.message),
            "labels": {k: list(v) for k, v in self.labels.items()},
        }


@dataclass
class SeriesFrame:
    """stats 查询结果中的一条时间序列"""
    name: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    time: List[datetime] = field(default_factory=list)
    value: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "labels": dict(self.labels),
            "time": [_iso(t) for t in self.time],
            "value": list(self.value),
        }


@dataclass
class DataResponse:
    status: int = STATUS_OK
    frames: List[Union[Frame, SeriesFrame]] = field(default_factory=list)
    error: Optional[DatasourceError] = None

    @classmethod
    def from_error(cls, err: DatasourceError) -> "DataResponse":
        logger.error(err.message)
        return cls(status=err.status, error=err)

    @classmethod
    def from_unexpected(cls, err: BaseException) -> "DataResponse":
        logger.opt(exception=err).error(f"查询出现未预期的错误: {err}")
        return cls(status=STATUS_INTERNAL, error=DatasourceError(str(err)))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"status": self.status, "frames": [f.to_dict() for f in self.frames]}
        if self.error is not None:
            out["error"] = self.error.message
        return out


@dataclass
class HealthResult:
    ok: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"status": "OK" if self.ok else "ERROR", "message": self.message}
