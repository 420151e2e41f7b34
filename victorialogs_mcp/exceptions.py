"""
数据源错误类型。
每个错误都携带一个类 HTTP 的 status，用于填充单个查询的响应。
"""
from __future__ import annotations

STATUS_BAD_REQUEST = 400
STATUS_INTERNAL = 500
STATUS_TIMEOUT = 504


class DatasourceError(Exception):
    """所有数据源错误的基类"""
    status: int = STATUS_INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidDuration(DatasourceError, ValueError):
    """时长字符串不合法"""
    status = STATUS_BAD_REQUEST


class InvalidTimestamp(DatasourceError, ValueError):
    """时间戳字符串不合法（包括年份越界）"""
    status = STATUS_BAD_REQUEST


class InvalidQuery(DatasourceError):
    """面板查询 JSON 无法解析"""
    status = STATUS_BAD_REQUEST


class InternalDecodeFailure(DatasourceError):
    """响应流中的 JSON 记录或 _time 字段无法解析"""
    status = STATUS_INTERNAL


class UpstreamStatus(DatasourceError):
    """后端返回了非 200 状态码"""

    def __init__(self, status_code: int):
        super().__init__(f"got unexpected response status code: {status_code}")
        self.status = status_code


class TransportFailure(DatasourceError):
    """网络层错误（非可重试的断连）"""
    status = STATUS_BAD_REQUEST


class QueryCancelled(DatasourceError):
    """查询在共享截止时间之前未完成而被取消"""
    status = STATUS_TIMEOUT
