from __future__ import annotations

import httpx
from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple

from loguru import logger
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt

from victorialogs_mcp.exceptions import InternalDecodeFailure, TransportFailure, UpstreamStatus
from victorialogs_mcp.models import Frame, HealthResult, SeriesFrame
from victorialogs_mcp.response import aparse_stream_response
from victorialogs_mcp.selector import SelectorParser
from victorialogs_mcp.stats import parse_stats_response
from victorialogs_mcp.utils import parse_duration, to_unix_seconds

QUERY_PATH = "/select/logsql/query"
STATS_QUERY_PATH = "/select/logsql/stats_query"
STATS_QUERY_RANGE_PATH = "/select/logsql/stats_query_range"
HEALTH_PATH = "/health"
DEFAULT_TIMEOUT = "30s"

Params = List[Tuple[str, str]]


def is_trivial_error(err: BaseException) -> bool:
    """对端断开连接一类的临时错误，可以重试一次"""
    # 服务端未返回响应即关闭连接（EOF）
    if isinstance(err, httpx.RemoteProtocolError):
        return True
    s = str(err)
    return "broken pipe" in s or "reset by peer" in s


def _log_retry(retry_state: RetryCallState) -> None:
    # 客户端与数据源之间的代理可能关闭了连接
    logger.warning(f"VictoriaLogs 连接被断开，重试一次 err={retry_state.outcome.exception()}")


def _step_param(step: timedelta) -> str:
    return f"{step // timedelta(milliseconds=1)}ms"


class VictoriaLogsClient:
    def __init__(
        self,
        base_url: str,
        *,
        http_method: str = "POST",
        custom_query_params: str = "",
        request_timeout: Optional[str] = None,
        selector_parser: Optional[SelectorParser] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.http_method = http_method or "POST"
        self.custom_query_params = custom_query_params
        self.selector_parser = selector_parser
        timeout_seconds = parse_duration(request_timeout or DEFAULT_TIMEOUT).total_seconds()
        logger.debug(f"初始化 VictoriaLogsClient base_url={self.base_url} method={self.http_method} timeout={timeout_seconds}s")
        self.client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    def _with_custom(self, params: Params) -> Params:
        """在固定参数之后追加自定义参数（不去重）"""
        custom = self.custom_query_params.lstrip("?&")
        if custom:
            params.extend(httpx.QueryParams(custom).multi_items())
        return params

    def build_params(self, query: str, start: datetime, end: datetime, step: timedelta, limit: int) -> Params:
        """日志查询参数：query/limit/start/end/step"""
        return self._with_custom([
            ("query", query),
            ("limit", str(limit)),
            ("start", str(to_unix_seconds(start))),
            ("end", str(to_unix_seconds(end))),
            ("step", _step_param(step)),
        ])

    def build_stats_range_params(self, query: str, start: datetime, end: datetime, step: timedelta) -> Params:
        return self._with_custom([
            ("query", query),
            ("start", str(to_unix_seconds(start))),
            ("end", str(to_unix_seconds(end))),
            ("step", _step_param(step)),
        ])

    def build_stats_params(self, query: str, at: datetime) -> Params:
        return self._with_custom([("query", query), ("time", str(to_unix_seconds(at)))])

    @retry(
        retry=retry_if_exception(is_trivial_error),
        stop=stop_after_attempt(2),
        before_sleep=_log_retry,
        reraise=True,
    )
    async def _send(self, url: str, params: Params) -> httpx.Response:
        request = self.client.build_request(self.http_method, url, params=params)
        return await self.client.send(request, stream=True)

    async def _request(self, path: str, params: Params) -> httpx.Response:
        url = f"{self.base_url}{path}"
        logger.debug(f"VictoriaLogs 请求 url={url} params={[p for p in params if p[0] != 'query']}")
        try:
            return await self._send(url, params)
        except httpx.TransportError as e:
            raise TransportFailure(f"failed to make http request: {e}") from e

    async def query_logs(self, query: str, start: datetime, end: datetime, step: timedelta, limit: int) -> Frame:
        """调用 /select/logsql/query，流式解码返回的 JSON 行为 Frame。
        标签列长度为 limit（即 maxLines）。"""
        logger.debug(f"VictoriaLogs 日志查询 query={query[:120]}")
        resp = await self._request(QUERY_PATH, self.build_params(query, start, end, step, limit))
        try:
            if resp.status_code != httpx.codes.OK:
                raise UpstreamStatus(resp.status_code)
            frame = await aparse_stream_response(resp.aiter_text(), limit, self.selector_parser)
        except httpx.TransportError as e:
            raise TransportFailure(f"failed to read response body: {e}") from e
        finally:
            await resp.aclose()
        logger.info(f"VictoriaLogs 查询完成 records={len(frame)} labels={len(frame.labels)}")
        return frame

    async def _fetch_json(self, path: str, params: Params) -> Any:
        resp = await self._request(path, params)
        try:
            if resp.status_code != httpx.codes.OK:
                raise UpstreamStatus(resp.status_code)
            await resp.aread()
        except httpx.TransportError as e:
            raise TransportFailure(f"failed to read response body: {e}") from e
        finally:
            await resp.aclose()
        try:
            return resp.json()
        except ValueError as e:
            raise InternalDecodeFailure(f"cannot decode stats response: {e}") from e

    async def query_stats_range(self, query: str, start: datetime, end: datetime, step: timedelta) -> List[SeriesFrame]:
        """调用 /select/logsql/stats_query_range，每条序列一个 SeriesFrame"""
        logger.debug(f"VictoriaLogs 范围统计查询 query={query[:120]}")
        frames = parse_stats_response(
            await self._fetch_json(STATS_QUERY_RANGE_PATH, self.build_stats_range_params(query, start, end, step))
        )
        logger.info(f"VictoriaLogs 范围统计查询完成 series={len(frames)}")
        return frames

    async def query_stats(self, query: str, at: datetime) -> List[SeriesFrame]:
        """调用 /select/logsql/stats_query，在时间点 at 计算一次统计"""
        logger.debug(f"VictoriaLogs 统计查询 query={query[:120]}")
        frames = parse_stats_response(await self._fetch_json(STATS_QUERY_PATH, self.build_stats_params(query, at)))
        logger.info(f"VictoriaLogs 统计查询完成 series={len(frames)}")
        return frames

    async def check_health(self) -> HealthResult:
        url = f"{self.base_url}{HEALTH_PATH}"
        try:
            r = await self.client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"健康检查请求失败 url={url} err={e}")
            return HealthResult(ok=False, message="request error")
        if r.status_code != httpx.codes.OK:
            return HealthResult(ok=False, message=f"got response code {r.status_code}")
        return HealthResult(ok=True, message="Data source is working")
