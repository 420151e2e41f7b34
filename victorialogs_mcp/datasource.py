from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import httpx
from loguru import logger
from pydantic import ValidationError

from victorialogs_mcp.config import VictoriaLogsConfig
from victorialogs_mcp.exceptions import DatasourceError, InvalidQuery, QueryCancelled
from victorialogs_mcp.logs_client import VictoriaLogsClient
from victorialogs_mcp.models import DataResponse, HealthResult, LogQuery, QueryType
from victorialogs_mcp.selector import SelectorParser
from victorialogs_mcp.step import (
    DEFAULT_SCRAPE_INTERVAL,
    IntervalHints,
    calculate_step,
    resolve_interval,
)
from victorialogs_mcp.utils import replace_template_variable

QueryInput = Union[LogQuery, Mapping[str, Any]]

DEFAULT_REF_ID = LogQuery.model_fields["refId"].default


def _prepare(raw: QueryInput) -> Tuple[str, QueryInput]:
    """提前校验查询以确定 refId；校验失败的查询原样交给 query() 生成错误响应"""
    if isinstance(raw, LogQuery):
        return raw.refId, raw
    try:
        q = LogQuery.model_validate(raw)
    except ValidationError:
        ref_id = raw.get("refId") if isinstance(raw, Mapping) else None
        return (str(ref_id) if ref_id else DEFAULT_REF_ID), raw
    return q.refId, q


def resolve_query_step(config: VictoriaLogsConfig, q: LogQuery) -> timedelta:
    """数据源 timeInterval、查询 interval/intervalMs 与默认 15s 共同决定最小步长，再结合时间范围与点数上限计算步长"""
    hints = IntervalHints(
        datasource_interval=config.timeInterval,
        query_interval=q.interval,
        query_interval_ms=q.intervalMs,
        fallback_interval=DEFAULT_SCRAPE_INTERVAL,
    )
    return calculate_step(resolve_interval(hints), q.timeRange.from_, q.timeRange.to, q.maxDataPoints)


class Datasource:
    """一个数据源实例：构造时创建 HTTP 客户端，aclose() 时释放。"""

    def __init__(
        self,
        config: VictoriaLogsConfig,
        *,
        selector_parser: Optional[SelectorParser] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.client = VictoriaLogsClient(
            config.baseUrl,
            http_method=config.httpMethod,
            custom_query_params=config.customQueryParameters,
            request_timeout=config.queryTimeout,
            selector_parser=selector_parser,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "Datasource":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def resolve_step(self, q: LogQuery) -> timedelta:
        return resolve_query_step(self.config, q)

    async def query(self, raw: QueryInput) -> DataResponse:
        """执行单个查询。查询级错误转换为带状态码的 DataResponse，不向外抛出。"""
        try:
            q = raw if isinstance(raw, LogQuery) else LogQuery.model_validate(raw)
        except ValidationError as e:
            return DataResponse.from_error(InvalidQuery(f"failed to parse query json: {e}"))
        try:
            step = self.resolve_step(q)
            expr = replace_template_variable(q.expr, step // timedelta(milliseconds=1))
            logger.debug(f"执行查询 refId={q.refId} type={q.queryType.value} step={step}")
            if q.queryType is QueryType.STATS_RANGE:
                frames = await self.client.query_stats_range(expr, q.timeRange.from_, q.timeRange.to, step)
            elif q.queryType is QueryType.STATS:
                frames = await self.client.query_stats(expr, q.timeRange.to)
            else:
                rows = q.maxLines or self.config.maxLines
                frames = [await self.client.query_logs(expr, q.timeRange.from_, q.timeRange.to, step, rows)]
        except DatasourceError as e:
            return DataResponse.from_error(e)
        return DataResponse(frames=frames)

    async def query_data(self, queries: List[QueryInput], timeout: Optional[float] = None) -> Dict[str, DataResponse]:
        """并发执行一批查询，按 refId 汇总结果。
        单个查询失败不影响其他查询；超过 timeout 仍未完成的查询被取消并报告 QueryCancelled。
        refId 重复时每个查询都会执行，结果以批次中靠后的查询为准。"""
        logger.info(f"批量执行查询 count={len(queries)} timeout={timeout}")
        tasks: List[Tuple[str, asyncio.Task]] = []
        for raw in queries:
            ref_id, q = _prepare(raw)
            if any(ref_id == seen for seen, _ in tasks):
                logger.warning(f"批次中 refId 重复，后面的结果覆盖前面的 refId={ref_id}")
            tasks.append((ref_id, asyncio.create_task(self.query(q))))
        if not tasks:
            return {}
        all_tasks = [t for _, t in tasks]
        try:
            _done, pending = await asyncio.wait(all_tasks, timeout=timeout)
        except asyncio.CancelledError:
            for t in all_tasks:
                t.cancel()
            await asyncio.gather(*all_tasks, return_exceptions=True)
            raise
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        responses: Dict[str, DataResponse] = {}
        for ref_id, task in tasks:
            if task.cancelled():
                responses[ref_id] = DataResponse.from_error(QueryCancelled(f"query {ref_id} was cancelled"))
            elif task.exception() is not None:
                responses[ref_id] = DataResponse.from_unexpected(task.exception())
            else:
                responses[ref_id] = task.result()
        return responses

    async def check_health(self) -> HealthResult:
        return await self.client.check_health()
