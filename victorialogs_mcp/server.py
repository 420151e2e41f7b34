from __future__ import annotations

from typing import Any, Dict, List, Annotated, Optional

from fastmcp import FastMCP

from victorialogs_mcp.config import ConfigManager
from victorialogs_mcp.datasource import Datasource, resolve_query_step
from victorialogs_mcp.exceptions import DatasourceError
from victorialogs_mcp.models import APP_EXPLORE, LogQuery
from victorialogs_mcp.step import calculate_rate_interval
from victorialogs_mcp.utils import format_duration
from loguru import logger
from pydantic import ValidationError
import time
from datetime import timedelta

# 加载配置以获取端口
_cfg_for_port = ConfigManager.load()
_port = _cfg_for_port.global_config.serverPort or 7000
logger.info(f"初始化 FastMCP 服务端口: {_port}")
app = FastMCP("victorialogs-mcp")


@app.tool()
async def query_logs(
    queries: Annotated[List[Dict[str, Any]], "面板查询列表，每项形如 {refId, expr, timeRange: {from, to}, queryType?, maxLines?, interval?, intervalMs?, maxDataPoints?}；queryType 为 instant(原始日志，默认)、stats 或 statsRange；from/to 支持 now-1h、RFC3339、Unix 时间戳"],
    timeout: Annotated[Optional[float], "整批查询的超时时间(秒)，超时未完成的查询返回取消错误；省略则一直等待"] = None,
) -> Dict[str, Any]:
    """并发执行一批 LogsQL 查询，返回 {refId: {status, frames, error?}}。
    表达式中的 $__interval 会被替换为计算出的步长。"""
    logger.info(f"调用 query_logs count={len(queries)} timeout={timeout}")
    # 与 Explore 一样，未指定 queryType 的查询默认返回原始日志
    queries = [{"app": APP_EXPLORE, **q} if isinstance(q, dict) else q for q in queries]
    cfg = ConfigManager.load()
    async with Datasource(cfg.datasource) as ds:
        responses = await ds.query_data(queries, timeout=timeout)
    return {ref_id: resp.to_dict() for ref_id, resp in responses.items()}


@app.tool()
def resolve_step(
    start: Annotated[str, "起始时间，支持 now-1h、2024-01-02T03:04:05Z、Unix 时间戳等"],
    end: Annotated[str, "结束时间，格式同 start"] = "now",
    interval: Annotated[Optional[str], "查询级最小间隔，如 10s；省略则使用数据源 timeInterval"] = None,
    max_data_points: Annotated[int, "点数上限，0 表示使用默认分辨率 1500"] = 0,
) -> Dict[str, Any]:
    """计算给定时间范围的查询步长与 rate 窗口，便于编写 stats by (_time:step) 之类的查询。"""
    logger.info(f"调用 resolve_step start={start} end={end} interval={interval}")
    cfg = ConfigManager.load()
    try:
        q = LogQuery.model_validate(
            {"timeRange": {"from": start, "to": end}, "interval": interval, "maxDataPoints": max_data_points}
        )
    except ValidationError as e:
        return {"error": f"时间格式错误: {e}"}
    try:
        step = resolve_query_step(cfg.datasource, q)
    except DatasourceError as e:
        return {"error": e.message}
    rate = calculate_rate_interval(step, cfg.datasource.scrapeInterval or "")
    return {"step": format_duration(step), "stepMs": step // timedelta(milliseconds=1), "rateInterval": format_duration(rate)}


@app.tool()
async def check_health() -> Dict[str, Any]:
    """检查 VictoriaLogs 是否可达 (/health)"""
    logger.info("调用 check_health")
    cfg = ConfigManager.load()
    async with Datasource(cfg.datasource) as ds:
        result = await ds.check_health()
    return result.to_dict()


@app.tool()
def current_timestamp() -> Dict[str, int]:
    """获取当前 Unix 时间戳(秒)"""
    ts = int(time.time())
    logger.info(f"调用 current_timestamp now={ts}")
    return {"timestamp": ts}


def main() -> None:
    logger.info("启动 victorialogs-mcp 服务器")
    app.run(transport="streamable-http", port=_port)


if __name__ == "__main__":
    main()
