from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Tuple

from loguru import logger

from victorialogs_mcp.exceptions import InternalDecodeFailure, InvalidTimestamp
from victorialogs_mcp.models import SeriesFrame
from victorialogs_mcp.utils import instant_from_unix

METRIC_NAME_LABEL = "__name__"


def _extract_data(resp_json: Any) -> Dict[str, Any]:
    if not isinstance(resp_json, dict):
        raise InternalDecodeFailure(f"stats response must be a JSON object, got {type(resp_json).__name__}")
    if resp_json.get("status") != "success":
        logger.error(f"VictoriaLogs stats 查询返回非 success: {resp_json}")
        raise InternalDecodeFailure(f"stats query failed: {resp_json.get('error') or resp_json}")
    data = resp_json.get("data")
    if not isinstance(data, dict):
        raise InternalDecodeFailure("stats response has no data object")
    return data


def _sample(pair: Any) -> Tuple[datetime, float]:
    """[<unix 秒>, "<值>"] 转为 (datetime, float)"""
    if not isinstance(pair, list) or len(pair) != 2:
        raise InternalDecodeFailure(f"stats sample must be a [timestamp, value] pair, got {pair!r}")
    ts, value = pair
    try:
        return instant_from_unix(float(ts)), float(value)
    except (TypeError, ValueError, InvalidTimestamp) as e:
        raise InternalDecodeFailure(f"cannot parse stats sample {pair!r}: {e}") from e


def parse_stats_response(resp_json: Any) -> List[SeriesFrame]:
    """解析 stats_query / stats_query_range 的 Prometheus 风格响应。
    支持两种结构：
    - vector: item.value 为单个采样点
    - matrix: item.values 为采样点列表
    每条序列生成一个 SeriesFrame，__name__ 作为帧名，其余 metric 字段作为标签。"""
    data = _extract_data(resp_json)
    result_type = data.get("resultType", "")
    result = data.get("result") or []
    if result_type not in ("vector", "matrix"):
        raise InternalDecodeFailure(f"unsupported stats result type {result_type!r}")

    frames: List[SeriesFrame] = []
    for item in result:
        if not isinstance(item, dict):
            raise InternalDecodeFailure(f"stats series must be a JSON object, got {type(item).__name__}")
        metric = item.get("metric") or {}
        if not isinstance(metric, dict):
            raise InternalDecodeFailure(f"stats series metric must be a JSON object, got {type(metric).__name__}")
        labels = {str(k): str(v) for k, v in metric.items()}
        name = labels.pop(METRIC_NAME_LABEL, "")
        pairs = [item.get("value")] if result_type == "vector" else (item.get("values") or [])
        frame = SeriesFrame(name=name, labels=labels)
        for pair in pairs:
            t, v = _sample(pair)
            frame.time.append(t)
            frame.value.append(v)
        frames.append(frame)
    logger.debug(f"stats 解码完成 type={result_type} series={len(frames)}")
    return frames
