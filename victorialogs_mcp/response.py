from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import AsyncIterable, Dict, Iterable, List, Optional

from loguru import logger

from victorialogs_mcp.exceptions import InternalDecodeFailure, InvalidTimestamp
from victorialogs_mcp.models import Frame
from victorialogs_mcp.selector import SelectorParser, parse_stream_selector
from victorialogs_mcp.utils import instant_from_seconds


class FieldRole(Enum):
    MESSAGE = "_msg"
    TIME = "_time"
    STREAM = "_stream"
    LABEL = ""

    @classmethod
    def of(cls, name: str) -> "FieldRole":
        try:
            return cls(name)
        except ValueError:
            return cls.LABEL


_decoder = json.JSONDecoder()


class StreamDecoder:
    """增量解码 VictoriaLogs 返回的 JSON 对象流（逐行或首尾相接均可）。
    任意一条记录出错都会让整个解码失败，不返回部分结果。"""

    def __init__(self, selector_parser: Optional[SelectorParser] = None):
        self._parse_selector = selector_parser or parse_stream_selector
        self._buf = ""
        self._pos = 0
        self._time: List[Optional[datetime]] = []
        self._message: List[str] = []
        # 整个流共享一份标签，同名后写覆盖
        self._labels: Dict[str, str] = {}

    @property
    def records(self) -> int:
        return len(self._time)

    def feed(self, text: str) -> None:
        self._buf = self._buf[self._pos:] + text
        self._pos = 0
        self._drain(final=False)

    def finish(self, rows: int) -> Frame:
        """流结束后生成 Frame。
        标签列不是逐行数据，而是把最终值重复 rows 次（rows 为查询的 maxLines，与实际记录数无关）。"""
        self._drain(final=True)
        labels = {name: [value] * rows for name, value in self._labels.items()}
        logger.debug(f"流解码完成 records={self.records} labels={len(labels)} rows={rows}")
        return Frame(time=self._time, message=self._message, labels=labels)

    def _drain(self, *, final: bool) -> None:
        buf = self._buf
        while True:
            pos = self._skip_ws(buf, self._pos)
            if pos >= len(buf):
                self._pos = pos
                return
            try:
                obj, end = _decoder.raw_decode(buf, pos)
            except json.JSONDecodeError as e:
                # 出错位置之后已有换行：这一行已完整接收，只能是格式错误
                if final or "\n" in buf[e.pos:]:
                    raise InternalDecodeFailure(f"cannot decode log record: {e}") from e
                # 记录可能尚未接收完整，等待更多数据
                self._pos = pos
                return
            self._pos = end
            self._add_record(obj)

    @staticmethod
    def _skip_ws(buf: str, pos: int) -> int:
        n = len(buf)
        while pos < n and buf[pos] in " \t\r\n":
            pos += 1
        return pos

    def _add_record(self, record: object) -> None:
        if not isinstance(record, dict):
            raise InternalDecodeFailure(f"log record must be a JSON object, got {type(record).__name__}")
        message = ""
        ts: Optional[datetime] = None
        for name, value in record.items():
            if not isinstance(value, str):
                raise InternalDecodeFailure(f"field {name!r} must be a string, got {type(value).__name__}")
            role = FieldRole.of(name)
            if role is FieldRole.MESSAGE:
                message = value
            elif role is FieldRole.TIME:
                try:
                    ts = instant_from_seconds(value)
                except InvalidTimestamp as e:
                    raise InternalDecodeFailure(f"cannot parse {FieldRole.TIME.value}: {e.message}") from e
            elif role is FieldRole.STREAM:
                try:
                    groups = self._parse_selector(value)
                except ValueError as e:
                    raise InternalDecodeFailure(f"cannot parse {FieldRole.STREAM.value} {value!r}: {e}") from e
                for filters in groups:
                    for label, label_value in filters:
                        self._labels[label] = label_value
            else:
                self._labels[name] = value
        self._time.append(ts)
        self._message.append(message)


def parse_stream_response(
    chunks: Iterable[str], rows: int, selector_parser: Optional[SelectorParser] = None
) -> Frame:
    decoder = StreamDecoder(selector_parser)
    for chunk in chunks:
        decoder.feed(chunk)
    return decoder.finish(rows)


async def aparse_stream_response(
    chunks: AsyncIterable[str], rows: int, selector_parser: Optional[SelectorParser] = None
) -> Frame:
    decoder = StreamDecoder(selector_parser)
    async for chunk in chunks:
        decoder.feed(chunk)
    return decoder.finish(rows)
