from __future__ import annotations

import json
import re
from typing import List, Protocol, Tuple

LabelFilter = Tuple[str, str]

_FILTER_RE = re.compile(
    r'\s*([a-zA-Z_][a-zA-Z0-9_.:]*)\s*(=~|!~|!=|=)\s*("(?:[^"\\]|\\.)*")\s*'
)
_OR_RE = re.compile(r"\s*or\s+", re.IGNORECASE)


class SelectorParser(Protocol):
    """解析 _stream 字段的选择器，返回若干组 (标签名, 标签值)"""

    def __call__(self, selector: str) -> List[List[LabelFilter]]:
        ...


def parse_stream_selector(selector: str) -> List[List[LabelFilter]]:
    """解析形如 {host="a",app=~"b" or env!="c"} 的流选择器。
    所有比较运算符的标签都会被收集，只保留标签名与取值；格式错误抛出 ValueError。"""
    s = selector.strip()
    if not (s.startswith("{") and s.endswith("}")):
        raise ValueError(f"stream selector must be enclosed in braces: {selector!r}")
    body = s[1:-1]
    groups: List[List[LabelFilter]] = []
    current: List[LabelFilter] = []
    pos = 0
    while pos < len(body):
        if not body[pos:].strip():
            break
        m = _FILTER_RE.match(body, pos)
        if not m:
            raise ValueError(f"cannot parse label filter at position {pos} in {selector!r}")
        name, _op, raw_value = m.groups()
        current.append((name, json.loads(raw_value)))
        pos = m.end()
        if pos >= len(body):
            break
        if body[pos] == ",":
            pos += 1
            continue
        sep = _OR_RE.match(body, pos)
        if sep is None:
            raise ValueError(f"unexpected {body[pos]!r} at position {pos} in {selector!r}")
        groups.append(current)
        current = []
        pos = sep.end()
    if current:
        groups.append(current)
    return groups
