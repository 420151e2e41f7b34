"""Tests for the _stream selector parser."""

import pytest

from victorialogs_mcp.selector import parse_stream_selector


def test_single_group():
    assert parse_stream_selector('{host="h1",app="web"}') == [[("host", "h1"), ("app", "web")]]


def test_empty_selector():
    assert parse_stream_selector("{}") == []


def test_whitespace_and_operators():
    got = parse_stream_selector('{ host = "h1" , app=~"we.*", env!="dev" }')
    assert got == [[("host", "h1"), ("app", "we.*"), ("env", "dev")]]


def test_or_groups():
    assert parse_stream_selector('{a="1" or b!="2"}') == [[("a", "1")], [("b", "2")]]


def test_escaped_quotes():
    assert parse_stream_selector(r'{msg="say \"hi\""}') == [[("msg", 'say "hi"')]]


@pytest.mark.parametrize(
    "selector",
    ['host="h1"', "{host=h1}", '{host="h1" app="x"}', '{host="h1"', '{="x"}'],
)
def test_malformed(selector):
    with pytest.raises(ValueError):
        parse_stream_selector(selector)
