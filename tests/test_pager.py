"""
Tests for the paginated source reader.
"""

import pytest

from storemigrate.extractors.base import Page
from storemigrate.services.pager import for_each_page


class ScriptedPages:
    """Returns pre-built pages and records every request."""

    def __init__(self, pages):
        self.pages = list(pages)
        self.requests = []

    async def __call__(self, cursor, page_size):
        self.requests.append((cursor, page_size))
        return self.pages.pop(0)


@pytest.mark.asyncio
async def test_reads_until_terminal_cursor():
    first_cursor = object()
    second_cursor = {"token": "opaque"}
    reader = ScriptedPages([
        Page(items=[1, 2], next_cursor=first_cursor),
        Page(items=[3, 4], next_cursor=second_cursor),
        Page(items=[5], next_cursor=None),
    ])
    visited = []

    async def visit(items, is_last):
        visited.append((list(items), is_last))

    pages = await for_each_page(reader, 2, visit)

    assert pages == 3
    assert visited == [([1, 2], False), ([3, 4], False), ([5], True)]
    assert reader.requests[0] == (None, 2)
    assert reader.requests[1][0] is first_cursor
    assert reader.requests[2][0] is second_cursor


@pytest.mark.asyncio
async def test_empty_pages_are_visited():
    reader = ScriptedPages([
        Page(items=[], next_cursor="next"),
        Page(items=[], next_cursor=None),
    ])
    visited = []

    async def visit(items, is_last):
        visited.append((items, is_last))

    assert await for_each_page(reader, 10, visit) == 2
    assert visited == [([], False), ([], True)]


@pytest.mark.asyncio
async def test_page_is_visited_before_next_read():
    log = []
    pages = [Page(items=["a"], next_cursor="c1"), Page(items=["b"], next_cursor=None)]

    async def read_page(cursor, page_size):
        log.append(("read", cursor))
        return pages.pop(0)

    async def visit(items, is_last):
        log.append(("visit", items[0]))

    await for_each_page(read_page, 1, visit)

    assert log == [("read", None), ("visit", "a"), ("read", "c1"), ("visit", "b")]


@pytest.mark.asyncio
async def test_visit_errors_stop_reading():
    reader = ScriptedPages([Page(items=[1], next_cursor="more"), Page(items=[2], next_cursor=None)])

    async def visit(items, is_last):
        raise RuntimeError("visit failed")

    with pytest.raises(RuntimeError):
        await for_each_page(reader, 1, visit)

    assert len(reader.requests) == 1
