"""Paginated source reader."""

import logging
from typing import Any, Awaitable, Callable, List

from ..extractors.base import Page

logger = logging.getLogger(__name__)

ReadPageFn = Callable[[Any, int], Awaitable[Page]]
VisitFn = Callable[[List[Any], bool], Awaitable[None]]


async def for_each_page(read_page: ReadPageFn, page_size: int, visit: VisitFn) -> int:
    """
    Walk a paged collection one page at a time.

    The first request carries no cursor; each following request carries
    the cursor returned with the previous page, unchanged. ``visit`` is
    awaited for every page, empty ones included, before the next page is
    requested.

    Args:
        read_page: Reads the page at a cursor
        page_size: Maximum items per page
        visit: Receives the page items and whether it is the last page

    Returns:
        Number of pages read
    """
    cursor = None
    pages = 0

    while True:
        page = await read_page(cursor, page_size)
        pages += 1
        await visit(page.items, page.is_last)

        if page.is_last:
            logger.debug(f"Read {pages} pages")
            return pages
        cursor = page.next_cursor
