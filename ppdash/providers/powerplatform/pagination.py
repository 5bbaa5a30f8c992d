from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from ppdash.providers.powerplatform.schemas import Page


logger = logging.getLogger(__name__)


async def collect_pages(
    fetch_page: Callable[[str], Awaitable[Page]],
    first_url: str,
    *,
    max_pages: int,
) -> list[Any]:
    # Follow continuation links until absent, repeated, or the page cap is hit.
    items: list[Any] = []
    seen: set[str] = set()
    url: str | None = first_url
    pages = 0
    while url:
        if url in seen:
            logger.warning("pagination_cycle_detected url=%s pages=%s", url, pages)
            break
        if pages >= max(max_pages, 1):
            logger.warning("pagination_page_cap_reached url=%s pages=%s", url, pages)
            break
        seen.add(url)
        page = await fetch_page(url)
        pages += 1
        items.extend(page.value)
        url = page.continuation
    return items
