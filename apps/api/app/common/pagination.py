"""Pagination parameter handling shared by list endpoints."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class Page:
    """A window over a list result.

    ``start`` holds a caller-supplied row offset; when it is set, ``page`` is
    only the page that offset falls in, reported back for display.
    """

    page: int
    page_size: int
    start: Optional[int] = None

    @property
    def offset(self) -> int:
        if self.start is not None:
            return self.start
        return (self.page - 1) * self.page_size

    def total_pages(self, total: int) -> int:
        return max(1, math.ceil(total / self.page_size)) if total else 1


def resolve_page(
    page: Optional[int] = None,
    page_size: Optional[int] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> Page:
    """Accept either page/page_size or limit/offset; page size is clamped to 1..500.

    An explicit ``page`` wins over ``offset``.
    """
    size = page_size if page_size is not None else limit
    if size is None:
        size = DEFAULT_PAGE_SIZE
    size = min(max(size, 1), MAX_PAGE_SIZE)

    if page is None and offset is not None:
        start = max(offset, 0)
        return Page(page=start // size + 1, page_size=size, start=start)
    return Page(page=max(page or 1, 1), page_size=size)
