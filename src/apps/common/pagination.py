# src/apps/common/pagination.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from django.conf import settings
from django.core.paginator import EmptyPage, Paginator


@dataclass(frozen=True)
class Page:
    """
    One page of a listing.

    items is already evaluated (a list), so callers can iterate it more than once.
    """
    items: list[Any]
    page: int
    limit: int
    total: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def paginate(queryset, *, page: Optional[int] = None, limit: Optional[int] = None) -> Page:
    """
    Slice a queryset (or list) into a Page.

    - page < 1 or missing -> 1
    - limit missing -> QUEST_BOARD_PAGE_SIZE, capped at QUEST_BOARD_MAX_PAGE_SIZE
    - a page past the end returns no items rather than raising
    """
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else settings.QUEST_BOARD_PAGE_SIZE
    limit = min(limit, settings.QUEST_BOARD_MAX_PAGE_SIZE)

    paginator = Paginator(queryset, limit)
    try:
        items = list(paginator.page(page).object_list)
    except EmptyPage:
        items = []

    return Page(
        items=items,
        page=page,
        limit=limit,
        total=paginator.count,
        total_pages=paginator.num_pages if paginator.count else 0,
    )
