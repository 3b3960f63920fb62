"""Limit/offset pagination shared by list endpoints."""

from __future__ import annotations

from typing import Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel, computed_field

ItemT = TypeVar("ItemT")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class PaginationParams(BaseModel):
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


def get_pagination_params(
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> PaginationParams:
    """Read ``limit``/``offset`` query params."""
    return PaginationParams(limit=limit, offset=offset)


class Page(BaseModel, Generic[ItemT]):
    """One slice of a listing plus the total row count."""

    items: list[ItemT]
    total: int
    limit: int
    offset: int

    @computed_field
    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def build_page(items: list[ItemT], total: int, params: PaginationParams) -> Page[ItemT]:
    return Page(items=items, total=total, limit=params.limit, offset=params.offset)
