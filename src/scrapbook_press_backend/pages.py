"""
Page content provider interface.

The page editor and its data model live outside this service. The compiler
only needs, per page: a last-modified marker (cache addressing), a title and
sort order, a locked flag, and the bounding boxes of layout items for
pre-flight validation. DatabasePageProvider serves these from the local
SQLite table that the editor keeps current through the pages endpoint.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from .database import JobDatabase


class LayoutItem(BaseModel):
    id: str
    type: str = "unknown"
    x: float
    y: float
    width: float
    height: float


class PageVersion(BaseModel):
    page_id: str
    collection_id: str
    updated_marker: str
    title: str = ""
    order: int = 0
    locked: bool = False
    items: List[LayoutItem] = Field(default_factory=list)


class PageProvider(Protocol):
    def get_page(self, collection_id: str, page_id: str) -> Optional[PageVersion]: ...

    def list_locked_pages(self, collection_id: str) -> List[PageVersion]: ...


class DatabasePageProvider:
    def __init__(self, database: JobDatabase) -> None:
        self._db = database

    def get_page(self, collection_id: str, page_id: str) -> Optional[PageVersion]:
        row = self._db.get_page(collection_id, page_id)
        return PageVersion(**row) if row else None

    def list_locked_pages(self, collection_id: str) -> List[PageVersion]:
        return [PageVersion(**row) for row in self._db.list_pages(collection_id, locked_only=True)]

    def upsert_page(self, page: PageVersion) -> PageVersion:
        self._db.upsert_page(page.model_dump())
        return page


def resolve_pages(provider: PageProvider, collection_id: str, page_ids: Optional[Sequence[str]]) -> List[PageVersion]:
    """
    Fetch the pages to compile.

    Explicit page ids are fetched in the order given; unknown ids are skipped.
    Without ids, all locked pages are used, highest order first.
    """
    if page_ids:
        pages = (provider.get_page(collection_id, page_id) for page_id in page_ids)
        return [page for page in pages if page is not None]
    return provider.list_locked_pages(collection_id)
