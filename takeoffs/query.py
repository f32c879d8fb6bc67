"""
Filter, sort and pagination options for listing takeoffs.

`TakeoffQuery` is store-agnostic: the in-memory store evaluates it with
`matches`/`sort_key`, the SQL store translates it into SQLAlchemy clauses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 9
MAX_LIMIT = 100
DEFAULT_SORT = "newest"

# sort option -> (document field, descending)
SORT_OPTIONS: dict[str, tuple[str, bool]] = {
    "price_asc": ("price", False),
    "price_desc": ("price", True),
    "size": ("project_size", False),
    "newest": ("created_at", True),
}

SEARCH_FIELDS = ("title", "description", "zip_code")


def parse_types(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [t.strip().lower() for t in value.split(",") if t.strip()]


@dataclass
class TakeoffQuery:
    zip_code: Optional[str] = None
    size: Optional[str] = None
    types: list[str] = field(default_factory=list)
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    search: Optional[str] = None
    sort: str = DEFAULT_SORT
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @classmethod
    def from_params(
        cls,
        *,
        zip_code: Optional[str] = None,
        size: Optional[str] = None,
        type: Optional[str] = None,
        price_min: Optional[float] = None,
        price_max: Optional[float] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
    ) -> "TakeoffQuery":
        return cls(
            zip_code=zip_code or None,
            size=size.lower() if size else None,
            types=parse_types(type),
            price_min=price_min,
            price_max=price_max,
            search=search or None,
            sort=sort if sort in SORT_OPTIONS else DEFAULT_SORT,
            page=max(page, 1),
            limit=min(max(limit, 1), MAX_LIMIT),
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def sort_field(self) -> str:
        return SORT_OPTIONS[self.sort][0]

    @property
    def descending(self) -> bool:
        return SORT_OPTIONS[self.sort][1]

    def matches(self, doc: dict[str, Any]) -> bool:
        if self.zip_code and doc.get("zip_code") != self.zip_code:
            return False
        if self.size and doc.get("project_size") != self.size:
            return False
        if self.types and (doc.get("project_type") or "").lower() not in self.types:
            return False
        price = doc.get("price")
        if self.price_min is not None and (price is None or price < self.price_min):
            return False
        if self.price_max is not None and (price is None or price > self.price_max):
            return False
        if self.search:
            needle = self.search.lower()
            if not any(needle in (doc.get(f) or "").lower() for f in SEARCH_FIELDS):
                return False
        return True

    def sort_key(self, doc: dict[str, Any]) -> tuple:
        # Missing values sort last in either direction.
        value = doc.get(self.sort_field)
        missing = value is None
        return (
            missing if not self.descending else not missing,
            value if not missing else 0,
            doc.get("id") or "",
        )

    def apply(self, docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Filter, sort and paginate documents held in memory."""
        matched = [doc for doc in docs if self.matches(doc)]
        matched.sort(key=self.sort_key, reverse=self.descending)
        return matched[self.offset : self.offset + self.limit]
