"""
core/filters.py -- Pagination and sort parameters for list endpoints.

Filters is the validated query-string shape (page, page_size, sort against a
safelist). Metadata is what list responses report back so clients can walk
the pages. Both are plain dataclasses; the API layer builds Filters from the
query string and the stores consume it.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

MAX_PAGE = 10_000_000
MAX_PAGE_SIZE = 100


@dataclass
class Filters:
    page: int = 1
    page_size: int = 20
    sort: str = "id"
    sort_safelist: tuple[str, ...] = field(default_factory=tuple)

    def validate(self) -> dict[str, str]:
        """Return field -> message for every invalid parameter (empty when valid)."""
        errors: dict[str, str] = {}
        if not 0 < self.page <= MAX_PAGE:
            errors["page"] = f"must be between 1 and {MAX_PAGE:,}"
        if not 0 < self.page_size <= MAX_PAGE_SIZE:
            errors["page_size"] = f"must be between 1 and {MAX_PAGE_SIZE}"
        if self.sort not in self.sort_safelist:
            errors["sort"] = "invalid sort value"
        return errors

    def sort_key(self) -> str:
        """Sort parameter without its direction prefix.

        Only called after validate() -- the safelist check is what keeps
        arbitrary input out of ORDER BY.
        """
        if self.sort not in self.sort_safelist:
            raise ValueError(f"unsafe sort parameter: {self.sort}")
        return self.sort.lstrip("-")

    def descending(self) -> bool:
        return self.sort.startswith("-")

    def limit(self) -> int:
        return self.page_size

    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class Metadata:
    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0

    def as_dict(self) -> dict:
        # Nothing matched -- report an empty object rather than zeros.
        if self.total_records == 0:
            return {}
        return {
            "current_page": self.current_page,
            "page_size": self.page_size,
            "first_page": self.first_page,
            "last_page": self.last_page,
            "total_records": self.total_records,
        }


def calculate_metadata(total_records: int, page: int, page_size: int) -> Metadata:
    if total_records == 0:
        return Metadata()
    return Metadata(
        current_page=page,
        page_size=page_size,
        first_page=1,
        last_page=math.ceil(total_records / page_size),
        total_records=total_records,
    )
