"""Offset pagination result."""

from dataclasses import dataclass
from typing import Any


@dataclass
class Page:
    """One page of results."""

    data: list[Any]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [d.to_dict() if hasattr(d, "to_dict") else d for d in self.data],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
            "has_next": self.page < self.total_pages,
            "has_prev": self.page > 1,
        }
