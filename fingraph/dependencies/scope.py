"""
FinGraph Scope Keys

A scope narrows which slice of a domain's data a recompute or a cache
entry concerns. Scopes are always explicit: either a single fiscal year
or the whole history ("all years"). There is no implicit "no scope".
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional

from fingraph.errors import InvalidScopeError


DEFAULT_MIN_YEAR = 1900
DEFAULT_MAX_YEAR = 2100


@dataclass(frozen=True)
class Scope:
    """Fiscal-year scope, or the all-years scope when `year` is None."""
    year: Optional[int] = None

    @classmethod
    def for_year(
        cls,
        year: Any,
        min_year: int = DEFAULT_MIN_YEAR,
        max_year: int = DEFAULT_MAX_YEAR,
    ) -> "Scope":
        """Build a single-year scope, rejecting anything outside the range."""
        if isinstance(year, bool) or not isinstance(year, int):
            raise InvalidScopeError(year, min_year, max_year)
        if year < min_year or year > max_year:
            raise InvalidScopeError(year, min_year, max_year)
        return cls(year=year)

    @classmethod
    def all_years(cls) -> "Scope":
        return ALL_YEARS

    @property
    def is_all(self) -> bool:
        return self.year is None

    def covers(self, year: Optional[int]) -> bool:
        """
        True if data scoped to `year` falls inside this scope.

        Unscoped data (year None) is covered by every scope.
        """
        return self.is_all or year is None or year == self.year

    def conflicts_with(self, other: "Scope") -> bool:
        """Two recomputes of the same node must not overlap if their scopes conflict."""
        return self.is_all or other.is_all or self.year == other.year

    def to_key(self) -> Optional[int]:
        """Wire form: the year, or None for all years."""
        return self.year

    def __str__(self) -> str:
        return "all" if self.is_all else str(self.year)


ALL_YEARS = Scope(year=None)
