"""In-memory filtering, sorting and paging of expense and income lists.

Everything here works on records that are already loaded. The page handlers
load a user's full history once and narrow it with ``filter_and_sort``;
nothing in this module talks to the database.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from formatting import amount_text, format_short_date
from models import TransactionType


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


# sort keys per mode; the first entry is the default
SORT_FIELDS: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.expense: ("date", "amount", "category"),
    TransactionType.income: ("date", "amount", "source"),
}

SORT_LABELS = {
    "date": "Date",
    "amount": "Amount",
    "category": "Category",
    "source": "Source",
}


@dataclass
class FilterState:
    search_term: str = ""
    selected_year: int = 0
    selected_month: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category: str = ""
    tag: str = ""
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None


@dataclass
class SortState:
    sort_by: str = "date"
    sort_order: SortOrder = SortOrder.desc

    def for_mode(self, mode: TransactionType) -> "SortState":
        if self.sort_by in SORT_FIELDS[mode]:
            return self
        return replace(self, sort_by=SORT_FIELDS[mode][0])


@dataclass
class Page:
    items: list[Any]
    page: int
    total_pages: int
    total_items: int
    per_page: int

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass
class CombinedEntry:
    kind: TransactionType
    record: Any = field(repr=False)

    @property
    def occurred_at(self):
        return self.record.occurred_at

    @property
    def amount_cents(self) -> int:
        return self.record.amount_cents

    @property
    def label(self) -> str:
        return group_name(self.record, self.kind)


def group_name(item: Any, mode: TransactionType) -> str:
    """Category of an expense or source of an income."""
    if mode == TransactionType.expense:
        return item.category or ""
    return item.source or ""


def _tag_names(item: Any) -> list[str]:
    return [tag.name for tag in (getattr(item, "tags", None) or [])]


def matches_search(item: Any, term: str, mode: TransactionType) -> bool:
    needle = term.strip().lower()
    if not needle:
        return True
    haystack = [group_name(item, mode), item.description or ""]
    if mode == TransactionType.expense:
        haystack.append(item.sub_category or "")
    if any(needle in value.lower() for value in haystack):
        return True
    if needle in amount_text(item.amount_cents):
        return True
    return any(needle in name.lower() for name in _tag_names(item))


def apply_filters(
    items: Iterable[Any], filters: FilterState, mode: TransactionType
) -> list[Any]:
    result = list(items)

    if filters.start_date:
        result = [item for item in result if item.date >= filters.start_date]
    if filters.end_date:
        result = [item for item in result if item.date <= filters.end_date]
    if not filters.start_date and not filters.end_date:
        if filters.selected_year:
            result = [item for item in result if item.date.year == filters.selected_year]
        if filters.selected_month:
            result = [
                item for item in result if item.date.month == filters.selected_month
            ]
    if filters.category:
        result = [item for item in result if group_name(item, mode) == filters.category]
    if filters.tag:
        result = [item for item in result if filters.tag in _tag_names(item)]
    if filters.min_amount_cents is not None:
        result = [
            item for item in result if item.amount_cents >= filters.min_amount_cents
        ]
    if filters.max_amount_cents is not None:
        result = [
            item for item in result if item.amount_cents <= filters.max_amount_cents
        ]
    if filters.search_term.strip():
        result = [
            item for item in result if matches_search(item, filters.search_term, mode)
        ]
    return result


def _sort_key(sort_by: str, mode: TransactionType):
    if sort_by == "amount":
        return lambda item: item.amount_cents
    if sort_by in ("category", "source"):
        return lambda item: group_name(item, mode).lower()
    return lambda item: item.occurred_at


def sort_items(
    items: Iterable[Any], sort: SortState, mode: TransactionType
) -> list[Any]:
    sort = sort.for_mode(mode)
    return sorted(
        items,
        key=_sort_key(sort.sort_by, mode),
        reverse=sort.sort_order == SortOrder.desc,
    )


def filter_and_sort(
    items: Iterable[Any],
    filters: FilterState,
    sort: SortState,
    mode: TransactionType,
) -> list[Any]:
    return sort_items(apply_filters(items, filters, mode), sort, mode)


def paginate(items: Sequence[Any], page: int, per_page: int) -> Page:
    per_page = max(per_page, 1)
    total_items = len(items)
    total_pages = max(math.ceil(total_items / per_page), 1)
    page = min(max(page, 1), total_pages)
    start = (page - 1) * per_page
    return Page(
        items=list(items[start : start + per_page]),
        page=page,
        total_pages=total_pages,
        total_items=total_items,
        per_page=per_page,
    )


def has_active_filters(filters: FilterState) -> bool:
    return filters != FilterState()


def selection_period_label(filters: FilterState, today: Optional[date] = None) -> str:
    today = today or date.today()
    if filters.start_date and filters.end_date:
        return (
            f"{format_short_date(filters.start_date)} - "
            f"{format_short_date(filters.end_date)}"
        )
    if filters.start_date:
        return f"From {format_short_date(filters.start_date)}"
    if filters.end_date:
        return f"Until {format_short_date(filters.end_date)}"

    month_name = ""
    if filters.selected_month:
        year_for_label = filters.selected_year or today.year
        month_name = date(year_for_label, filters.selected_month, 1).strftime("%b")
    if filters.selected_year:
        if month_name:
            return f"{month_name} {filters.selected_year}"
        return f"Year {filters.selected_year}"
    if month_name:
        return f"{month_name} (All Years)"
    return "All Time"


def total_amount_cents(items: Iterable[Any]) -> int:
    return sum(item.amount_cents for item in items)


def search_combined(entries: Iterable[CombinedEntry], term: str) -> list[CombinedEntry]:
    if not term.strip():
        return list(entries)
    return [entry for entry in entries if matches_search(entry.record, term, entry.kind)]
