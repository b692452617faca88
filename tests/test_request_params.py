from datetime import date
from pathlib import Path

import pytest
from starlette.requests import Request

from filters import FilterState, selection_period_label
from main import filters_from_request, month_from_request
from models import TransactionType

TEMPLATES = Path(__file__).resolve().parent.parent / "templates"


def _request(query: str) -> Request:
    return Request(
        {"type": "http", "method": "GET", "path": "/", "query_string": query.encode(), "headers": []}
    )


@pytest.mark.parametrize("year", ["10000", "-5", "1969", "3001"])
def test_out_of_range_year_is_dropped(year: str) -> None:
    filters, _ = filters_from_request(
        _request(f"year={year}&month=3"), TransactionType.expense
    )

    assert filters == FilterState(selected_month=3)
    assert selection_period_label(filters, date(2025, 6, 1)) == "Mar (All Years)"


def test_invalid_filter_params_fall_back_to_defaults() -> None:
    filters, sort = filters_from_request(
        _request("year=abc&month=13&min=lots&start=yesterday&order=sideways&sort=source"),
        TransactionType.expense,
    )

    assert filters == FilterState()
    assert sort.sort_by == "date"


def test_valid_year_is_kept() -> None:
    filters, _ = filters_from_request(
        _request("year=2024&month=2"), TransactionType.income
    )

    assert filters.selected_year == 2024
    assert filters.selected_month == 2


def test_budget_month_falls_back_to_today() -> None:
    today = date(2025, 6, 15)

    assert month_from_request(_request("year=2024&month=2"), today) == (2024, 2)
    assert month_from_request(_request("month=13"), today) == (2025, 6)
    assert month_from_request(_request("year=10000&month=1"), today) == (2025, 6)
    assert month_from_request(_request(""), today) == (2025, 6)


def test_dashboard_links_current_month_pdf() -> None:
    html = (TEMPLATES / "dashboard.html").read_text(encoding="utf-8")

    assert "url_for('export_expenses_pdf') }}?year={{ now.year }}&amp;month={{ now.month }}" in html
