from datetime import date, datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from csv_utils import (
    CSVImportError,
    export_expenses_csv,
    export_incomes_csv,
    parse_amount,
    parse_csv,
    parse_date,
    read_csv,
    sanitize_csv_value,
    split_tags,
)
from database import Base
from services import CSVImportService, ExpenseService, TagService


@pytest.mark.parametrize(
    ("raw", "cents"),
    [
        ("1250", 125000),
        ("₹1,250", 125000),
        ("Rs. 99.99", 9999),
        ("12,34,567", 123456700),
        ("1,234.56", 123456),
        ("1.234,56", 123456),
        ("12,5", 1250),
        (" 45 ", 4500),
    ],
)
def test_parse_amount_accepts_common_formats(raw: str, cents: int) -> None:
    assert parse_amount(raw) == cents


def test_parse_amount_rejects_garbage_and_negatives() -> None:
    with pytest.raises(ValueError, match="Invalid amount"):
        parse_amount("abc")
    with pytest.raises(ValueError, match="positive"):
        parse_amount("-5")
    assert parse_amount("-5", allow_negative=True) == -500


def test_parse_date_prefers_day_first() -> None:
    assert parse_date("2025-03-15") == date(2025, 3, 15)
    assert parse_date("05/03/2025") == date(2025, 3, 5)
    assert parse_date("03/15/2025") == date(2025, 3, 15)
    assert parse_date("15.03.2025") == date(2025, 3, 15)
    with pytest.raises(ValueError, match="Invalid date format: 2025/15/40"):
        parse_date("2025/15/40")


def test_split_tags_accepts_several_separators() -> None:
    assert split_tags("a; b,c | d") == ["a", "b", "c", "d"]
    assert split_tags("") == []
    assert split_tags(None) == []


def test_read_csv_maps_header_synonyms_and_skips_bad_rows() -> None:
    content = (
        "\ufeffTransaction_Date,Cost,Type,Notes\n"
        "2025-01-05,100,Food,Lunch\n"
        "\n"
        "2025-01-06,,Food,Missing amount\n"
        "not-a-date,50,Food,Bad date\n"
        "06/01/2025,75,Bills\n"
    )

    rows, warnings = read_csv(content)

    assert [row["amount"] for row in rows] == ["100", "75"]
    assert rows[0]["description"] == "Lunch"
    assert rows[0]["_line"] == "2"
    assert rows[1]["description"] == ""
    assert warnings[0] == "Row 4: Missing required fields"
    assert warnings[1].startswith("Row 5: Invalid date format: not-a-date")


def test_read_csv_file_level_errors() -> None:
    with pytest.raises(CSVImportError, match="empty"):
        read_csv("\n\n")
    with pytest.raises(CSVImportError, match="Required headers missing"):
        read_csv("date,amount\n2025-01-01,5\n")


def test_parse_csv_builds_imported_rows() -> None:
    content = (
        "date,amount,category,sub_category,description,tags,is_split,split_note\n"
        "2025-01-05,\"1,250.50\",Food,Swiggy,Dinner,weekend;friends,yes,Split with Ravi\n"
        "2025-01-06,0,Food,,,,,\n"
        "2025-01-07,abc,Food,,,,,\n"
    )

    rows, warnings = parse_csv(content)

    assert len(rows) == 1
    row = rows[0]
    assert row.line == 2
    assert row.amount_cents == 125050
    assert row.occurred_at == datetime(2025, 1, 5, 12, 0)
    assert row.sub_category == "Swiggy"
    assert row.tags == ["weekend", "friends"]
    assert row.is_split is True
    assert row.split_note == "Split with Ravi"
    assert warnings[0].startswith("Row 3: amount_cents")
    assert warnings[1] == "Row 4: Invalid amount: abc"


def test_sanitize_csv_value_neutralises_formulas() -> None:
    assert sanitize_csv_value("=SUM(A1:A2)") == "\t=SUM(A1:A2)"
    assert sanitize_csv_value("http://example.com") == "\thttp://example.com"
    assert sanitize_csv_value("Lunch") == "Lunch"
    assert sanitize_csv_value("  ") == ""


def test_export_expenses_csv() -> None:
    expense = SimpleNamespace(
        date=date(2025, 1, 5),
        amount_cents=125050,
        category="Food",
        sub_category=None,
        description="=cmd",
        tags=[SimpleNamespace(name="a"), SimpleNamespace(name="b")],
        is_split=False,
        split_note=None,
    )

    lines = export_expenses_csv([expense]).splitlines()

    assert lines[0] == "Date,Amount,Category,Sub_Category,Description,Tags,Is_Split,Split_Note"
    assert lines[1] == "2025-01-05,1250.50,Food,,\t=cmd,a; b,false,"


def test_exported_expenses_read_back() -> None:
    expense = SimpleNamespace(
        date=date(2025, 3, 9),
        amount_cents=48000,
        category="Petrol",
        sub_category="Dominar",
        description="Full tank",
        tags=[SimpleNamespace(name="Trip")],
        is_split=True,
        split_note="Shared with Anil",
    )

    rows, warnings = read_csv(export_expenses_csv([expense]))

    assert warnings == []
    assert rows[0]["expense_date"] == "2025-03-09"
    assert rows[0]["amount"] == "480.00"
    assert rows[0]["category"] == "Petrol"
    assert rows[0]["sub_category"] == "Dominar"
    assert rows[0]["tags"] == "Trip"
    assert rows[0]["is_split"] == "true"
    assert rows[0]["split_note"] == "Shared with Anil"


def test_exported_income_reads_back_with_source_as_category() -> None:
    income = SimpleNamespace(
        date=date(2025, 3, 1),
        amount_cents=7500000,
        source="Salary",
        description="March pay",
        tags=[SimpleNamespace(name="Work")],
    )

    content = export_incomes_csv([income])
    rows, warnings = read_csv(content)

    assert content.splitlines()[0] == "Date,Amount,Source,Description,Tags"
    assert warnings == []
    assert rows[0]["expense_date"] == "2025-03-01"
    assert rows[0]["amount"] == "75000.00"
    assert rows[0]["category"] == "Salary"
    assert rows[0]["description"] == "March pay"
    assert rows[0]["tags"] == "Work"


def test_import_service_commit_reports_stats() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    content = (
        "date,amount,category,tags\n"
        "2025-01-05,100,food,Trip\n"
        "2025-01-06,200,Grocries,trip\n"
        "2025-01-07,,Food,\n"
        "2025-01-08,300,Medical,\n"
    )

    with Session(engine) as session:
        stats = CSVImportService(session).commit(content)

        assert (stats.total, stats.imported, stats.skipped) == (4, 3, 1)
        assert stats.warnings == ["Row 4: Missing required fields"]

        expenses = ExpenseService(session).list_all()
        assert sorted(e.category for e in expenses) == ["Food", "Groceries", "Medical"]
        assert [t.name for t in TagService(session).list_all()] == ["Trip"]


def test_import_service_preview_does_not_write() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        preview = CSVImportService(session).preview("date,amount,category\n2025-01-05,100,bils\n")

        assert [row.category for row in preview.rows] == ["Bills"]
        assert ExpenseService(session).list_all() == []


def test_import_service_rejects_file_without_valid_rows() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValueError, match="No valid expenses to import"):
            CSVImportService(session).commit("date,amount,category\n2025-01-05,,Food\n")
