from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import ExpenseSplitDetail, TransactionType
from schemas import ExpenseIn, IncomeIn, SplitDetailIn
from services import (
    DashboardService,
    ExpenseService,
    HistoryService,
    IncomeService,
    TransactionService,
)


@pytest.fixture()
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def _expense(day: date, amount_cents: int, category: str = "Food", **extra) -> ExpenseIn:
    return ExpenseIn(
        date=day,
        occurred_at=datetime.combine(day, datetime.min.time()).replace(hour=12),
        amount_cents=amount_cents,
        category=category,
        **extra,
    )


def test_split_details_are_stored_and_replaced_on_update(session) -> None:
    service = ExpenseService(session)
    expense = service.create(
        _expense(
            date(2025, 3, 1),
            90000,
            is_split=True,
            split_note="Dinner with friends",
            split_details=[
                SplitDetailIn(person_name="Asha", amount_cents=30000),
                SplitDetailIn(person_name="Ravi", amount_cents=30000),
            ],
        )
    )
    assert [d.person_name for d in expense.split_details] == ["Asha", "Ravi"]

    updated = service.update(
        expense.id,
        _expense(
            date(2025, 3, 1),
            90000,
            is_split=True,
            split_details=[SplitDetailIn(person_name="Meera", amount_cents=45000)],
        ),
    )

    assert [d.person_name for d in updated.split_details] == ["Meera"]
    assert updated.split_note is None
    assert len(session.scalars(select(ExpenseSplitDetail)).all()) == 1


def test_split_total_cannot_exceed_amount(session) -> None:
    with pytest.raises(ValueError, match="exceed"):
        ExpenseService(session).create(
            _expense(
                date(2025, 3, 1),
                1000,
                is_split=True,
                split_details=[SplitDetailIn(person_name="Asha", amount_cents=1001)],
            )
        )


def test_split_details_require_split_flag(session) -> None:
    with pytest.raises(ValueError, match="require a split"):
        ExpenseService(session).create(
            _expense(
                date(2025, 3, 1),
                1000,
                split_details=[SplitDetailIn(person_name="Asha", amount_cents=500)],
            )
        )


def test_split_note_is_dropped_for_unsplit_expense(session) -> None:
    expense = ExpenseService(session).create(
        _expense(date(2025, 3, 1), 1000, split_note="ignored")
    )
    assert expense.is_split is False
    assert expense.split_note is None


def test_delete_missing_expense_raises(session) -> None:
    with pytest.raises(ValueError, match="Expense not found"):
        ExpenseService(session).delete(42)


def test_delete_removes_split_details(session) -> None:
    service = ExpenseService(session)
    expense = service.create(
        _expense(
            date(2025, 3, 1),
            1000,
            is_split=True,
            split_details=[SplitDetailIn(person_name="Asha", amount_cents=500)],
        )
    )

    service.delete(expense.id)

    assert service.list_all() == []
    assert session.scalars(select(ExpenseSplitDetail)).all() == []


def test_for_month_uses_local_date_bounds(session) -> None:
    service = ExpenseService(session)
    service.create(_expense(date(2025, 2, 28), 100))
    service.create(_expense(date(2025, 3, 1), 200))
    service.create(_expense(date(2025, 3, 31), 300))
    service.create(_expense(date(2025, 4, 1), 400))

    march = service.for_month(2025, 3)

    assert [e.amount_cents for e in march] == [300, 200]


def test_dashboard_current_month_summary(session) -> None:
    service = ExpenseService(session)
    service.create(_expense(date(2025, 3, 2), 1500))
    service.create(_expense(date(2025, 3, 10), 2500, category="Bills"))
    service.create(_expense(date(2025, 2, 10), 9900))

    summary = DashboardService(session).current_month(date(2025, 3, 15))

    assert summary.label == "March 2025"
    assert summary.total_cents == 4000
    assert [e.category for e in summary.expenses] == ["Bills", "Food"]


def test_history_years_and_selection(session) -> None:
    service = ExpenseService(session)
    service.create(_expense(date(2023, 5, 1), 100))
    service.create(_expense(date(2024, 5, 1), 200))
    service.create(_expense(date(2024, 6, 1), 300))

    history = HistoryService(session)
    assert history.years_with_data(date(2025, 1, 1)) == [2025, 2024, 2023]

    whole_year = history.for_selection(2024, 0)
    assert whole_year.label == "Year 2024"
    assert whole_year.total_cents == 500

    june = history.for_selection(2024, 6)
    assert june.label == "June 2024"
    assert [e.amount_cents for e in june.expenses] == [300]


def test_income_crud(session) -> None:
    service = IncomeService(session)
    income = service.create(
        IncomeIn(
            date=date(2025, 3, 1),
            occurred_at=datetime(2025, 3, 1, 9, 0),
            amount_cents=500000,
            source=" Salary ",
            description="  ",
        )
    )
    assert income.source == "Salary"
    assert income.description is None

    service.update(
        income.id,
        IncomeIn(
            date=date(2025, 3, 2),
            occurred_at=datetime(2025, 3, 2, 9, 0),
            amount_cents=550000,
            source="Salary",
            description="March",
        ),
    )
    assert service.get(income.id).amount_cents == 550000

    service.delete(income.id)
    with pytest.raises(ValueError, match="Income not found"):
        service.get(income.id)


def test_combined_history_merges_and_totals(session) -> None:
    ExpenseService(session).create(
        _expense(date(2025, 3, 3), 2000, description="Groceries run")
    )
    ExpenseService(session).create(_expense(date(2025, 3, 1), 1000))
    IncomeService(session).create(
        IncomeIn(
            date=date(2025, 3, 2),
            occurred_at=datetime(2025, 3, 2, 9, 0),
            amount_cents=10000,
            source="Freelance",
        )
    )

    history = TransactionService(session).combined()
    assert [e.kind for e in history.entries] == [
        TransactionType.expense,
        TransactionType.income,
        TransactionType.expense,
    ]
    assert history.total_income_cents == 10000
    assert history.total_expense_cents == 3000
    assert history.net_cents == 7000

    searched = TransactionService(session).combined("free")
    assert [e.label for e in searched.entries] == ["Freelance"]
    assert searched.total_expense_cents == 0
