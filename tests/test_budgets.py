from datetime import date, datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from budgets import OVERALL_LABEL, budget_progress, sort_budgets, spent_for_budget
from database import Base
from models import TransactionType
from schemas import BudgetIn, CategoryIn, ExpenseIn
from services import BudgetService, CategoryService, ExpenseService


def _budget(category, amount_cents, budget_id=1):
    return SimpleNamespace(id=budget_id, category=category, amount_cents=amount_cents)


def _spend(category, amount_cents):
    return SimpleNamespace(category=category, amount_cents=amount_cents)


def test_overall_budget_counts_every_expense() -> None:
    expenses = [_spend("Food", 1000), _spend("Bills", 2500)]

    assert spent_for_budget(_budget(None, 10000), expenses) == 3500
    assert spent_for_budget(_budget("Food", 10000), expenses) == 1000
    assert spent_for_budget(_budget("Petrol", 10000), expenses) == 0


def test_progress_caps_percentage_and_flags_overspend() -> None:
    progress = budget_progress(_budget("Food", 1000), [_spend("Food", 1500)])

    assert progress.label == "Food"
    assert progress.percentage == 100.0
    assert progress.remaining_cents == -500
    assert progress.is_over_budget is True


def test_progress_for_zero_budget() -> None:
    progress = budget_progress(_budget(None, 0), [])

    assert progress.label == OVERALL_LABEL
    assert progress.percentage == 0.0
    assert progress.is_over_budget is False

    spent = budget_progress(_budget(None, 0), [_spend("Food", 1)])
    assert spent.percentage == 0.0
    assert spent.is_over_budget is True


def test_progress_exactly_on_budget_is_not_over() -> None:
    progress = budget_progress(_budget("Food", 1000), [_spend("Food", 1000)])

    assert progress.percentage == 100.0
    assert progress.remaining_cents == 0
    assert progress.is_over_budget is False


def test_overall_budget_sorts_first() -> None:
    budgets = [
        _budget("petrol", 1, budget_id=3),
        _budget(None, 1, budget_id=4),
        _budget("Bills", 1, budget_id=2),
    ]
    assert [b.id for b in sort_budgets(budgets)] == [4, 2, 3]


def test_budget_service_enforces_unique_scope() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session)
        service.create(BudgetIn(year=2025, month=3, amount_cents=5000000))
        food = service.create(
            BudgetIn(year=2025, month=3, category="Food", amount_cents=800000)
        )

        with pytest.raises(ValueError, match="already exists"):
            service.create(BudgetIn(year=2025, month=3, amount_cents=1))
        with pytest.raises(ValueError, match="already exists"):
            service.create(BudgetIn(year=2025, month=3, category="Food", amount_cents=1))

        # same scope in another month is fine
        service.create(BudgetIn(year=2025, month=4, category="Food", amount_cents=1))

        # updating a budget onto itself is not a duplicate
        updated = service.update(
            food.id,
            BudgetIn(year=2025, month=3, category="Food", amount_cents=900000),
        )
        assert updated.amount_cents == 900000


def test_budget_category_must_be_known() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValueError, match="Category not found"):
            BudgetService(session).create(
                BudgetIn(year=2025, month=3, category="Travel", amount_cents=100)
            )

        CategoryService(session).create(
            CategoryIn(name="Travel", type=TransactionType.expense)
        )
        budget = BudgetService(session).create(
            BudgetIn(year=2025, month=3, category="Travel", amount_cents=100)
        )
        assert budget.category == "Travel"


def test_progress_for_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        expenses = ExpenseService(session)
        for day, amount, category in [
            (date(2025, 3, 5), 40000, "Food"),
            (date(2025, 3, 20), 70000, "Food"),
            (date(2025, 3, 21), 25000, "Bills"),
            (date(2025, 4, 1), 99900, "Food"),
        ]:
            expenses.create(
                ExpenseIn(
                    date=day,
                    occurred_at=datetime(day.year, day.month, day.day, 10, 0),
                    amount_cents=amount,
                    category=category,
                )
            )

        service = BudgetService(session)
        service.create(BudgetIn(year=2025, month=3, category="Food", amount_cents=100000))
        service.create(BudgetIn(year=2025, month=3, amount_cents=500000, category=""))

        progress = service.progress_for_month(2025, 3)

        assert [p.label for p in progress] == [OVERALL_LABEL, "Food"]
        overall, food = progress
        assert overall.spent_cents == 135000
        assert overall.is_over_budget is False
        assert food.spent_cents == 110000
        assert food.is_over_budget is True
        assert food.percentage == 100.0


def test_delete_missing_budget_raises() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValueError, match="Budget not found"):
            BudgetService(session).delete(1)
