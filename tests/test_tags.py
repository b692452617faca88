from datetime import date, datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from schemas import ExpenseIn, IncomeIn
from services import ExpenseService, IncomeService, TagService


def _expense(**overrides) -> ExpenseIn:
    data = dict(
        date=date(2025, 1, 5),
        occurred_at=datetime(2025, 1, 5, 12, 0),
        amount_cents=1299,
        category="Food",
        description="Lunch",
    )
    data.update(overrides)
    return ExpenseIn(**data)


def test_deleting_used_tag_clears_associations() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        expense = ExpenseService(session).create(_expense(tags=["Dining"]))
        income = IncomeService(session).create(
            IncomeIn(
                date=date(2025, 1, 6),
                occurred_at=datetime(2025, 1, 6, 9, 0),
                amount_cents=50000,
                source="Salary",
                tags=["dining"],
            )
        )
        tags = TagService(session).list_all()
        assert len(tags) == 1

        TagService(session).delete(tags[0].id)

        assert ExpenseService(session).get(expense.id).tags == []
        assert IncomeService(session).get(income.id).tags == []
        assert TagService(session).list_all() == []


def test_expense_tag_inputs_are_deduplicated_case_insensitive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        expense = ExpenseService(session).create(
            _expense(tags=["Dining", "dining", " DINING ", ""])
        )

        assert len(expense.tags) == 1
        assert expense.tags[0].name == "Dining"


def test_tags_are_shared_between_expenses() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ExpenseService(session)
        first = service.create(_expense(tags=["Trip"]))
        second = service.create(_expense(tags=["trip", "Goa"]))

        assert first.tags[0].id == second.tags[0].id
        assert [tag.name for tag in TagService(session).list_all()] == ["Goa", "Trip"]


def test_blank_tag_name_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        try:
            TagService(session).get_or_create("   ")
        except ValueError as exc:
            assert "empty" in str(exc)
        else:
            raise AssertionError("expected ValueError")
