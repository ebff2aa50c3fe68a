from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Budget, Category, CategoryType, Transaction
from schemas import BudgetIn
from services import BudgetService


def _seed(session: Session) -> None:
    food = Category(owner="alice", name="Food", type=CategoryType.expense)
    salary = Category(owner="alice", name="Salary", type=CategoryType.income)
    session.add_all([food, salary])
    session.commit()
    for category, cents, day in [
        (food, 50_000, date(2025, 6, 3)),
        (food, 30_000, date(2025, 6, 20)),
        (food, 11_100, date(2025, 7, 1)),
        (salary, 400_000, date(2025, 6, 1)),
    ]:
        session.add(
            Transaction(
                owner="alice",
                amount_cents=cents,
                category_name=category.name,
                category_id=category.id,
                date=day,
            )
        )
    session.commit()


def test_status_reports_spending_against_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        budgets = BudgetService(session, "alice")
        budgets.set_budget(
            BudgetIn(category="Food", year_month="2025-06", amount_cents=60_000)
        )

        [status] = budgets.budget_status("2025-06")

    assert status["category"] == "Food"
    assert status["limit"] == 600.0
    assert status["spent"] == 800.0
    assert status["percentage"] == pytest.approx(133.33, abs=0.01)
    assert status["yearMonth"] == "2025-06"


def test_set_budget_replaces_existing_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, "alice")
        first = budgets.set_budget(
            BudgetIn(category="Food", year_month="2025-06", amount_cents=60_000)
        )
        second = budgets.set_budget(
            BudgetIn(category="Food", year_month="2025-06", amount_cents=90_000)
        )
        budgets.set_budget(
            BudgetIn(category="Food", year_month="2025-07", amount_cents=10_000)
        )

        assert first.id == second.id
        rows = session.scalars(
            select(Budget).where(Budget.year_month == "2025-06")
        ).all()
        assert len(rows) == 1
        assert rows[0].amount_cents == 90_000


def test_income_budget_never_counts_spending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        budgets = BudgetService(session, "alice")
        budgets.set_budget(
            BudgetIn(category="Salary", year_month="2025-06", amount_cents=100_000)
        )

        [status] = budgets.budget_status("2025-06")

    assert status["category"] == "Salary"
    assert status["limit"] == 1000.0
    assert status["spent"] == 0.0
    assert status["percentage"] == 0.0


def test_zero_limit_has_zero_percentage() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        budgets = BudgetService(session, "alice")
        budgets.set_budget(
            BudgetIn(category="Food", year_month="2025-06", amount_cents=0)
        )

        [status] = budgets.budget_status("2025-06")

    assert status["spent"] == 800.0
    assert status["percentage"] == 0.0


def test_budget_for_unknown_category_reports_nothing_spent() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        budgets = BudgetService(session, "alice")
        budgets.set_budget(
            BudgetIn(category="Travel", year_month="2025-06", amount_cents=20_000)
        )

        [status] = budgets.budget_status("2025-06")

    assert status["spent"] == 0.0
    assert status["percentage"] == 0.0


def test_month_without_budgets_is_empty() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        assert BudgetService(session, "alice").budget_status("2025-06") == []


def test_budgets_are_scoped_to_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        BudgetService(session, "alice").set_budget(
            BudgetIn(category="Food", year_month="2025-06", amount_cents=60_000)
        )
        assert BudgetService(session, "bob").budget_status("2025-06") == []


def test_delete_budget_returns_rows_affected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, "alice")
        budget = budgets.set_budget(
            BudgetIn(category="Food", year_month="2025-06", amount_cents=60_000)
        )
        budget_id = budget.id

        assert BudgetService(session, "bob").delete_budget(budget_id) == 0
        assert budgets.delete_budget(budget_id) == 1
        assert budgets.delete_budget(budget_id) == 0


@pytest.mark.parametrize("value", ["2025-13", "2025-6", "June", ""])
def test_malformed_month_is_rejected(value: str) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValueError):
            BudgetService(session, "alice").budget_status(value)
