from datetime import date

import pytest
from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, CategoryType, FixedExpense, Transaction
from recurrence import FixedExpenseEngine, days_in_month, fixed_expense_date
from schemas import FixedExpenseIn
from services import FixedExpenseService, NotFoundError


def _category(session: Session, owner: str = "alice", name: str = "Housing"):
    category = Category(owner=owner, name=name, type=CategoryType.expense)
    session.add(category)
    session.commit()
    return category


def _template(session: Session, category: Category, day: int, note: str = "Rent"):
    template = FixedExpense(
        owner=category.owner,
        amount_cents=120_000,
        category_id=category.id,
        day=day,
        note=note,
    )
    session.add(template)
    session.commit()
    return template


def _transactions(session: Session) -> list[Transaction]:
    return session.scalars(select(Transaction).order_by(Transaction.id)).all()


def test_days_in_month() -> None:
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2025, 2) == 28
    assert days_in_month(2025, 4) == 30
    assert days_in_month(2025, 12) == 31


@pytest.mark.parametrize(
    "day,reference,expected",
    [
        (31, date(2025, 4, 10), date(2025, 4, 30)),
        (30, date(2024, 2, 1), date(2024, 2, 29)),
        (29, date(2025, 2, 1), date(2025, 2, 28)),
        (31, date(2025, 2, 1), date(2025, 2, 28)),
        (15, date(2025, 6, 30), date(2025, 6, 15)),
        (31, date(2025, 12, 31), date(2025, 12, 31)),
    ],
)
def test_fixed_expense_date_clamps_to_month_end(day, reference, expected) -> None:
    assert fixed_expense_date(day, reference) == expected


@pytest.mark.parametrize("day", [0, 32, -1])
def test_fixed_expense_date_rejects_out_of_range_day(day) -> None:
    with pytest.raises(ValueError):
        fixed_expense_date(day, date(2025, 1, 1))


def test_materialize_creates_marked_transaction() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        housing = _category(session)
        template = _template(session, housing, day=31)

        txn = FixedExpenseEngine(session).materialize(template, date(2025, 4, 2))
        session.commit()

        assert txn is not None
        assert txn.date == date(2025, 4, 30)
        assert txn.note == "Rent (fixed expense)"
        assert txn.amount_cents == 120_000
        assert txn.category_id == housing.id
        assert txn.category_name == "Housing"
        assert txn.type == CategoryType.expense
        assert txn.origin_template_id == template.id
        assert txn.occurrence_month == "2025-04"


def test_materialize_is_idempotent_per_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        template = _template(session, _category(session), day=5)
        recurring = FixedExpenseEngine(session)

        assert recurring.materialize(template, date(2025, 6, 5)) is not None
        assert recurring.materialize(template, date(2025, 6, 28)) is None
        assert recurring.materialize(template, date(2025, 7, 5)) is not None
        session.commit()

        assert [t.occurrence_month for t in _transactions(session)] == [
            "2025-06",
            "2025-07",
        ]


def test_materialize_without_category_raises() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        housing = _category(session)
        template = _template(session, housing, day=5)
        session.execute(delete(Category).where(Category.id == housing.id))
        session.commit()

        with pytest.raises(ValueError):
            FixedExpenseEngine(session).materialize(template, date(2025, 6, 5))


def test_post_due_templates_only_runs_matching_day() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice_housing = _category(session, owner="alice")
        bob_housing = _category(session, owner="bob")
        _template(session, alice_housing, day=5)
        _template(session, bob_housing, day=5, note="Storage")
        _template(session, alice_housing, day=20, note="Internet")

        created = FixedExpenseEngine(session).post_due_templates(date(2025, 6, 5))
        session.commit()

        assert created == 2
        txns = _transactions(session)
        assert {t.owner for t in txns} == {"alice", "bob"}
        assert all(t.date == date(2025, 6, 5) for t in txns)


def test_post_due_templates_skips_months_already_posted() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _template(session, _category(session), day=5)
        recurring = FixedExpenseEngine(session)

        assert recurring.post_due_templates(date(2025, 6, 5)) == 1
        assert recurring.post_due_templates(date(2025, 6, 5)) == 0
        session.commit()
        assert len(_transactions(session)) == 1


def test_post_due_templates_isolates_failures() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        doomed = _category(session, name="Gym")
        housing = _category(session)
        _template(session, doomed, day=5, note="Membership")
        _template(session, housing, day=5)
        session.execute(delete(Category).where(Category.id == doomed.id))
        session.commit()

        created = FixedExpenseEngine(session).post_due_templates(date(2025, 6, 5))
        session.commit()

        assert created == 1
        [txn] = _transactions(session)
        assert txn.note == "Rent (fixed expense)"


def test_creating_template_posts_current_month_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        housing = _category(session)
        template = FixedExpenseService(session, "alice").create(
            FixedExpenseIn(amount_cents=120_000, category_id=str(housing.id), day=15),
            reference=date(2025, 6, 15),
        )
        assert template.id is not None

        # The daily pass on the same day must not post a duplicate.
        assert FixedExpenseEngine(session).post_due_templates(date(2025, 6, 15)) == 0
        session.commit()

        [txn] = _transactions(session)
        assert txn.date == date(2025, 6, 15)
        assert txn.note == " (fixed expense)"


def test_create_template_with_unknown_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(NotFoundError):
            FixedExpenseService(session, "alice").create(
                FixedExpenseIn(amount_cents=5_000, category_id=42, day=1),
                reference=date(2025, 6, 1),
            )
        assert session.scalars(select(FixedExpense)).all() == []


def test_delete_template_checks_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        template = _template(session, _category(session), day=1)
        template_id = template.id

        with pytest.raises(NotFoundError):
            FixedExpenseService(session, "bob").delete(template_id)
        FixedExpenseService(session, "alice").delete(template_id)
        assert FixedExpenseService(session, "alice").list_all() == []
