from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class CategoryType(str, Enum):
    income = "income"
    expense = "expense"


FIXED_EXPENSE_NOTE_SUFFIX = " (fixed expense)"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)

    fixed_expenses: Mapped[list["FixedExpense"]] = relationship(
        "FixedExpense",
        back_populates="category",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("owner", "name", name="uq_category_owner_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    # Snapshot of the category type when the row was written; reports ignore it.
    type: Mapped[Optional[CategoryType]] = mapped_column(SAEnum(CategoryType))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    origin_template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fixed_expenses.id", ondelete="SET NULL")
    )
    occurrence_month: Mapped[Optional[str]] = mapped_column(String(7))

    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "owner",
            "origin_template_id",
            "occurrence_month",
            name="uq_txn_template_occurrence",
        ),
        Index("ix_transactions_owner_date", "owner", "date"),
        Index("ix_transactions_owner_category_date", "owner", "category_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        Index("ix_budgets_owner_month", "owner", "year_month"),
    )


class FixedExpense(Base, TimestampMixin):
    __tablename__ = "fixed_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")

    category: Mapped["Category"] = relationship(
        "Category", back_populates="fixed_expenses"
    )

    __table_args__ = (
        CheckConstraint("day >= 1 AND day <= 31", name="ck_fixed_expense_day_range"),
        CheckConstraint("amount_cents > 0", name="ck_fixed_expense_amount_positive"),
        Index("ix_fixed_expenses_day", "day"),
    )
