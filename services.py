from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Union

from sqlalchemy import delete, extract, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from models import Budget, Category, CategoryType, FixedExpense, Transaction
from periods import (
    Period,
    WeeklyRange,
    format_year_month,
    month_period,
    parse_year_month,
    previous_month_period,
    weekly_window,
    year_period,
)
from recurrence import FixedExpenseEngine, local_today
from schemas import BudgetIn, CategoryIn, CategoryUpdate, FixedExpenseIn, TransactionIn


logger = logging.getLogger(__name__)

REPORTABLE_TYPES = (CategoryType.income, CategoryType.expense)
WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
DEFAULT_CATEGORIES = (
    ("Food", CategoryType.expense, 10),
    ("Transport", CategoryType.expense, 20),
    ("Shopping", CategoryType.expense, 30),
    ("Housing", CategoryType.expense, 40),
    ("Entertainment", CategoryType.expense, 50),
    ("Medical", CategoryType.expense, 60),
    ("Salary", CategoryType.income, 70),
)


class NotFoundError(ValueError):
    pass


class InvalidReference(ValueError):
    pass


class MissingReference(ValueError):
    pass


class AggregationError(RuntimeError):
    pass


def cents_to_units(cents: int) -> float:
    return cents / 100


def trend(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def resolved_category_id():
    """SQL expression for the category a transaction row belongs to.

    The stored identifier wins; the cached name is only consulted when the
    identifier does not match a category of the same owner.
    """
    by_id_cat = aliased(Category)
    by_name_cat = aliased(Category)
    by_id = (
        select(by_id_cat.id)
        .where(
            by_id_cat.owner == Transaction.owner,
            by_id_cat.id == Transaction.category_id,
        )
        .correlate(Transaction)
        .scalar_subquery()
    )
    by_name = (
        select(by_name_cat.id)
        .where(
            by_name_cat.owner == Transaction.owner,
            by_name_cat.name == Transaction.category_name,
        )
        .order_by(by_name_cat.id)
        .limit(1)
        .correlate(Transaction)
        .scalar_subquery()
    )
    return func.coalesce(by_id, by_name)


def categorized_select(owner: str, period: Optional[Period], *columns):
    stmt = (
        select(*columns)
        .select_from(Transaction)
        .join(Category, Category.id == resolved_category_id())
        .where(
            Transaction.owner == owner,
            Category.owner == owner,
            Category.type.in_(REPORTABLE_TYPES),
        )
    )
    if period is not None:
        stmt = stmt.where(Transaction.date >= period.start, Transaction.date < period.end)
    return stmt


def _aggregate(session: Session, stmt, *, owner: str, what: str) -> list:
    try:
        return session.execute(stmt).all()
    except SQLAlchemyError as exc:
        logger.exception(f"aggregation_failed: owner={owner} query={what}")
        raise AggregationError(f"failed to compute {what}") from exc


def category_to_dict(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "order": category.order,
    }


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "type": txn.type.value if txn.type else None,
        "amount": cents_to_units(txn.amount_cents),
        "amount_cents": txn.amount_cents,
        "category": txn.category_name,
        "category_id": txn.category_id,
        "date": txn.date.isoformat(),
        "note": txn.note,
        "created_at": txn.created_at.isoformat() if txn.created_at else None,
        "updated_at": txn.updated_at.isoformat() if txn.updated_at else None,
    }


def fixed_expense_to_dict(template: FixedExpense) -> dict[str, object]:
    return {
        "id": template.id,
        "amount": cents_to_units(template.amount_cents),
        "amount_cents": template.amount_cents,
        "category_id": template.category_id,
        "day": template.day,
        "note": template.note,
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }


class CategoryResolver:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = owner

    @staticmethod
    def parse_id(raw: Union[int, str]) -> int:
        if isinstance(raw, bool):
            raise InvalidReference("Invalid category id")
        if isinstance(raw, int):
            value = raw
        elif isinstance(raw, str) and raw.strip().isdigit():
            value = int(raw.strip())
        else:
            raise InvalidReference("Invalid category id")
        if value <= 0:
            raise InvalidReference("Invalid category id")
        return value

    def resolve(
        self,
        category_id: Union[int, str, None] = None,
        category_name: Optional[str] = None,
    ) -> Category:
        if category_id is not None and category_id != "":
            cid = self.parse_id(category_id)
            category = self.session.scalar(
                select(Category).where(
                    Category.owner == self.owner, Category.id == cid
                )
            )
            if category is None:
                raise NotFoundError("Category not found")
            return category

        if not category_name:
            raise MissingReference("Category required")
        category = self.session.scalar(
            select(Category).where(
                Category.owner == self.owner, Category.name == category_name
            )
        )
        if category is None:
            raise NotFoundError("Category not found")
        return category


class CategoryService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = owner

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.owner == self.owner)
            .order_by(Category.order, Category.name)
        )
        categories = self.session.scalars(stmt).all()
        if categories:
            return categories
        self.seed_defaults()
        return self.session.scalars(stmt).all()

    def seed_defaults(self) -> None:
        for name, category_type, order in DEFAULT_CATEGORIES:
            self.session.add(
                Category(owner=self.owner, name=name, type=category_type, order=order)
            )
        self.session.commit()
        logger.info(f"categories_seeded: owner={self.owner}")

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.owner != self.owner:
            raise NotFoundError("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.owner == self.owner, Category.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt.limit(1)) is not None

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if self._name_taken(name):
            raise ValueError("Category with this name already exists")
        category = Category(
            owner=self.owner, name=name, type=data.type, order=data.order
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def in_use(self, category_id: int) -> bool:
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.owner == self.owner,
                resolved_category_id() == category_id,
            )
            .limit(1)
        )
        return self.session.scalar(stmt) is not None

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        name = data.name.strip()
        old_name = category.name
        if name != old_name and self._name_taken(name, exclude_id=category.id):
            raise ValueError("Category with this name already exists")
        if data.type is not None and data.type != category.type:
            if self.in_use(category.id):
                raise ValueError(
                    "Category type cannot change while transactions reference it"
                )
            category.type = data.type
        if data.order is not None:
            category.order = data.order
        category.name = name

        if name != old_name:
            # Budgets reference categories by name.
            self.session.execute(
                update(Budget)
                .where(Budget.owner == self.owner, Budget.category == old_name)
                .values(category=name)
            )
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = owner
        self.resolver = CategoryResolver(session, owner)

    def create(self, data: TransactionIn) -> Transaction:
        category = self.resolver.resolve(data.category_id, data.category)
        txn = Transaction(
            owner=self.owner,
            type=category.type,
            amount_cents=data.amount_cents,
            category_name=category.name,
            category_id=category.id,
            date=data.date,
            note=data.note,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.owner != self.owner:
            raise NotFoundError("Transaction not found")
        return txn

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.owner == self.owner)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        category = self.resolver.resolve(data.category_id, data.category)
        txn.type = category.type
        txn.amount_cents = data.amount_cents
        txn.category_name = category.name
        txn.category_id = category.id
        txn.date = data.date
        txn.note = data.note
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class MetricsService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = owner

    def totals_by_type(self, period: Period) -> dict[CategoryType, int]:
        stmt = categorized_select(
            self.owner,
            period,
            Category.type.label("type"),
            func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
        ).group_by(Category.type)
        rows = _aggregate(self.session, stmt, owner=self.owner, what="totals")
        totals = {CategoryType.income: 0, CategoryType.expense: 0}
        for row in rows:
            totals[row.type] = int(row.total or 0)
        return totals

    def expense_by_category(self, period: Period) -> dict[str, int]:
        stmt = (
            categorized_select(
                self.owner,
                period,
                Category.name.label("name"),
                func.sum(Transaction.amount_cents).label("total"),
            )
            .where(Category.type == CategoryType.expense)
            .group_by(Category.name)
        )
        rows = _aggregate(self.session, stmt, owner=self.owner, what="category totals")
        return {row.name: int(row.total or 0) for row in rows}

    def summarize(self, start: date, end: date) -> dict[str, float]:
        totals = self.totals_by_type(Period("custom", start, end))
        return {
            "incomeTotal": cents_to_units(totals[CategoryType.income]),
            "expenseTotal": cents_to_units(totals[CategoryType.expense]),
        }

    def breakdown(self, start: date, end: date) -> list[dict[str, object]]:
        by_name = self.expense_by_category(Period("custom", start, end))
        items = sorted(by_name.items(), key=lambda item: (-item[1], item[0]))
        return [
            {"category": name, "amount": cents_to_units(cents)} for name, cents in items
        ]

    def category_breakdown(self, year: int, month: int) -> list[dict[str, object]]:
        period = month_period(year, month)
        return self.breakdown(period.start, period.end)

    def monthly_comparison(self, year: int, month: int) -> list[dict[str, object]]:
        current = self.expense_by_category(month_period(year, month))
        previous = self.expense_by_category(previous_month_period(year, month))
        names = set(current) | set(previous)
        ordered = sorted(
            names, key=lambda name: (-current.get(name, 0), -previous.get(name, 0), name)
        )
        return [
            {
                "category": name,
                "current": cents_to_units(current.get(name, 0)),
                "previous": cents_to_units(previous.get(name, 0)),
            }
            for name in ordered
        ]

    def dashboard(self, year: int, month: int) -> dict[str, object]:
        this_totals = self.totals_by_type(month_period(year, month))
        last_totals = self.totals_by_type(previous_month_period(year, month))

        income = cents_to_units(this_totals[CategoryType.income])
        expense = cents_to_units(this_totals[CategoryType.expense])
        last_income = cents_to_units(last_totals[CategoryType.income])
        last_expense = cents_to_units(last_totals[CategoryType.expense])
        balance = income - expense
        last_balance = last_income - last_expense
        return {
            "totalIncome": income,
            "totalExpense": expense,
            "balance": balance,
            "incomeTrend": trend(income, last_income),
            "expenseTrend": trend(expense, last_expense),
            "balanceTrend": trend(balance, last_balance),
            "month": format_year_month(year, month),
        }

    def weekly_habits(
        self, range_key: Optional[str] = None, *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        today = today or local_today()
        period = weekly_window(WeeklyRange.parse(range_key), today=today)
        stmt = (
            categorized_select(
                self.owner,
                period,
                Transaction.date.label("day"),
                func.sum(Transaction.amount_cents).label("total"),
            )
            .where(Category.type == CategoryType.expense)
            .group_by(Transaction.date)
        )
        rows = _aggregate(self.session, stmt, owner=self.owner, what="weekly habits")
        buckets = [0] * 7
        for row in rows:
            buckets[row.day.weekday()] += int(row.total or 0)
        return [
            {"weekday": label, "amount": cents_to_units(buckets[index])}
            for index, label in enumerate(WEEKDAY_LABELS)
        ]


class ReportService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = owner

    def yearly_report(self, year: int) -> dict[str, object]:
        period = year_period(year)
        month_col = extract("month", Transaction.date).label("month")
        stmt = categorized_select(
            self.owner,
            period,
            month_col,
            Category.id.label("category_id"),
            Category.name.label("category_name"),
            Category.type.label("type"),
            func.sum(Transaction.amount_cents).label("total"),
            func.count(Transaction.id).label("count"),
        ).group_by(month_col, Category.id, Category.name, Category.type)
        rows = _aggregate(self.session, stmt, owner=self.owner, what="yearly report")

        income_by_month = [0] * 13
        expense_by_month = [0] * 13
        categories: dict[int, dict[str, object]] = {}
        for row in rows:
            month = int(row.month)
            total = int(row.total or 0)
            if row.type == CategoryType.income:
                income_by_month[month] += total
                continue
            expense_by_month[month] += total
            entry = categories.setdefault(
                row.category_id,
                {"name": row.category_name, "total": 0, "count": 0},
            )
            entry["total"] += total
            entry["count"] += int(row.count or 0)

        monthly = []
        for month in range(1, 13):
            income = cents_to_units(income_by_month[month])
            expense = cents_to_units(expense_by_month[month])
            monthly.append(
                {
                    "month": month,
                    "expense": expense,
                    "income": income,
                    "net": income - expense,
                }
            )

        total_expense = cents_to_units(sum(expense_by_month))
        total_income = cents_to_units(sum(income_by_month))
        max_month = {"month": 0, "amount": 0.0}
        min_month = {"month": 0, "amount": 0.0}
        if total_expense > 0:
            peak = trough = monthly[0]
            for item in monthly[1:]:
                if item["expense"] > peak["expense"]:
                    peak = item
                if item["expense"] < trough["expense"]:
                    trough = item
            max_month = {"month": peak["month"], "amount": peak["expense"]}
            min_month = {"month": trough["month"], "amount": trough["expense"]}

        by_category = []
        ranked = sorted(
            categories.items(), key=lambda item: (-item[1]["total"], item[1]["name"])
        )
        for category_id, entry in ranked:
            total = cents_to_units(entry["total"])
            by_category.append(
                {
                    "categoryId": category_id,
                    "categoryName": entry["name"],
                    "total": total,
                    "percent": (total / total_expense * 100) if total_expense else 0.0,
                    "count": entry["count"],
                    "avgMonthly": total / 12,
                }
            )

        return {
            "year": year,
            "summary": {
                "totalExpense": total_expense,
                "totalIncome": total_income,
                "net": total_income - total_expense,
                "avgMonthlyExpense": total_expense / 12,
                "maxExpenseMonth": max_month,
                "minExpenseMonth": min_month,
            },
            "monthly": monthly,
            "byCategory": by_category,
        }


class BudgetService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = owner

    def set_budget(self, data: BudgetIn) -> Budget:
        parse_year_month(data.year_month)
        category = data.category.strip()
        existing = self.session.scalar(
            select(Budget).where(
                Budget.owner == self.owner,
                Budget.category == category,
                Budget.year_month == data.year_month,
            )
        )
        if existing:
            existing.amount_cents = data.amount_cents
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            owner=self.owner,
            category=category,
            year_month=data.year_month,
            amount_cents=data.amount_cents,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete_budget(self, budget_id: int) -> int:
        result = self.session.execute(
            delete(Budget).where(Budget.owner == self.owner, Budget.id == budget_id)
        )
        self.session.commit()
        return result.rowcount or 0

    def spent_by_category_for_month(
        self, period: Period, category_ids: list[int]
    ) -> dict[int, int]:
        if not category_ids:
            return {}
        stmt = (
            categorized_select(
                self.owner,
                period,
                Category.id.label("category_id"),
                func.sum(Transaction.amount_cents).label("spent"),
            )
            .where(Category.id.in_(category_ids))
            .group_by(Category.id)
        )
        rows = _aggregate(self.session, stmt, owner=self.owner, what="budget spending")
        return {row.category_id: int(row.spent or 0) for row in rows}

    def budget_status(self, year_month: str) -> list[dict[str, object]]:
        year, month = parse_year_month(year_month)
        budgets = self.session.scalars(
            select(Budget)
            .where(Budget.owner == self.owner, Budget.year_month == year_month)
            .order_by(Budget.id)
        ).all()
        if not budgets:
            return []

        names = sorted({b.category for b in budgets})
        categories = self.session.scalars(
            select(Category).where(
                Category.owner == self.owner, Category.name.in_(names)
            )
        ).all()
        by_name = {c.name: c for c in categories}
        spent_by_id = self.spent_by_category_for_month(
            month_period(year, month), [c.id for c in categories]
        )

        status = []
        for budget in budgets:
            limit = cents_to_units(budget.amount_cents)
            category = by_name.get(budget.category)
            if category is not None and category.type == CategoryType.income:
                spent = 0.0
                percentage = 0.0
            else:
                spent_cents = spent_by_id.get(category.id, 0) if category else 0
                spent = cents_to_units(spent_cents)
                percentage = (spent / limit * 100) if limit > 0 else 0.0
            status.append(
                {
                    "id": budget.id,
                    "category": budget.category,
                    "limit": limit,
                    "spent": spent,
                    "percentage": percentage,
                    "yearMonth": budget.year_month,
                }
            )
        return status


class FixedExpenseService:
    def __init__(self, session: Session, owner: str) -> None:
        self.session = session
        self.owner = owner

    def list_all(self) -> list[FixedExpense]:
        stmt = (
            select(FixedExpense)
            .where(FixedExpense.owner == self.owner)
            .order_by(FixedExpense.day, FixedExpense.id)
        )
        return self.session.scalars(stmt).all()

    def create(
        self, data: FixedExpenseIn, *, reference: Optional[date] = None
    ) -> FixedExpense:
        category = CategoryResolver(self.session, self.owner).resolve(data.category_id)
        template = FixedExpense(
            owner=self.owner,
            amount_cents=data.amount_cents,
            category_id=category.id,
            day=data.day,
            note=data.note,
        )
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)

        engine = FixedExpenseEngine(self.session)
        try:
            with self.session.begin_nested():
                engine.materialize(template, reference)
            self.session.commit()
        except (SQLAlchemyError, ValueError):
            self.session.rollback()
            logger.exception(
                f"fixed_expense_failed: owner={self.owner} template_id={template.id}"
            )
        return template

    def delete(self, template_id: int) -> None:
        template = self.session.get(FixedExpense, template_id)
        if not template or template.owner != self.owner:
            raise NotFoundError("Fixed expense not found")
        self.session.delete(template)
        self.session.commit()
