import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import FIXED_EXPENSE_NOTE_SUFFIX, Category, FixedExpense, Transaction
from periods import format_year_month


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def fixed_expense_date(day: int, reference: date) -> date:
    """Day ``day`` of the reference month, clamped to the month's last day."""
    if not 1 <= day <= 31:
        raise ValueError("day must be between 1 and 31")
    dim = days_in_month(reference.year, reference.month)
    return date(reference.year, reference.month, min(day, dim))


class FixedExpenseEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def materialize(
        self, template: FixedExpense, reference: Optional[date] = None
    ) -> Optional[Transaction]:
        """Create the transaction for the template's occurrence in the
        reference month.

        Returns ``None`` when the month was already materialized for this
        template. Raises ``ValueError`` when the template's category is gone.
        """
        reference = reference or local_today()
        occurrence_month = format_year_month(reference.year, reference.month)

        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.owner == template.owner,
                Transaction.origin_template_id == template.id,
                Transaction.occurrence_month == occurrence_month,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return None

        category = self.session.scalar(
            select(Category).where(
                Category.owner == template.owner,
                Category.id == template.category_id,
            )
        )
        if category is None:
            raise ValueError(f"Category {template.category_id} not found")

        target = fixed_expense_date(template.day, reference)
        txn = Transaction(
            owner=template.owner,
            type=category.type,
            amount_cents=template.amount_cents,
            category_name=category.name,
            category_id=category.id,
            date=target,
            note=f"{template.note}{FIXED_EXPENSE_NOTE_SUFFIX}",
            origin_template_id=template.id,
            occurrence_month=occurrence_month,
        )
        self.session.add(txn)
        self.session.flush()
        logger.info(
            f"fixed_expense_materialized: owner={template.owner} "
            f"template_id={template.id} date={target.isoformat()}"
        )
        return txn

    def post_due_templates(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        stmt = (
            select(FixedExpense)
            .where(FixedExpense.day == today.day)
            .order_by(FixedExpense.owner, FixedExpense.id)
        )
        templates = self.session.scalars(stmt).all()
        logger.info(f"fixed_expense_scan: day={today.day} templates={len(templates)}")

        created = 0
        for template in templates:
            try:
                with self.session.begin_nested():
                    txn = self.materialize(template, today)
            except (SQLAlchemyError, ValueError):
                logger.exception(
                    f"fixed_expense_failed: owner={template.owner} "
                    f"template_id={template.id}"
                )
                continue
            if txn is not None:
                created += 1
        return created
