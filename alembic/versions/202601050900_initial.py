"""initial schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        sa.Column("order", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("owner", "name", name="uq_category_owner_name"),
    )

    op.create_table(
        "fixed_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner", sa.String(length=64), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("day >= 1 AND day <= 31", name="ck_fixed_expense_day_range"),
        sa.CheckConstraint("amount_cents > 0", name="ck_fixed_expense_amount_positive"),
    )
    op.create_index("ix_fixed_expenses_day", "fixed_expenses", ["day"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner", sa.String(length=64), nullable=False),
        sa.Column("type", sa.Enum("income", "expense", name="categorytype")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_name", sa.String(length=100), nullable=False, server_default=""
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "origin_template_id",
            sa.Integer(),
            sa.ForeignKey("fixed_expenses.id", ondelete="SET NULL"),
        ),
        sa.Column("occurrence_month", sa.String(length=7)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "owner",
            "origin_template_id",
            "occurrence_month",
            name="uq_txn_template_occurrence",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_owner_date", "transactions", ["owner", "date"])
    op.create_index(
        "ix_transactions_owner_category_date",
        "transactions",
        ["owner", "category_id", "date"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("year_month", sa.String(length=7), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budgets_owner_month", "budgets", ["owner", "year_month"])


def downgrade():
    op.drop_index("ix_budgets_owner_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_owner_category_date", table_name="transactions")
    op.drop_index("ix_transactions_owner_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_fixed_expenses_day", table_name="fixed_expenses")
    op.drop_table("fixed_expenses")
    op.drop_table("categories")
