"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


BALANCE_TABLES = [
    ("daily_cash_bank_balance", "date", 10, "daily"),
    ("weekly_cash_bank_balance", "year_week", 8, "weekly"),
    ("monthly_cash_bank_balance", "year_month", 7, "monthly"),
    ("quarterly_cash_bank_balance", "year_quarter", 7, "quarterly"),
    ("semiannual_cash_bank_balance", "year_half", 7, "semiannual"),
    ("annual_cash_bank_balance", "year", 4, "annual"),
]

CENTS_COLUMNS = [
    "income_cash_cents",
    "income_bank_cents",
    "expense_cash_cents",
    "expense_bank_cents",
    "bill_cash_cents",
    "bill_bank_cents",
    "cash_cents",
    "bank_cents",
    "previous_cash_cents",
    "previous_bank_cents",
    "total_previous_balance_cents",
    "balance_cash_cents",
    "balance_bank_cents",
    "total_balance_cents",
]


def _payment_method():
    return sa.Enum("cash", "bank", name="paymentmethod")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=255)),
        sa.Column("name", sa.String(length=200)),
        sa.Column("locale", sa.String(length=16)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date()),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("payment_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "duration_months", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column(
            "regularity", sa.String(length=20), nullable=False, server_default="monthly"
        ),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "category", sa.String(length=100), nullable=False, server_default="general"
        ),
        sa.Column("icon", sa.String(length=16), nullable=False, server_default="💳"),
        sa.Column(
            "payment_method", _payment_method(), nullable=False, server_default="bank"
        ),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_bill_amount_positive"),
        sa.CheckConstraint("duration_months >= 1", name="ck_bill_duration_min"),
        sa.CheckConstraint(
            "payment_day >= 1 AND payment_day <= 28", name="ck_bill_payment_day"
        ),
    )
    op.create_index("ix_bill_user", "bills", ["user_id"])

    for table in ("incomes", "expenses"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column(
                "category",
                sa.String(length=100),
                nullable=False,
                server_default="general",
            ),
            sa.Column(
                "payment_method",
                _payment_method(),
                nullable=False,
                server_default="bank",
            ),
            sa.Column("description", sa.Text()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint(
                "amount_cents > 0", name=f"ck_{table[:-1]}_amount_positive"
            ),
        )
    op.create_index("ix_income_user_date", "incomes", ["user_id", "date"])
    op.create_index("ix_expense_user_date", "expenses", ["user_id", "date"])

    for table, period_column, length, name in BALANCE_TABLES:
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column(period_column, sa.String(length=length), nullable=False),
            *[
                sa.Column(column, sa.Integer(), nullable=False, server_default="0")
                for column in CENTS_COLUMNS
            ],
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint(
                "user_id", period_column, name=f"uq_{name}_balance_user_period"
            ),
        )


def downgrade():
    for table, _, _, _ in reversed(BALANCE_TABLES):
        op.drop_table(table)
    op.drop_index("ix_expense_user_date", table_name="expenses")
    op.drop_index("ix_income_user_date", table_name="incomes")
    op.drop_table("expenses")
    op.drop_table("incomes")
    op.drop_index("ix_bill_user", table_name="bills")
    op.drop_table("bills")
    op.drop_table("users")
