"""track bill payments per month

Revision ID: 202610191000
Revises: 202610190900
Create Date: 2026-10-19 10:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610191000"
down_revision = "202610190900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "bill_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "bill_id",
            sa.Integer(),
            sa.ForeignKey("bills.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("year_month", sa.String(length=7), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column(
            "payment_method",
            sa.Enum("cash", "bank", name="paymentmethod"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("bill_id", "year_month", name="uq_bill_payment_month"),
    )

    with op.batch_alter_table("expenses") as batch_op:
        batch_op.add_column(sa.Column("bill_id", sa.Integer(), nullable=True))
        batch_op.add_column(
            sa.Column("bill_year_month", sa.String(length=7), nullable=True)
        )
        batch_op.create_foreign_key(
            "fk_expenses_bill_id_bills", "bills", ["bill_id"], ["id"]
        )
        batch_op.create_index(
            "ix_expense_bill_month", ["bill_id", "bill_year_month"]
        )


def downgrade() -> None:
    with op.batch_alter_table("expenses") as batch_op:
        batch_op.drop_index("ix_expense_bill_month")
        batch_op.drop_constraint("fk_expenses_bill_id_bills", type_="foreignkey")
        batch_op.drop_column("bill_year_month")
        batch_op.drop_column("bill_id")
    op.drop_table("bill_payments")
