"""manual transactions, monthly manual savings and account preferences

Revision ID: 202601121400
Revises: 202601050900
Create Date: 2026-01-12 14:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601121400"
down_revision = "202601050900"
branch_labels = None
depends_on = None


transaction_type = sa.Enum("income", "expense", name="transactiontype")
transaction_source = sa.Enum(
    "manual", "allocation", "monthly_saving", name="transactionsource"
)


def upgrade() -> None:
    op.create_table(
        "manual_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Integer(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("category", sa.String(length=120), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column(
            "source",
            transaction_source,
            nullable=False,
            server_default="manual",
        ),
        sa.Column("source_key", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("source_key", name="uq_manual_transactions_source_key"),
    )
    op.create_index("ix_manual_transactions_date", "manual_transactions", ["date"])
    op.create_index(
        "ix_manual_transactions_project_date",
        "manual_transactions",
        ["project_id", "date"],
    )

    op.create_table(
        "monthly_manual_savings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column(
            "amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("month", name="uq_monthly_manual_savings_month"),
    )

    op.create_table(
        "account_preferences",
        sa.Column("account_id", sa.String(length=64), primary_key=True),
        sa.Column("account_name", sa.String(length=200), nullable=False),
        sa.Column(
            "include_savings",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "include_checking",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("account_preferences")
    op.drop_table("monthly_manual_savings")
    op.drop_index(
        "ix_manual_transactions_project_date", table_name="manual_transactions"
    )
    op.drop_index("ix_manual_transactions_date", table_name="manual_transactions")
    op.drop_table("manual_transactions")
