"""ledger schema

Revision ID: 202406010000
Revises:
Create Date: 2024-06-01 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202406010000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name", name="uq_category_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_date", "transactions", ["date"])
    op.create_index(
        "ix_transactions_category_date", "transactions", ["category_id", "date"]
    )
    op.create_index("ix_transactions_type_date", "transactions", ["type", "date"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint("end_date >= start_date", name="ck_budget_range_ordered"),
    )
    op.create_index(
        "ix_budget_category_range",
        "budgets",
        ["category_id", "start_date", "end_date"],
    )

    for table, check, prefix in (
        ("budget_allocations", "ck_allocation_amount_positive", "ix_allocation"),
        ("budget_spending", "ck_spending_amount_positive", "ix_spending"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "budget_id",
                sa.Integer(),
                sa.ForeignKey("budgets.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "transaction_id",
                sa.Integer(),
                sa.ForeignKey("transactions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("amount_cents > 0", name=check),
        )
        op.create_index(f"{prefix}_budget", table, ["budget_id"])
        op.create_index(f"{prefix}_transaction", table, ["transaction_id"])


def downgrade():
    for table, prefix in (
        ("budget_spending", "ix_spending"),
        ("budget_allocations", "ix_allocation"),
    ):
        op.drop_index(f"{prefix}_transaction", table_name=table)
        op.drop_index(f"{prefix}_budget", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_budget_category_range", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_type_date", table_name="transactions")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
