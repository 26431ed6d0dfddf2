"""initial schema

Revision ID: 202601101200
Revises:
Create Date: 2026-01-10 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601101200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period_kind",
            sa.Enum("weekly", "monthly", "quarterly", "yearly", name="periodkind"),
            nullable=False,
        ),
        sa.Column(
            "direction",
            sa.Enum("expense", "income", name="budgetdirection"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id",
            "category",
            "period_kind",
            "direction",
            name="uq_budget_user_category_period_direction",
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budget_user_period", "budgets", ["user_id", "period_kind"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "direction",
            sa.Enum("debit", "credit", name="transactiondirection"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "origin",
            sa.Enum("manual", "scanned", name="transactionorigin"),
            nullable=False,
        ),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_direction_date",
        "transactions",
        ["user_id", "direction", "date"],
    )
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category", "date"],
    )

    op.create_table(
        "transaction_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column(
            "is_non_essential", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.CheckConstraint("subtotal_cents >= 0", name="ck_split_subtotal_positive"),
    )
    op.create_index("ix_split_category", "transaction_splits", ["category"])

    op.create_table(
        "split_line_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "split_id",
            sa.Integer(),
            sa.ForeignKey("transaction_splits.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(
            "unit_price_cents >= 0", name="ck_line_item_price_positive"
        ),
        sa.CheckConstraint("quantity > 0", name="ck_line_item_quantity_positive"),
    )


def downgrade():
    op.drop_table("split_line_items")
    op.drop_index("ix_split_category", table_name="transaction_splits")
    op.drop_table("transaction_splits")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_direction_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_budget_user_period", table_name="budgets")
    op.drop_table("budgets")
