"""initial schema

Revision ID: 202610191200
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610191200"
down_revision = None
branch_labels = None
depends_on = None

account_type = sa.Enum("debit", "credit", name="accounttype")
category_type = sa.Enum("expense", "income", name="categorytype")
operation_type = sa.Enum("simple", "transfer", name="operationtype")
payment_frequency = sa.Enum(
    "weekly", "biweekly", "monthly", "bimonthly", "yearly", name="paymentfrequency"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False, unique=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "date_format", sa.String(length=20), nullable=False, server_default="%Y-%m-%d"
        ),
        sa.Column("time_zone", sa.String(length=60), nullable=False, server_default="UTC"),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("type", account_type, nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", category_type, nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "subcategories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "vendors",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_vendor_user_name"),
    )

    op.create_table(
        "operations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("type", operation_type, nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id")),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("destination_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("category_type", category_type),
        sa.Column("comments", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint("total_amount_cents <> 0", name="ck_operation_amount_nonzero"),
    )
    op.create_index("ix_operations_user_date", "operations", ["user_id", "date"])
    op.create_index(
        "ix_operations_user_account", "operations", ["user_id", "account_id"]
    )

    op.create_table(
        "operation_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "operation_id", sa.Integer(), sa.ForeignKey("operations.id"), nullable=False
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("sub_category_id", sa.Integer(), sa.ForeignKey("subcategories.id")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_allocation_category",
        "operation_allocations",
        ["category_id", "operation_id"],
    )

    op.create_table(
        "templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("type", operation_type, nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id")),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("destination_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("category_type", category_type),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "template_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id", sa.Integer(), sa.ForeignKey("templates.id"), nullable=False
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("sub_category_id", sa.Integer(), sa.ForeignKey("subcategories.id")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "template_id", sa.Integer(), sa.ForeignKey("templates.id"), nullable=False
        ),
        sa.Column("payment_frequency", payment_frequency, nullable=False),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column(
            "next_due_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("payment_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("payment_month", sa.Integer()),
        sa.Column("last_paid_date", sa.Date()),
        sa.Column(
            "last_paid_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_bill_user_name"),
        sa.CheckConstraint(
            "next_due_amount_cents >= 0", name="ck_bill_due_amount_positive"
        ),
    )
    op.create_index("ix_bills_user_due", "bills", ["user_id", "next_due_date"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_budget_user_name"),
        sa.CheckConstraint("start_date <= end_date", name="ck_budget_window"),
    )
    op.create_index(
        "ix_budgets_user_window", "budgets", ["user_id", "start_date", "end_date"]
    )

    op.create_table(
        "budget_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.UniqueConstraint("budget_id", "category_id", name="uq_budget_category"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_category_amount"),
    )


def downgrade():
    op.drop_table("budget_categories")
    op.drop_index("ix_budgets_user_window", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_bills_user_due", table_name="bills")
    op.drop_table("bills")
    op.drop_table("template_allocations")
    op.drop_table("templates")
    op.drop_index("ix_allocation_category", table_name="operation_allocations")
    op.drop_table("operation_allocations")
    op.drop_index("ix_operations_user_account", table_name="operations")
    op.drop_index("ix_operations_user_date", table_name="operations")
    op.drop_table("operations")
    op.drop_table("vendors")
    op.drop_table("subcategories")
    op.drop_table("categories")
    op.drop_table("accounts")
    op.drop_table("users")
