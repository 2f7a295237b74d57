"""initial household ledger schema

Revision ID: 202601100900
Revises:
Create Date: 2026-01-10 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601100900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "role", sa.Enum("ADMIN", "USER", name="userrole"), nullable=False
        ),
        *_timestamps(),
    )

    op.create_table(
        "user_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("savings_percentage", sa.Float(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "savings_percentage >= 0 AND savings_percentage <= 100",
            name="ck_user_settings_savings_percentage",
        ),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=7)),
        sa.Column("icon", sa.String(length=40)),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("monthly_income_cents", sa.Integer(), nullable=False),
        sa.Column("is_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            "monthly_income_cents >= 0", name="ck_members_income_non_negative"
        ),
    )
    op.create_index("ix_members_user", "members", ["user_id"])

    op.create_table(
        "shared_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("total_cents > 0", name="ck_shared_expenses_total_positive"),
    )
    op.create_index(
        "ix_shared_expenses_user_occurred",
        "shared_expenses",
        ["user_id", "occurred_at"],
    )

    op.create_table(
        "member_split_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "shared_expense_id",
            sa.Integer(),
            sa.ForeignKey("shared_expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("monthly_income_cents", sa.Integer(), nullable=False),
        sa.Column("is_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("share_cents", sa.Integer(), nullable=False),
    )
    op.create_index(
        "ix_member_split_snapshots_shared_expense",
        "member_split_snapshots",
        ["shared_expense_id"],
    )

    op.create_table(
        "installment_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("total_installments", sa.Integer(), nullable=False),
        sa.Column("installment_cents", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column(
            "installments_paid", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
        sa.CheckConstraint("total_cents > 0", name="ck_installment_plans_total_positive"),
        sa.CheckConstraint(
            "total_installments >= 1", name="ck_installment_plans_count_positive"
        ),
        sa.CheckConstraint(
            "installments_paid >= 0 AND installments_paid <= total_installments",
            name="ck_installment_plans_paid_in_range",
        ),
    )
    op.create_index(
        "ix_installment_plans_user_start",
        "installment_plans",
        ["user_id", "start_date"],
    )

    op.create_table(
        "installment_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "plan_id",
            sa.Integer(),
            sa.ForeignKey("installment_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("installment_number", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "plan_id", "installment_number", name="uq_installment_payment_number"
        ),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("is_shared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "shared_expense_id",
            sa.Integer(),
            sa.ForeignKey("shared_expenses.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "source_installment_payment_id",
            sa.Integer(),
            sa.ForeignKey("installment_payments.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index(
        "ix_expenses_user_occurred", "expenses", ["user_id", "occurred_at"]
    )
    op.create_index(
        "ix_expenses_user_category_occurred",
        "expenses",
        ["user_id", "category_id", "occurred_at"],
    )

    for table in ("incomes", "savings_entries"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=False),
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            sa.Column("occurred_at", sa.DateTime(), nullable=False),
            *_timestamps(),
        )
    op.create_index("ix_incomes_user_occurred", "incomes", ["user_id", "occurred_at"])
    op.create_index(
        "ix_savings_entries_user_occurred",
        "savings_entries",
        ["user_id", "occurred_at"],
    )

    op.create_table(
        "investments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=60), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index(
        "ix_investments_user_occurred", "investments", ["user_id", "occurred_at"]
    )

    op.create_table(
        "loans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("person", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("lent_on", sa.Date(), nullable=False),
        sa.Column("reminder_on", sa.Date()),
        sa.Column("repaid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_loans_user_lent_on", "loans", ["user_id", "lent_on"])


def downgrade():
    op.drop_index("ix_loans_user_lent_on", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_investments_user_occurred", table_name="investments")
    op.drop_table("investments")
    op.drop_index("ix_savings_entries_user_occurred", table_name="savings_entries")
    op.drop_index("ix_incomes_user_occurred", table_name="incomes")
    op.drop_table("savings_entries")
    op.drop_table("incomes")
    op.drop_index("ix_expenses_user_category_occurred", table_name="expenses")
    op.drop_index("ix_expenses_user_occurred", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("installment_payments")
    op.drop_index("ix_installment_plans_user_start", table_name="installment_plans")
    op.drop_table("installment_plans")
    op.drop_index(
        "ix_member_split_snapshots_shared_expense",
        table_name="member_split_snapshots",
    )
    op.drop_table("member_split_snapshots")
    op.drop_index("ix_shared_expenses_user_occurred", table_name="shared_expenses")
    op.drop_table("shared_expenses")
    op.drop_index("ix_members_user", table_name="members")
    op.drop_table("members")
    op.drop_table("categories")
    op.drop_table("user_settings")
    op.drop_table("users")
