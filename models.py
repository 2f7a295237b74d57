from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class UserRole(str, Enum):
    admin = "ADMIN"
    user = "USER"


USER_ROLE_ENUM = SAEnum(
    UserRole,
    name="userrole",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        USER_ROLE_ENUM, nullable=False, default=UserRole.user
    )

    settings: Mapped[Optional["UserSettings"]] = relationship(
        "UserSettings", back_populates="user", cascade="all, delete-orphan"
    )


class UserSettings(Base, TimestampMixin):
    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    savings_percentage: Mapped[float] = mapped_column(Float, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="settings")

    __table_args__ = (
        CheckConstraint(
            "savings_percentage >= 0 AND savings_percentage <= 100",
            name="ck_user_settings_savings_percentage",
        ),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(7))
    icon: Mapped[Optional[str]] = mapped_column(String(40))

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Member(Base, TimestampMixin):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    monthly_income_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "monthly_income_cents >= 0", name="ck_members_income_non_negative"
        ),
        Index("ix_members_user", "user_id"),
    )


class SharedExpense(Base, TimestampMixin):
    __tablename__ = "shared_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    snapshots: Mapped[list["MemberSplitSnapshot"]] = relationship(
        "MemberSplitSnapshot",
        back_populates="shared_expense",
        cascade="all, delete-orphan",
        order_by="MemberSplitSnapshot.id",
    )
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="shared_expense", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("total_cents > 0", name="ck_shared_expenses_total_positive"),
        Index("ix_shared_expenses_user_occurred", "user_id", "occurred_at"),
    )


class MemberSplitSnapshot(Base):
    __tablename__ = "member_split_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shared_expense_id: Mapped[int] = mapped_column(
        ForeignKey("shared_expenses.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    monthly_income_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    share_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    shared_expense: Mapped["SharedExpense"] = relationship(
        "SharedExpense", back_populates="snapshots"
    )

    __table_args__ = (
        Index("ix_member_split_snapshots_shared_expense", "shared_expense_id"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    is_shared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    shared_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("shared_expenses.id", ondelete="CASCADE")
    )
    source_installment_payment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("installment_payments.id", ondelete="SET NULL")
    )

    category: Mapped["Category"] = relationship("Category", back_populates="expenses")
    shared_expense: Mapped[Optional["SharedExpense"]] = relationship(
        "SharedExpense", back_populates="expenses"
    )
    source_payment: Mapped[Optional["InstallmentPayment"]] = relationship(
        "InstallmentPayment", back_populates="expense"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
        Index("ix_expenses_user_occurred", "user_id", "occurred_at"),
        Index("ix_expenses_user_category_occurred", "user_id", "category_id", "occurred_at"),
    )


class InstallmentPlan(Base, TimestampMixin):
    __tablename__ = "installment_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    installments_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payments: Mapped[list["InstallmentPayment"]] = relationship(
        "InstallmentPayment",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="InstallmentPayment.installment_number",
    )

    __table_args__ = (
        CheckConstraint("total_cents > 0", name="ck_installment_plans_total_positive"),
        CheckConstraint(
            "total_installments >= 1", name="ck_installment_plans_count_positive"
        ),
        CheckConstraint(
            "installments_paid >= 0 AND installments_paid <= total_installments",
            name="ck_installment_plans_paid_in_range",
        ),
        Index("ix_installment_plans_user_start", "user_id", "start_date"),
    )


class InstallmentPayment(Base):
    __tablename__ = "installment_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    plan_id: Mapped[int] = mapped_column(
        ForeignKey("installment_plans.id", ondelete="CASCADE"), nullable=False
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    plan: Mapped["InstallmentPlan"] = relationship(
        "InstallmentPlan", back_populates="payments"
    )
    expense: Mapped[Optional["Expense"]] = relationship(
        "Expense", back_populates="source_payment", uselist=False
    )

    __table_args__ = (
        UniqueConstraint(
            "plan_id", "installment_number", name="uq_installment_payment_number"
        ),
    )


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_incomes_amount_positive"),
        Index("ix_incomes_user_occurred", "user_id", "occurred_at"),
    )


class SavingsEntry(Base, TimestampMixin):
    __tablename__ = "savings_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_savings_amount_positive"),
        Index("ix_savings_entries_user_occurred", "user_id", "occurred_at"),
    )


class Investment(Base, TimestampMixin):
    __tablename__ = "investments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(60), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_investments_amount_positive"),
        Index("ix_investments_user_occurred", "user_id", "occurred_at"),
    )


class Loan(Base, TimestampMixin):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    person: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    lent_on: Mapped[date] = mapped_column(Date, nullable=False)
    reminder_on: Mapped[Optional[date]] = mapped_column(Date)
    repaid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_loans_amount_positive"),
        Index("ix_loans_user_lent_on", "user_id", "lent_on"),
    )
