from __future__ import annotations

import logging
import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import delete, extract, func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from amounts import AmountLike, divide_cents, proportional_shares, to_cents
from config import get_settings
from database import atomic
from models import (
    Category,
    Expense,
    Income,
    InstallmentPayment,
    InstallmentPlan,
    Investment,
    Loan,
    Member,
    MemberSplitSnapshot,
    SavingsEntry,
    SharedExpense,
    User,
    UserSettings,
)
from periods import Period, month_period
from schemas import (
    CategoryIn,
    ExpenseIn,
    IncomeIn,
    InstallmentPlanIn,
    InvestmentIn,
    LoanIn,
    MemberIn,
    ProfileIn,
    SavingsEntryIn,
    SharedExpenseIn,
    SharedExpenseUpdateIn,
    UserIn,
)

logger = logging.getLogger(__name__)

SHARED_EXPENSES_CATEGORY = ("Shared Expenses", "#ec4899", "Users")
INSTALLMENT_CATEGORY = ("Installment Purchases", "#8b5cf6", "CreditCard")
DEFAULT_CATEGORIES = [
    ("Food", "#ef4444", "Utensils"),
    ("Transport", "#f97316", "Car"),
    ("Housing", "#eab308", "Home"),
    ("Utilities", "#84cc16", "Zap"),
    ("Leisure", "#06b6d4", "Gamepad2"),
    ("Health", "#3b82f6", "Heart"),
    ("Clothing", "#8b5cf6", "Shirt"),
    ("Education", "#d946ef", "GraduationCap"),
    ("Other", "#64748b", "MoreHorizontal"),
]

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1F\x7F]")


class ValidationError(ValueError):
    pass


class BusinessRuleError(ValueError):
    pass


class AlreadyComplete(BusinessRuleError):
    pass


class NotFoundError(ValueError):
    pass


def local_now() -> datetime:
    return (
        datetime.now(ZoneInfo(get_settings().timezone))
        .replace(tzinfo=None)
        .replace(microsecond=0)
    )


def clean_text(value: Optional[str], field: str, max_length: int = 500) -> str:
    text = _TAG_RE.sub("", (value or "").strip()[:max_length])
    text = _CONTROL_RE.sub("", text).strip()
    if not text:
        raise ValidationError(f"{field} is required")
    return text


def amount_cents(value: AmountLike, field: str, *, allow_zero: bool = False) -> int:
    try:
        return to_cents(value, allow_zero=allow_zero)
    except ValueError as exc:
        raise ValidationError(f"{field} {exc}") from exc


def shared_portion_description(description: str) -> str:
    return f"{description} (Parte proporcional)"


def installment_expense_description(number: int, total: int, description: str) -> str:
    return f"Cuota {number} de {total} - {description}"


def _sum_cents(session: Session, column, *criteria) -> int:
    return int(
        session.execute(select(func.coalesce(func.sum(column), 0)).where(*criteria))
        .scalar_one()
        or 0
    )


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: UserIn) -> User:
        username = data.username.strip().lower()
        existing = self.session.scalar(select(User).where(User.username == username))
        if existing:
            raise BusinessRuleError("Username already exists")
        with atomic(self.session):
            user = User(username=username, name=data.name.strip(), role=data.role)
            self.session.add(user)
            self.session.flush()
            CategoryService(self.session, user.id).seed_defaults()
        logger.info(f"user_created: id={user.id} username={user.username}")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_username(self, username: str) -> User:
        user = self.session.scalar(
            select(User).where(User.username == username.strip().lower())
        )
        if not user:
            raise NotFoundError("User not found")
        return user

    def list_with_activity(self) -> list[tuple[User, int, int]]:
        """Users newest first, each with its expense and income counts."""
        expense_count = (
            select(func.count(Expense.id))
            .where(Expense.user_id == User.id)
            .correlate(User)
            .scalar_subquery()
        )
        income_count = (
            select(func.count(Income.id))
            .where(Income.user_id == User.id)
            .correlate(User)
            .scalar_subquery()
        )
        stmt = select(User, expense_count, income_count).order_by(
            User.created_at.desc(), User.id.desc()
        )
        return [
            (user, int(expenses or 0), int(incomes or 0))
            for user, expenses, incomes in self.session.execute(stmt).all()
        ]

    def update_profile(self, user_id: int, data: ProfileIn) -> User:
        name = clean_text(data.name, "Name", max_length=100)
        username = data.username.strip().lower()
        user = self.get(user_id)
        if username != user.username:
            taken = self.session.scalar(select(User.id).where(User.username == username))
            if taken:
                raise BusinessRuleError("Username already taken")
        with atomic(self.session):
            user.name = name
            user.username = username
        logger.info(f"user_profile_updated: id={user.id} username={user.username}")
        return user

    def delete(self, user_id: int, *, acting_user_id: int) -> None:
        if user_id == acting_user_id:
            raise BusinessRuleError("Cannot delete your own admin account")
        user = self.get(user_id)
        shared_ids = select(SharedExpense.id).where(SharedExpense.user_id == user_id)
        plan_ids = select(InstallmentPlan.id).where(InstallmentPlan.user_id == user_id)
        # Expenses go first; they reference shared expenses, payments and categories.
        statements = [
            delete(Expense).where(Expense.user_id == user_id),
            delete(MemberSplitSnapshot).where(
                MemberSplitSnapshot.shared_expense_id.in_(shared_ids)
            ),
            delete(SharedExpense).where(SharedExpense.user_id == user_id),
            delete(InstallmentPayment).where(InstallmentPayment.plan_id.in_(plan_ids)),
            delete(InstallmentPlan).where(InstallmentPlan.user_id == user_id),
            delete(Income).where(Income.user_id == user_id),
            delete(SavingsEntry).where(SavingsEntry.user_id == user_id),
            delete(Investment).where(Investment.user_id == user_id),
            delete(Loan).where(Loan.user_id == user_id),
            delete(Member).where(Member.user_id == user_id),
            delete(Category).where(Category.user_id == user_id),
        ]
        with atomic(self.session):
            for stmt in statements:
                self.session.execute(stmt.execution_options(synchronize_session=False))
            self.session.delete(user)
        logger.info(f"user_deleted: id={user_id} by={acting_user_id}")


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _find(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, data: CategoryIn) -> Category:
        name = clean_text(data.name, "Name", max_length=100)
        if self._find(name):
            raise BusinessRuleError("Category with this name already exists")
        with atomic(self.session):
            category = Category(
                user_id=self.user_id,
                name=name,
                color=data.color or "#6366f1",
                icon=data.icon or "Tag",
            )
            self.session.add(category)
        return category

    def get_or_create(self, name: str, color: str, icon: str) -> Category:
        """Find or stage a category; the caller owns the transaction."""
        existing = self._find(name)
        if existing:
            return existing
        category = Category(user_id=self.user_id, name=name, color=color, icon=icon)
        self.session.add(category)
        self.session.flush()
        return category

    def seed_defaults(self) -> None:
        for name, color, icon in DEFAULT_CATEGORIES:
            self.get_or_create(name, color, icon)


class MemberService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Member]:
        stmt = (
            select(Member)
            .where(Member.user_id == self.user_id)
            .order_by(Member.created_at, Member.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, member_id: int) -> Member:
        member = self.session.get(Member, member_id)
        if not member or member.user_id != self.user_id:
            raise NotFoundError("Member not found")
        return member

    def _check_owner_slot(self, exclude_id: Optional[int] = None) -> None:
        stmt = select(func.count(Member.id)).where(
            Member.user_id == self.user_id, Member.is_owner.is_(True)
        )
        if exclude_id is not None:
            stmt = stmt.where(Member.id != exclude_id)
        if (self.session.execute(stmt).scalar_one() or 0) > 0:
            raise BusinessRuleError("Another member is already marked as the account owner")

    def create(self, data: MemberIn) -> Member:
        name = clean_text(data.name, "Name", max_length=100)
        income = amount_cents(data.monthly_income, "Monthly income", allow_zero=True)
        if data.is_owner:
            self._check_owner_slot()
        with atomic(self.session):
            member = Member(
                user_id=self.user_id,
                name=name,
                monthly_income_cents=income,
                is_owner=data.is_owner,
            )
            self.session.add(member)
        logger.info(f"member_created: id={member.id} owner={member.is_owner}")
        return member

    def update(self, member_id: int, data: MemberIn) -> Member:
        name = clean_text(data.name, "Name", max_length=100)
        income = amount_cents(data.monthly_income, "Monthly income", allow_zero=True)
        member = self.get(member_id)
        if data.is_owner and not member.is_owner:
            self._check_owner_slot(exclude_id=member.id)
        with atomic(self.session):
            member.name = name
            member.monthly_income_cents = income
            member.is_owner = data.is_owner
        return member

    def delete(self, member_id: int) -> None:
        member = self.get(member_id)
        with atomic(self.session):
            self.session.delete(member)
        logger.info(f"member_deleted: id={member_id}")


class SharedExpenseService:
    """Splits a shared cost across household members by income share.

    Each split stores a snapshot of every participating member as they were at
    split time, and the owner's portion is materialized as a personal expense
    linked to the shared expense.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(self, period: Period) -> list[SharedExpense]:
        stmt = (
            select(SharedExpense)
            .options(selectinload(SharedExpense.snapshots))
            .where(
                SharedExpense.user_id == self.user_id,
                SharedExpense.occurred_at >= period.start_at,
                SharedExpense.occurred_at <= period.end_at,
            )
            .order_by(SharedExpense.occurred_at.desc(), SharedExpense.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, shared_expense_id: int) -> SharedExpense:
        shared = self.session.get(SharedExpense, shared_expense_id)
        if not shared or shared.user_id != self.user_id:
            raise NotFoundError("Shared expense not found")
        return shared

    def create(self, data: SharedExpenseIn) -> SharedExpense:
        description = clean_text(data.description, "Description")
        total_cents = amount_cents(data.total_amount, "Total amount")
        members = MemberService(self.session, self.user_id).list_all()
        if not members:
            raise ValidationError("No members registered to split the expense")
        shares = self._split(members, total_cents)

        with atomic(self.session):
            shared = SharedExpense(
                user_id=self.user_id,
                description=description,
                total_cents=total_cents,
                occurred_at=local_now(),
            )
            self.session.add(shared)
            self._materialize(shared, members, shares)
            self.session.flush()
        logger.info(
            f"shared_expense_created: id={shared.id} total_cents={total_cents} "
            f"members={len(members)}"
        )
        return shared

    def update(
        self, shared_expense_id: int, data: SharedExpenseUpdateIn
    ) -> SharedExpense:
        # Re-splits over the selected members using their current incomes; the
        # snapshots taken at creation time are replaced, not consulted.
        description = clean_text(data.description, "Description")
        total_cents = amount_cents(data.total_amount, "Total amount")
        if not data.member_ids:
            raise ValidationError("Select at least one member")
        shared = self.get(shared_expense_id)
        members = self.session.scalars(
            select(Member)
            .where(
                Member.user_id == self.user_id,
                Member.id.in_(set(data.member_ids)),
            )
            .order_by(Member.created_at, Member.id)
        ).all()
        if not members:
            raise BusinessRuleError("The selected members were not found")
        shares = self._split(members, total_cents)
        original_date = shared.occurred_at

        with atomic(self.session):
            shared.description = description
            shared.total_cents = total_cents
            shared.snapshots.clear()
            shared.expenses.clear()
            self.session.flush()
            shared.occurred_at = original_date
            self._materialize(shared, members, shares)
            self.session.flush()
        logger.info(
            f"shared_expense_updated: id={shared.id} total_cents={total_cents} "
            f"members={len(members)}"
        )
        return shared

    def delete(self, shared_expense_id: int) -> None:
        shared = self.get(shared_expense_id)
        with atomic(self.session):
            self.session.delete(shared)
        logger.info(f"shared_expense_deleted: id={shared_expense_id}")

    @staticmethod
    def _split(members: Sequence[Member], total_cents: int) -> list[int]:
        incomes = [m.monthly_income_cents for m in members]
        if sum(incomes) == 0:
            raise BusinessRuleError("The total income of the members is 0")
        return proportional_shares(total_cents, incomes)

    def _materialize(
        self,
        shared: SharedExpense,
        members: Sequence[Member],
        shares: Sequence[int],
    ) -> None:
        category: Optional[Category] = None
        for member, share in zip(members, shares):
            shared.snapshots.append(
                MemberSplitSnapshot(
                    name=member.name,
                    monthly_income_cents=member.monthly_income_cents,
                    is_owner=member.is_owner,
                    share_cents=share,
                )
            )
            if not member.is_owner:
                continue
            if category is None:
                category = CategoryService(self.session, self.user_id).get_or_create(
                    *SHARED_EXPENSES_CATEGORY
                )
            shared.expenses.append(
                Expense(
                    user_id=self.user_id,
                    description=shared_portion_description(shared.description),
                    amount_cents=share,
                    occurred_at=shared.occurred_at,
                    category_id=category.id,
                    is_shared=True,
                )
            )


class InstallmentService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[InstallmentPlan]:
        stmt = (
            select(InstallmentPlan)
            .where(InstallmentPlan.user_id == self.user_id)
            .order_by(InstallmentPlan.start_date.desc(), InstallmentPlan.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, plan_id: int) -> InstallmentPlan:
        plan = self.session.get(InstallmentPlan, plan_id)
        if not plan or plan.user_id != self.user_id:
            raise NotFoundError("Installment plan not found")
        return plan

    def create(self, data: InstallmentPlanIn) -> InstallmentPlan:
        description = clean_text(data.description, "Description")
        total_cents = amount_cents(data.total_amount, "Total amount")
        if data.total_installments is None or data.total_installments < 1:
            raise ValidationError("Number of installments must be at least 1")
        if data.start_date is None:
            raise ValidationError("Start date is required")
        if not 0 <= data.installments_paid <= data.total_installments:
            raise ValidationError(
                "Installments paid must be between 0 and the number of installments"
            )

        with atomic(self.session):
            plan = InstallmentPlan(
                user_id=self.user_id,
                description=description,
                total_cents=total_cents,
                total_installments=data.total_installments,
                installment_cents=divide_cents(total_cents, data.total_installments),
                start_date=data.start_date,
                installments_paid=data.installments_paid,
            )
            self.session.add(plan)
        logger.info(
            f"installment_plan_created: id={plan.id} total_cents={total_cents} "
            f"installments={plan.total_installments}"
        )
        return plan

    def pay(self, plan_id: int) -> Expense:
        plan = self.get(plan_id)
        if plan.installments_paid >= plan.total_installments:
            raise AlreadyComplete("Installment plan is already fully paid")

        with atomic(self.session):
            result = self.session.execute(
                update(InstallmentPlan)
                .where(
                    InstallmentPlan.id == plan.id,
                    InstallmentPlan.user_id == self.user_id,
                    InstallmentPlan.installments_paid
                    < InstallmentPlan.total_installments,
                )
                .values(installments_paid=InstallmentPlan.installments_paid + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise AlreadyComplete("Installment plan is already fully paid")
            self.session.refresh(plan)

            category = CategoryService(self.session, self.user_id).get_or_create(
                *INSTALLMENT_CATEGORY
            )
            paid_at = local_now()
            payment = InstallmentPayment(
                plan=plan,
                installment_number=plan.installments_paid,
                amount_cents=plan.installment_cents,
                paid_at=paid_at,
            )
            expense = Expense(
                user_id=self.user_id,
                description=installment_expense_description(
                    plan.installments_paid, plan.total_installments, plan.description
                ),
                amount_cents=plan.installment_cents,
                occurred_at=paid_at,
                category_id=category.id,
                source_payment=payment,
            )
            self.session.add_all([payment, expense])
            self.session.flush()
        logger.info(
            f"installment_paid: plan_id={plan.id} "
            f"paid={plan.installments_paid}/{plan.total_installments}"
        )
        return expense

    def revert(self, plan_id: int) -> InstallmentPlan:
        plan = self.get(plan_id)
        if plan.installments_paid <= 0:
            raise BusinessRuleError("There are no installments to revert")

        with atomic(self.session):
            result = self.session.execute(
                update(InstallmentPlan)
                .where(
                    InstallmentPlan.id == plan.id,
                    InstallmentPlan.user_id == self.user_id,
                    InstallmentPlan.installments_paid > 0,
                )
                .values(installments_paid=InstallmentPlan.installments_paid - 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise BusinessRuleError("There are no installments to revert")
            self.session.refresh(plan)

            reverted_number = plan.installments_paid + 1
            payment = self.session.scalar(
                select(InstallmentPayment)
                .options(joinedload(InstallmentPayment.expense))
                .where(
                    InstallmentPayment.plan_id == plan.id,
                    InstallmentPayment.installment_number == reverted_number,
                )
            )
            expense_removed = False
            if payment is not None:
                if payment.expense is not None:
                    self.session.delete(payment.expense)
                    expense_removed = True
                self.session.delete(payment)
            self.session.flush()
            self.session.expire(plan, ["payments"])
        logger.info(
            f"installment_reverted: plan_id={plan.id} number={reverted_number} "
            f"expense_removed={expense_removed}"
        )
        return plan

    def delete(self, plan_id: int) -> None:
        # Expenses already booked for paid installments stay as history.
        plan = self.get(plan_id)
        with atomic(self.session):
            self.session.delete(plan)
        logger.info(f"installment_plan_deleted: id={plan_id}")


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(
        self, period: Period, category_ids: Optional[Sequence[int]] = None
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(
                Expense.user_id == self.user_id,
                Expense.occurred_at >= period.start_at,
                Expense.occurred_at <= period.end_at,
            )
            .order_by(Expense.occurred_at.desc(), Expense.id.desc())
        )
        if category_ids:
            stmt = stmt.where(Expense.category_id.in_(list(category_ids)))
        return self.session.scalars(stmt).all()

    def total_for_period(self, period: Period) -> int:
        return _sum_cents(
            self.session,
            Expense.amount_cents,
            Expense.user_id == self.user_id,
            Expense.occurred_at >= period.start_at,
            Expense.occurred_at <= period.end_at,
        )

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise NotFoundError("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        description = clean_text(data.description, "Description")
        cents = amount_cents(data.amount, "Amount")
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        with atomic(self.session):
            expense = Expense(
                user_id=self.user_id,
                description=description,
                amount_cents=cents,
                occurred_at=data.occurred_at or local_now(),
                category_id=category.id,
            )
            self.session.add(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        description = clean_text(data.description, "Description")
        cents = amount_cents(data.amount, "Amount")
        expense = self.get(expense_id)
        if expense.is_shared or expense.shared_expense_id is not None:
            raise BusinessRuleError(
                "This expense is a shared expense portion; edit the shared expense instead"
            )
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        with atomic(self.session):
            expense.description = description
            expense.amount_cents = cents
            expense.category_id = category.id
            if data.occurred_at is not None:
                expense.occurred_at = data.occurred_at
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        if expense.shared_expense_id is not None:
            # The portion only exists through its shared expense.
            SharedExpenseService(self.session, self.user_id).delete(
                expense.shared_expense_id
            )
            return
        with atomic(self.session):
            self.session.delete(expense)


class IncomeService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(self, period: Period) -> list[Income]:
        stmt = (
            select(Income)
            .where(
                Income.user_id == self.user_id,
                Income.occurred_at >= period.start_at,
                Income.occurred_at <= period.end_at,
            )
            .order_by(Income.occurred_at.desc(), Income.id.desc())
        )
        return self.session.scalars(stmt).all()

    def total_for_period(self, period: Period) -> int:
        return _sum_cents(
            self.session,
            Income.amount_cents,
            Income.user_id == self.user_id,
            Income.occurred_at >= period.start_at,
            Income.occurred_at <= period.end_at,
        )

    def get(self, income_id: int) -> Income:
        income = self.session.get(Income, income_id)
        if not income or income.user_id != self.user_id:
            raise NotFoundError("Income not found")
        return income

    def create(self, data: IncomeIn) -> Income:
        description = clean_text(data.description, "Description")
        cents = amount_cents(data.amount, "Amount")
        with atomic(self.session):
            income = Income(
                user_id=self.user_id,
                description=description,
                amount_cents=cents,
                occurred_at=data.occurred_at or local_now(),
            )
            self.session.add(income)
        return income

    def update(self, income_id: int, data: IncomeIn) -> Income:
        description = clean_text(data.description, "Description")
        cents = amount_cents(data.amount, "Amount")
        income = self.get(income_id)
        with atomic(self.session):
            income.description = description
            income.amount_cents = cents
            if data.occurred_at is not None:
                income.occurred_at = data.occurred_at
        return income

    def delete(self, income_id: int) -> None:
        income = self.get(income_id)
        with atomic(self.session):
            self.session.delete(income)


class SavingsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(self, period: Period) -> list[SavingsEntry]:
        stmt = (
            select(SavingsEntry)
            .where(
                SavingsEntry.user_id == self.user_id,
                SavingsEntry.occurred_at >= period.start_at,
                SavingsEntry.occurred_at <= period.end_at,
            )
            .order_by(SavingsEntry.occurred_at.desc(), SavingsEntry.id.desc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: SavingsEntryIn) -> SavingsEntry:
        description = clean_text(data.description, "Description")
        cents = amount_cents(data.amount, "Amount")
        with atomic(self.session):
            entry = SavingsEntry(
                user_id=self.user_id,
                description=description,
                amount_cents=cents,
                occurred_at=data.occurred_at or local_now(),
            )
            self.session.add(entry)
        return entry

    def delete(self, entry_id: int) -> None:
        entry = self.session.get(SavingsEntry, entry_id)
        if not entry or entry.user_id != self.user_id:
            raise NotFoundError("Savings entry not found")
        with atomic(self.session):
            self.session.delete(entry)

    def savings_percentage(self) -> float:
        configured = self.session.scalar(
            select(UserSettings.savings_percentage).where(
                UserSettings.user_id == self.user_id
            )
        )
        if configured is None:
            return get_settings().default_savings_percentage
        return float(configured)

    def set_savings_percentage(self, percentage: float) -> float:
        if percentage is None or not 0 <= percentage <= 100:
            raise ValidationError("Savings percentage must be between 0 and 100")
        row = self.session.scalar(
            select(UserSettings).where(UserSettings.user_id == self.user_id)
        )
        with atomic(self.session):
            if row is None:
                row = UserSettings(user_id=self.user_id, savings_percentage=percentage)
                self.session.add(row)
            else:
                row.savings_percentage = percentage
        return float(row.savings_percentage)

    def analyze(self, period: Period) -> dict[str, object]:
        total_income = IncomeService(self.session, self.user_id).total_for_period(
            period
        )
        total_saved = _sum_cents(
            self.session,
            SavingsEntry.amount_cents,
            SavingsEntry.user_id == self.user_id,
            SavingsEntry.occurred_at >= period.start_at,
            SavingsEntry.occurred_at <= period.end_at,
        )
        accumulated = _sum_cents(
            self.session,
            SavingsEntry.amount_cents,
            SavingsEntry.user_id == self.user_id,
        )
        percentage = self.savings_percentage()
        target = int(
            (Decimal(total_income) * Decimal(str(percentage)) / Decimal(100)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
        percentage_saved = (
            (total_saved / total_income) * 100 if total_income > 0 else 0.0
        )
        return {
            "total_income_cents": total_income,
            "total_saved_cents": total_saved,
            "accumulated_savings_cents": accumulated,
            "savings_percentage": percentage,
            "target_savings_cents": target,
            "percentage_saved": percentage_saved,
        }


class InvestmentService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(self, period: Period) -> list[Investment]:
        stmt = (
            select(Investment)
            .where(
                Investment.user_id == self.user_id,
                Investment.occurred_at >= period.start_at,
                Investment.occurred_at <= period.end_at,
            )
            .order_by(Investment.occurred_at.desc(), Investment.id.desc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: InvestmentIn) -> Investment:
        kind = clean_text(data.kind, "Type", max_length=60)
        name = clean_text(data.name, "Name", max_length=200)
        cents = amount_cents(data.amount, "Amount")
        with atomic(self.session):
            investment = Investment(
                user_id=self.user_id,
                kind=kind,
                name=name,
                amount_cents=cents,
                occurred_at=data.occurred_at or local_now(),
                notes=(data.notes or "").strip() or None,
            )
            self.session.add(investment)
        return investment

    def delete(self, investment_id: int) -> None:
        investment = self.session.get(Investment, investment_id)
        if not investment or investment.user_id != self.user_id:
            raise NotFoundError("Investment not found")
        with atomic(self.session):
            self.session.delete(investment)

    def summary(self, period: Period) -> dict[str, int]:
        total, count = self.session.execute(
            select(
                func.coalesce(func.sum(Investment.amount_cents), 0),
                func.count(Investment.id),
            ).where(Investment.user_id == self.user_id)
        ).one()
        this_month = _sum_cents(
            self.session,
            Investment.amount_cents,
            Investment.user_id == self.user_id,
            Investment.occurred_at >= period.start_at,
            Investment.occurred_at <= period.end_at,
        )
        return {
            "total_invested_cents": int(total or 0),
            "invested_this_month_cents": this_month,
            "count": int(count or 0),
        }


class LoanService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(self, period: Period) -> list[Loan]:
        stmt = (
            select(Loan)
            .where(
                Loan.user_id == self.user_id,
                Loan.lent_on >= period.start,
                Loan.lent_on <= period.end,
            )
            .order_by(Loan.lent_on.desc(), Loan.id.desc())
        )
        return self.session.scalars(stmt).all()

    def outstanding(self) -> list[Loan]:
        stmt = (
            select(Loan)
            .where(Loan.user_id == self.user_id, Loan.repaid.is_(False))
            .order_by(Loan.reminder_on.is_(None), Loan.reminder_on, Loan.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, loan_id: int) -> Loan:
        loan = self.session.get(Loan, loan_id)
        if not loan or loan.user_id != self.user_id:
            raise NotFoundError("Loan not found")
        return loan

    def create(self, data: LoanIn) -> Loan:
        person = clean_text(data.person, "Person", max_length=200)
        cents = amount_cents(data.amount, "Amount")
        if data.reminder_on is not None and data.reminder_on < data.lent_on:
            raise ValidationError("Reminder date must not be before the loan date")
        with atomic(self.session):
            loan = Loan(
                user_id=self.user_id,
                person=person,
                amount_cents=cents,
                lent_on=data.lent_on,
                reminder_on=data.reminder_on,
                notes=(data.notes or "").strip() or None,
            )
            self.session.add(loan)
        return loan

    def set_repaid(self, loan_id: int, repaid: bool) -> Loan:
        loan = self.get(loan_id)
        with atomic(self.session):
            loan.repaid = repaid
        return loan

    def delete(self, loan_id: int) -> None:
        loan = self.get(loan_id)
        with atomic(self.session):
            self.session.delete(loan)


class LedgerService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def monthly_summary(self, period: Period) -> dict[str, int]:
        income = IncomeService(self.session, self.user_id).total_for_period(period)
        expenses = ExpenseService(self.session, self.user_id).total_for_period(period)
        savings = _sum_cents(
            self.session,
            SavingsEntry.amount_cents,
            SavingsEntry.user_id == self.user_id,
            SavingsEntry.occurred_at >= period.start_at,
            SavingsEntry.occurred_at <= period.end_at,
        )
        investments = _sum_cents(
            self.session,
            Investment.amount_cents,
            Investment.user_id == self.user_id,
            Investment.occurred_at >= period.start_at,
            Investment.occurred_at <= period.end_at,
        )
        return {
            "income_cents": income,
            "expense_cents": expenses,
            "savings_cents": savings,
            "investment_cents": investments,
            "balance_cents": income - expenses,
        }

    def available_months(self, today: Optional[date] = None) -> list[Period]:
        today = today or local_now().date()
        keys: set[tuple[int, int]] = {(today.year, today.month)}
        for model in (Expense, Income, SavingsEntry, Investment):
            year = extract("year", model.occurred_at)
            month = extract("month", model.occurred_at)
            rows = self.session.execute(
                select(year, month)
                .where(model.user_id == self.user_id)
                .group_by(year, month)
            ).all()
            keys.update((int(y), int(m)) for y, m in rows)
        return [month_period(y, m) for y, m in sorted(keys, reverse=True)]
