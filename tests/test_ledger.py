from datetime import date, datetime

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from database import Base, make_engine
from models import Category
from periods import month_period
from schemas import (
    CategoryIn,
    ExpenseIn,
    IncomeIn,
    InvestmentIn,
    LoanIn,
    MemberIn,
    SavingsEntryIn,
    UserIn,
)
from services import (
    DEFAULT_CATEGORIES,
    BusinessRuleError,
    CategoryService,
    ExpenseService,
    IncomeService,
    InvestmentService,
    LedgerService,
    LoanService,
    MemberService,
    NotFoundError,
    SavingsService,
    UserService,
    ValidationError,
)

JANUARY = month_period(2025, 1)


def make_session():
    engine = make_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session: Session, username: str = "ana") -> int:
    return UserService(session).create(UserIn(username=username, name="Ana")).id


def category_id(session: Session, user_id: int, name: str) -> int:
    return session.scalar(
        select(Category.id).where(Category.user_id == user_id, Category.name == name)
    )


def test_new_user_gets_default_categories() -> None:
    session = make_session()
    user_id = make_user(session)

    names = {c.name for c in CategoryService(session, user_id).list_all()}
    assert names == {name for name, _, _ in DEFAULT_CATEGORIES}


def test_usernames_are_unique_case_insensitively() -> None:
    session = make_session()
    make_user(session, "ana")

    with pytest.raises(BusinessRuleError):
        UserService(session).create(UserIn(username="ANA", name="Other Ana"))


def test_category_names_are_unique_per_user() -> None:
    session = make_session()
    ana = make_user(session, "ana")
    bob = make_user(session, "bob")

    CategoryService(session, ana).create(CategoryIn(name="Pets"))
    with pytest.raises(BusinessRuleError):
        CategoryService(session, ana).create(CategoryIn(name="pets"))
    CategoryService(session, bob).create(CategoryIn(name="Pets"))


def test_members_reject_negative_income_and_allow_zero() -> None:
    session = make_session()
    user_id = make_user(session)
    members = MemberService(session, user_id)

    with pytest.raises(ValidationError):
        members.create(MemberIn(name="Ana", monthly_income="-1"))
    eva = members.create(MemberIn(name="Eva", monthly_income="0"))
    assert eva.monthly_income_cents == 0


def test_owner_flag_can_move_between_members() -> None:
    session = make_session()
    user_id = make_user(session)
    members = MemberService(session, user_id)
    ana = members.create(MemberIn(name="Ana", monthly_income="1000", is_owner=True))
    luis = members.create(MemberIn(name="Luis", monthly_income="900"))

    with pytest.raises(BusinessRuleError):
        members.update(luis.id, MemberIn(name="Luis", monthly_income="900", is_owner=True))

    members.update(ana.id, MemberIn(name="Ana", monthly_income="1000", is_owner=False))
    members.update(luis.id, MemberIn(name="Luis", monthly_income="900", is_owner=True))
    assert [m.is_owner for m in members.list_all()] == [False, True]


def test_expenses_filter_by_month_and_category() -> None:
    session = make_session()
    user_id = make_user(session)
    food = category_id(session, user_id, "Food")
    transport = category_id(session, user_id, "Transport")
    expenses = ExpenseService(session, user_id)
    expenses.create(
        ExpenseIn(description="Bread", amount="2,50", category_id=food, occurred_at=datetime(2025, 1, 3, 9))
    )
    expenses.create(
        ExpenseIn(description="Bus", amount="1.20", category_id=transport, occurred_at=datetime(2025, 1, 31, 23, 59))
    )
    expenses.create(
        ExpenseIn(description="Cheese", amount="7", category_id=food, occurred_at=datetime(2025, 2, 1, 0, 0))
    )

    assert [e.description for e in expenses.list_for_month(JANUARY)] == ["Bus", "Bread"]
    assert [e.description for e in expenses.list_for_month(JANUARY, [food])] == ["Bread"]
    assert expenses.total_for_period(JANUARY) == 370


def test_expense_category_must_belong_to_user() -> None:
    session = make_session()
    ana = make_user(session, "ana")
    bob = make_user(session, "bob")

    with pytest.raises(NotFoundError):
        ExpenseService(session, ana).create(
            ExpenseIn(
                description="Bread",
                amount="2",
                category_id=category_id(session, bob, "Food"),
            )
        )


def test_expense_description_is_sanitized() -> None:
    session = make_session()
    user_id = make_user(session)
    expense = ExpenseService(session, user_id).create(
        ExpenseIn(
            description="  <b>Lunch</b>\x00 ",
            amount="9.99",
            category_id=category_id(session, user_id, "Food"),
        )
    )

    assert expense.description == "Lunch"
    assert expense.amount_cents == 999


def test_income_update_and_delete() -> None:
    session = make_session()
    user_id = make_user(session)
    incomes = IncomeService(session, user_id)
    salary = incomes.create(
        IncomeIn(description="Salary", amount="1800", occurred_at=datetime(2025, 1, 28, 8))
    )

    incomes.update(salary.id, IncomeIn(description="Salary", amount="1850.50"))
    assert incomes.total_for_period(JANUARY) == 185_050

    incomes.delete(salary.id)
    assert incomes.list_for_month(JANUARY) == []


def test_savings_analysis_against_target() -> None:
    session = make_session()
    user_id = make_user(session)
    IncomeService(session, user_id).create(
        IncomeIn(description="Salary", amount="1000", occurred_at=datetime(2025, 1, 5, 10))
    )
    savings = SavingsService(session, user_id)
    savings.create(
        SavingsEntryIn(description="Emergency fund", amount="200", occurred_at=datetime(2025, 1, 20, 10))
    )
    savings.create(
        SavingsEntryIn(description="Last year", amount="50", occurred_at=datetime(2024, 12, 20, 10))
    )

    analysis = savings.analyze(JANUARY)

    assert analysis["total_income_cents"] == 100_000
    assert analysis["total_saved_cents"] == 20_000
    assert analysis["accumulated_savings_cents"] == 25_000
    assert analysis["savings_percentage"] == 20.0
    assert analysis["target_savings_cents"] == 20_000
    assert analysis["percentage_saved"] == pytest.approx(20.0)


def test_savings_analysis_without_income() -> None:
    session = make_session()
    user_id = make_user(session)

    analysis = SavingsService(session, user_id).analyze(JANUARY)

    assert analysis["target_savings_cents"] == 0
    assert analysis["percentage_saved"] == 0.0


def test_savings_percentage_setting() -> None:
    session = make_session()
    user_id = make_user(session)
    savings = SavingsService(session, user_id)

    assert savings.savings_percentage() == 20.0
    assert savings.set_savings_percentage(35) == 35.0
    assert savings.set_savings_percentage(10) == 10.0
    assert savings.savings_percentage() == 10.0
    with pytest.raises(ValidationError):
        savings.set_savings_percentage(101)
    with pytest.raises(ValidationError):
        savings.set_savings_percentage(-0.5)


def test_investment_summary() -> None:
    session = make_session()
    user_id = make_user(session)
    investments = InvestmentService(session, user_id)
    investments.create(
        InvestmentIn(kind="ETF", name="World index", amount="300", occurred_at=datetime(2025, 1, 10, 12))
    )
    investments.create(
        InvestmentIn(kind="Crypto", name="BTC", amount="150.25", occurred_at=datetime(2024, 11, 2, 12), notes="  ")
    )

    summary = investments.summary(JANUARY)

    assert summary == {
        "total_invested_cents": 45_025,
        "invested_this_month_cents": 30_000,
        "count": 2,
    }
    assert [i.notes for i in investments.list_for_month(month_period(2024, 11))] == [None]


def test_loans_outstanding_ordered_by_reminder() -> None:
    session = make_session()
    user_id = make_user(session)
    loans = LoanService(session, user_id)
    no_reminder = loans.create(LoanIn(person="Eva", amount="20", lent_on=date(2025, 1, 2)))
    later = loans.create(
        LoanIn(person="Luis", amount="50", lent_on=date(2025, 1, 3), reminder_on=date(2025, 3, 1))
    )
    sooner = loans.create(
        LoanIn(person="Marta", amount="10", lent_on=date(2025, 1, 4), reminder_on=date(2025, 2, 1))
    )
    loans.set_repaid(later.id, True)

    assert [loan.id for loan in loans.outstanding()] == [sooner.id, no_reminder.id]
    assert len(loans.list_for_month(JANUARY)) == 3

    with pytest.raises(ValidationError):
        loans.create(
            LoanIn(person="Eva", amount="5", lent_on=date(2025, 1, 10), reminder_on=date(2025, 1, 9))
        )


def test_monthly_summary_and_available_months() -> None:
    session = make_session()
    user_id = make_user(session)
    IncomeService(session, user_id).create(
        IncomeIn(description="Salary", amount="2000", occurred_at=datetime(2025, 1, 28, 8))
    )
    ExpenseService(session, user_id).create(
        ExpenseIn(
            description="Rent",
            amount="750",
            category_id=category_id(session, user_id, "Housing"),
            occurred_at=datetime(2025, 1, 1, 9),
        )
    )
    SavingsService(session, user_id).create(
        SavingsEntryIn(description="Fund", amount="100", occurred_at=datetime(2024, 10, 5, 9))
    )

    summary = LedgerService(session, user_id).monthly_summary(JANUARY)
    assert summary == {
        "income_cents": 200_000,
        "expense_cents": 75_000,
        "savings_cents": 0,
        "investment_cents": 0,
        "balance_cents": 125_000,
    }

    months = LedgerService(session, user_id).available_months(today=date(2025, 3, 15))
    assert [p.label for p in months] == ["2025-03", "2025-01", "2024-10"]


def test_services_do_not_leak_between_users() -> None:
    session = make_session()
    ana = make_user(session, "ana")
    bob = make_user(session, "bob")
    IncomeService(session, ana).create(
        IncomeIn(description="Salary", amount="2000", occurred_at=datetime(2025, 1, 28, 8))
    )

    assert IncomeService(session, bob).list_for_month(JANUARY) == []
    assert LedgerService(session, bob).monthly_summary(JANUARY)["income_cents"] == 0
