from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base, make_engine
from models import Category, Expense, Member, MemberSplitSnapshot, SharedExpense
from periods import month_period
from schemas import ExpenseIn, MemberIn, SharedExpenseIn, SharedExpenseUpdateIn, UserIn
from services import (
    BusinessRuleError,
    ExpenseService,
    MemberService,
    NotFoundError,
    SharedExpenseService,
    UserService,
    ValidationError,
)


def make_session() -> Session:
    engine = make_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session: Session, username: str = "ana") -> int:
    return UserService(session).create(UserIn(username=username, name="Ana")).id


def add_member(session: Session, user_id: int, name: str, income: str, owner=False):
    return MemberService(session, user_id).create(
        MemberIn(name=name, monthly_income=income, is_owner=owner)
    )


def linked_expenses(session: Session, shared_id: int) -> list[Expense]:
    return session.scalars(
        select(Expense).where(Expense.shared_expense_id == shared_id)
    ).all()


def test_dinner_split_between_two_equal_earners() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)
    add_member(session, user_id, "Luis", "1000")

    shared = SharedExpenseService(session, user_id).create(
        SharedExpenseIn(description="Dinner", total_amount="100")
    )

    snapshots = shared.snapshots
    assert [s.monthly_income_cents for s in snapshots] == [100_000, 100_000]
    assert [s.share_cents for s in snapshots] == [5_000, 5_000]
    assert [s.is_owner for s in snapshots] == [True, False]

    [expense] = linked_expenses(session, shared.id)
    assert expense.amount_cents == 5_000
    assert expense.is_shared is True
    assert expense.description == "Dinner (Parte proporcional)"
    assert expense.category.name == "Shared Expenses"
    assert expense.occurred_at == shared.occurred_at


@pytest.mark.parametrize(
    "total, incomes",
    [
        ("100", ["1000", "2000", "3000"]),
        ("0.02", ["1", "1", "1"]),
        ("1234.56", ["2500", "1799.99", "0", "310.5"]),
        ("99.99", ["7", "13"]),
    ],
)
def test_each_share_is_rounded_half_up_and_residue_is_bounded(total, incomes) -> None:
    session = make_session()
    user_id = make_user(session)
    for idx, income in enumerate(incomes):
        add_member(session, user_id, f"Member {idx}", income, owner=idx == 0)

    shared = SharedExpenseService(session, user_id).create(
        SharedExpenseIn(description="Groceries", total_amount=total)
    )

    total_cents = shared.total_cents
    income_cents = [s.monthly_income_cents for s in shared.snapshots]
    income_sum = sum(income_cents)
    for snap in shared.snapshots:
        expected = (
            Decimal(total_cents) * Decimal(snap.monthly_income_cents) / income_sum
        ).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        assert snap.share_cents == int(expected)

    share_sum = sum(s.share_cents for s in shared.snapshots)
    # Each share is off by at most half a cent.
    assert abs(share_sum - total_cents) * 2 <= len(incomes)


def test_create_snapshots_every_registered_member() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1500", owner=True)
    add_member(session, user_id, "Luis", "500")
    add_member(session, user_id, "Eva", "0")

    shared = SharedExpenseService(session, user_id).create(
        SharedExpenseIn(description="Rent", total_amount="800")
    )

    assert [s.name for s in shared.snapshots] == ["Ana", "Luis", "Eva"]
    assert [s.share_cents for s in shared.snapshots] == [60_000, 20_000, 0]


def test_create_with_zero_total_income_persists_nothing() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "0", owner=True)
    add_member(session, user_id, "Luis", "0")

    with pytest.raises(BusinessRuleError):
        SharedExpenseService(session, user_id).create(
            SharedExpenseIn(description="Dinner", total_amount="100")
        )

    assert session.scalar(select(func.count(SharedExpense.id))) == 0
    assert session.scalar(select(func.count(Expense.id))) == 0


@pytest.mark.parametrize(
    "description, total",
    [("", "100"), ("   ", "100"), ("Dinner", "0"), ("Dinner", "-5"), ("Dinner", "abc"), ("Dinner", "nan")],
)
def test_create_rejects_invalid_input(description, total) -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)

    with pytest.raises(ValidationError):
        SharedExpenseService(session, user_id).create(
            SharedExpenseIn(description=description, total_amount=total)
        )
    assert session.scalar(select(func.count(SharedExpense.id))) == 0


def test_create_without_members_is_rejected() -> None:
    session = make_session()
    user_id = make_user(session)

    with pytest.raises(ValidationError):
        SharedExpenseService(session, user_id).create(
            SharedExpenseIn(description="Dinner", total_amount="100")
        )


def test_snapshots_do_not_follow_later_member_edits() -> None:
    session = make_session()
    user_id = make_user(session)
    ana = add_member(session, user_id, "Ana", "1000", owner=True)
    add_member(session, user_id, "Luis", "1000")
    shared = SharedExpenseService(session, user_id).create(
        SharedExpenseIn(description="Dinner", total_amount="100")
    )

    MemberService(session, user_id).update(
        ana.id, MemberIn(name="Ana", monthly_income="3000", is_owner=True)
    )
    session.expire_all()

    snapshots = SharedExpenseService(session, user_id).get(shared.id).snapshots
    assert snapshots[0].monthly_income_cents == 100_000
    assert snapshots[0].share_cents == 5_000


def test_update_preserves_original_date() -> None:
    session = make_session()
    user_id = make_user(session)
    ana = add_member(session, user_id, "Ana", "1000", owner=True)
    luis = add_member(session, user_id, "Luis", "1000")
    service = SharedExpenseService(session, user_id)
    shared = service.create(SharedExpenseIn(description="Dinner", total_amount="100"))

    original = datetime(2025, 1, 15, 21, 30)
    shared.occurred_at = original
    for expense in shared.expenses:
        expense.occurred_at = original
    session.commit()

    updated = service.update(
        shared.id,
        SharedExpenseUpdateIn(
            description="Dinner out", total_amount="120", member_ids=[ana.id, luis.id]
        ),
    )

    assert updated.occurred_at == original
    [expense] = linked_expenses(session, shared.id)
    assert expense.occurred_at == original
    assert expense.amount_cents == 6_000
    assert expense.description == "Dinner out (Parte proporcional)"


def test_update_resplits_selected_subset_with_current_incomes() -> None:
    session = make_session()
    user_id = make_user(session)
    ana = add_member(session, user_id, "Ana", "1000", owner=True)
    luis = add_member(session, user_id, "Luis", "1000")
    add_member(session, user_id, "Eva", "2000")
    service = SharedExpenseService(session, user_id)
    shared = service.create(SharedExpenseIn(description="Trip", total_amount="100"))
    assert [s.share_cents for s in shared.snapshots] == [2_500, 2_500, 5_000]

    # Ana got a raise after the split was created.
    MemberService(session, user_id).update(
        ana.id, MemberIn(name="Ana", monthly_income="3000", is_owner=True)
    )

    updated = service.update(
        shared.id,
        SharedExpenseUpdateIn(
            description="Trip", total_amount="60", member_ids=[ana.id, luis.id]
        ),
    )

    # Editing an old split uses today's incomes, not the ones captured at creation.
    assert [(s.name, s.monthly_income_cents) for s in updated.snapshots] == [
        ("Ana", 300_000),
        ("Luis", 100_000),
    ]
    assert [s.share_cents for s in updated.snapshots] == [4_500, 1_500]
    assert session.scalar(select(func.count(MemberSplitSnapshot.id))) == 2
    [expense] = linked_expenses(session, shared.id)
    assert expense.amount_cents == 4_500


def test_update_without_owner_drops_linked_expense() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)
    luis = add_member(session, user_id, "Luis", "1000")
    service = SharedExpenseService(session, user_id)
    shared = service.create(SharedExpenseIn(description="Gift", total_amount="50"))

    service.update(
        shared.id,
        SharedExpenseUpdateIn(description="Gift", total_amount="50", member_ids=[luis.id]),
    )

    assert linked_expenses(session, shared.id) == []
    assert [s.share_cents for s in service.get(shared.id).snapshots] == [5_000]


def test_update_rejections_leave_split_untouched() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)
    eva = add_member(session, user_id, "Eva", "0")
    service = SharedExpenseService(session, user_id)
    shared = service.create(SharedExpenseIn(description="Dinner", total_amount="100"))

    with pytest.raises(ValidationError):
        service.update(
            shared.id,
            SharedExpenseUpdateIn(description="Dinner", total_amount="100", member_ids=[]),
        )
    with pytest.raises(BusinessRuleError):
        service.update(
            shared.id,
            SharedExpenseUpdateIn(
                description="Dinner", total_amount="100", member_ids=[eva.id]
            ),
        )
    with pytest.raises(BusinessRuleError):
        service.update(
            shared.id,
            SharedExpenseUpdateIn(
                description="Dinner", total_amount="100", member_ids=[9999]
            ),
        )

    session.expire_all()
    current = service.get(shared.id)
    assert current.total_cents == 10_000
    assert [s.share_cents for s in current.snapshots] == [10_000, 0]
    assert len(linked_expenses(session, shared.id)) == 1


def test_update_cannot_use_another_users_members() -> None:
    session = make_session()
    ana_id = make_user(session, "ana")
    bob_id = make_user(session, "bob")
    add_member(session, ana_id, "Ana", "1000", owner=True)
    bobs_member = add_member(session, bob_id, "Bob", "1000", owner=True)
    service = SharedExpenseService(session, ana_id)
    shared = service.create(SharedExpenseIn(description="Dinner", total_amount="100"))

    with pytest.raises(BusinessRuleError):
        service.update(
            shared.id,
            SharedExpenseUpdateIn(
                description="Dinner", total_amount="100", member_ids=[bobs_member.id]
            ),
        )
    with pytest.raises(NotFoundError):
        SharedExpenseService(session, bob_id).update(
            shared.id,
            SharedExpenseUpdateIn(
                description="Dinner", total_amount="100", member_ids=[bobs_member.id]
            ),
        )


def test_delete_cascades_and_reduces_monthly_expenses() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1500", owner=True)
    add_member(session, user_id, "Luis", "500")
    service = SharedExpenseService(session, user_id)
    shared = service.create(SharedExpenseIn(description="Rent", total_amount="800"))
    period = month_period(shared.occurred_at.year, shared.occurred_at.month)
    food = session.scalar(select(Category).where(Category.name == "Food"))
    ExpenseService(session, user_id).create(
        ExpenseIn(
            description="Lunch",
            amount="12.50",
            category_id=food.id,
            occurred_at=shared.occurred_at,
        )
    )
    [linked] = linked_expenses(session, shared.id)
    linked_amount = linked.amount_cents

    expenses = ExpenseService(session, user_id)
    before = expenses.total_for_period(period)
    shared_id = shared.id
    service.delete(shared_id)

    assert expenses.total_for_period(period) == before - linked_amount
    assert session.scalar(select(func.count(MemberSplitSnapshot.id))) == 0
    assert session.scalar(select(func.count(SharedExpense.id))) == 0
    assert linked_expenses(session, shared_id) == []


def test_deleting_the_portion_deletes_the_shared_expense() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)
    add_member(session, user_id, "Luis", "1000")
    shared = SharedExpenseService(session, user_id).create(
        SharedExpenseIn(description="Dinner", total_amount="100")
    )
    [portion] = linked_expenses(session, shared.id)

    ExpenseService(session, user_id).delete(portion.id)

    assert session.scalar(select(func.count(SharedExpense.id))) == 0
    assert session.scalar(select(func.count(MemberSplitSnapshot.id))) == 0
    assert session.scalar(select(func.count(Expense.id))) == 0


def test_portion_cannot_be_edited_directly() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)
    shared = SharedExpenseService(session, user_id).create(
        SharedExpenseIn(description="Dinner", total_amount="100")
    )
    [portion] = linked_expenses(session, shared.id)

    with pytest.raises(BusinessRuleError):
        ExpenseService(session, user_id).update(
            portion.id,
            ExpenseIn(
                description="Cheaper dinner",
                amount="10",
                category_id=portion.category_id,
            ),
        )


def test_other_users_cannot_delete_shared_expense() -> None:
    session = make_session()
    ana_id = make_user(session, "ana")
    bob_id = make_user(session, "bob")
    add_member(session, ana_id, "Ana", "1000", owner=True)
    shared = SharedExpenseService(session, ana_id).create(
        SharedExpenseIn(description="Dinner", total_amount="100")
    )

    with pytest.raises(NotFoundError):
        SharedExpenseService(session, bob_id).delete(shared.id)
    assert session.scalar(select(func.count(SharedExpense.id))) == 1


def test_list_for_month_returns_only_that_month() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)
    service = SharedExpenseService(session, user_id)
    older = service.create(SharedExpenseIn(description="Old", total_amount="10"))
    older.occurred_at = datetime(2024, 3, 10, 12, 0)
    session.commit()
    recent = service.create(SharedExpenseIn(description="New", total_amount="20"))

    march = service.list_for_month(month_period(2024, 3))
    assert [s.id for s in march] == [older.id]
    now = recent.occurred_at
    assert recent.id in [s.id for s in service.list_for_month(month_period(now.year, now.month))]


def test_only_one_owner_member() -> None:
    session = make_session()
    user_id = make_user(session)
    add_member(session, user_id, "Ana", "1000", owner=True)

    with pytest.raises(BusinessRuleError):
        add_member(session, user_id, "Luis", "1000", owner=True)
    assert session.scalar(select(func.count(Member.id))) == 1
