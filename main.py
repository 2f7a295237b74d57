import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from amounts import cents_to_units
from auth import (
    AuthenticationError,
    CurrentUser,
    PermissionDenied,
    ensure_admin,
    issue_token,
    resolve_current_user,
)
from database import SessionLocal
from models import Expense, InstallmentPlan, SharedExpense
from periods import Period, resolve_month
from rate_limit import RateLimiter, build_rate_limiter
from scheduler import SchedulerManager
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
    SavingsSettingsIn,
    SharedExpenseIn,
    SharedExpenseUpdateIn,
    UserIn,
)
from services import (
    BusinessRuleError,
    CategoryService,
    ExpenseService,
    IncomeService,
    InstallmentService,
    InvestmentService,
    LedgerService,
    LoanService,
    MemberService,
    NotFoundError,
    SavingsService,
    SharedExpenseService,
    UserService,
    ValidationError,
    local_now,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Household Ledger")

GENERIC_FAILURE = "Something went wrong, please try again"


class RateLimitExceeded(Exception):
    pass


rate_limiter = build_rate_limiter()
scheduler_manager = SchedulerManager(rate_limiter)


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": message}
    )


@app.exception_handler(ValidationError)
@app.exception_handler(BusinessRuleError)
async def handle_rejected(_request: Request, exc: ValueError):
    return _failure(400, str(exc))


@app.exception_handler(NotFoundError)
async def handle_not_found(_request: Request, exc: NotFoundError):
    return _failure(404, str(exc))


@app.exception_handler(RequestValidationError)
async def handle_invalid_request(_request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return _failure(400, "Invalid request")
    first = errors[0]
    field = ".".join(
        str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")
    )
    message = first.get("msg", "Invalid value")
    return _failure(400, f"{field}: {message}" if field else message)


@app.exception_handler(AuthenticationError)
async def handle_unauthenticated(_request: Request, exc: AuthenticationError):
    return _failure(401, str(exc))


@app.exception_handler(PermissionDenied)
async def handle_forbidden(_request: Request, exc: PermissionDenied):
    return _failure(403, str(exc))


@app.exception_handler(RateLimitExceeded)
async def handle_rate_limited(_request: Request, _exc: RateLimitExceeded):
    return _failure(429, "Too many requests, please try again in a moment")


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception(f"request_failed: path={request.url.path}", exc_info=exc)
    return _failure(500, GENERIC_FAILURE)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    header = request.headers.get("Authorization", "")
    token = header[7:].strip() if header.lower().startswith("bearer ") else None
    return resolve_current_user(db, token)


def rate_limited_user(
    user: CurrentUser = Depends(get_current_user),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> CurrentUser:
    if not limiter.check(user.id):
        logger.info(f"rate_limited: user_id={user.id}")
        raise RateLimitExceeded()
    return user


def admin_user(user: CurrentUser = Depends(rate_limited_user)) -> CurrentUser:
    return ensure_admin(user)


def period_from_query(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
) -> Period:
    try:
        return resolve_month(month, year, today=local_now().date())
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _ok(**payload) -> dict[str, object]:
    return {"success": True, **payload}


def _expense_json(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "description": expense.description,
        "amount": cents_to_units(expense.amount_cents),
        "amount_cents": expense.amount_cents,
        "date": expense.occurred_at.isoformat(),
        "category": expense.category.name if expense.category else None,
        "category_id": expense.category_id,
        "is_shared": expense.is_shared,
        "shared_expense_id": expense.shared_expense_id,
        "source_installment_payment_id": expense.source_installment_payment_id,
    }


def _shared_expense_json(shared: SharedExpense) -> dict[str, object]:
    return {
        "id": shared.id,
        "description": shared.description,
        "total_amount": cents_to_units(shared.total_cents),
        "total_cents": shared.total_cents,
        "date": shared.occurred_at.isoformat(),
        "members": [
            {
                "name": snap.name,
                "monthly_income": cents_to_units(snap.monthly_income_cents),
                "is_owner": snap.is_owner,
                "share": cents_to_units(snap.share_cents),
                "share_cents": snap.share_cents,
            }
            for snap in shared.snapshots
        ],
    }


def _plan_json(plan: InstallmentPlan) -> dict[str, object]:
    remaining = plan.total_installments - plan.installments_paid
    return {
        "id": plan.id,
        "description": plan.description,
        "total_amount": cents_to_units(plan.total_cents),
        "total_installments": plan.total_installments,
        "installment_amount": cents_to_units(plan.installment_cents),
        "installment_cents": plan.installment_cents,
        "start_date": plan.start_date.isoformat(),
        "installments_paid": plan.installments_paid,
        "remaining_installments": remaining,
        "remaining_cents": remaining * plan.installment_cents,
        "completed": remaining == 0,
    }


@app.get("/api/me")
def api_me(user: CurrentUser = Depends(get_current_user)):
    return {"id": user.id, "username": user.username, "name": user.name, "role": user.role}


@app.put("/api/me")
def api_update_profile(
    data: ProfileIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    updated = UserService(db).update_profile(user.id, data)
    # Tokens carry the username, so a rename needs a fresh one.
    return _ok(token=issue_token(updated))


@app.get("/api/admin/users")
def api_admin_users(
    admin: CurrentUser = Depends(admin_user), db: Session = Depends(get_db)
):
    return {
        "items": [
            {
                "id": u.id,
                "username": u.username,
                "name": u.name,
                "role": u.role.value,
                "created_at": u.created_at.isoformat(),
                "expense_count": expenses,
                "income_count": incomes,
            }
            for u, expenses, incomes in UserService(db).list_with_activity()
        ]
    }


@app.post("/api/admin/users")
def api_admin_create_user(
    data: UserIn,
    admin: CurrentUser = Depends(admin_user),
    db: Session = Depends(get_db),
):
    created = UserService(db).create(data)
    logger.info(f"admin_user_created: id={created.id} by={admin.id}")
    return _ok(id=created.id, token=issue_token(created))


@app.delete("/api/admin/users/{user_id}")
def api_admin_delete_user(
    user_id: int,
    admin: CurrentUser = Depends(admin_user),
    db: Session = Depends(get_db),
):
    UserService(db).delete(user_id, acting_user_id=admin.id)
    return _ok()


@app.get("/api/categories")
def api_categories(
    user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    return {
        "items": [
            {"id": c.id, "name": c.name, "color": c.color, "icon": c.icon}
            for c in CategoryService(db, user.id).list_all()
        ]
    }


@app.post("/api/categories")
def api_create_category(
    data: CategoryIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user.id).create(data)
    return _ok(id=category.id)


@app.get("/api/members")
def api_members(
    user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    return {
        "items": [
            {
                "id": m.id,
                "name": m.name,
                "monthly_income": cents_to_units(m.monthly_income_cents),
                "is_owner": m.is_owner,
            }
            for m in MemberService(db, user.id).list_all()
        ]
    }


@app.post("/api/members")
def api_create_member(
    data: MemberIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    member = MemberService(db, user.id).create(data)
    return _ok(id=member.id)


@app.put("/api/members/{member_id}")
def api_update_member(
    member_id: int,
    data: MemberIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    MemberService(db, user.id).update(member_id, data)
    return _ok()


@app.delete("/api/members/{member_id}")
def api_delete_member(
    member_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    MemberService(db, user.id).delete(member_id)
    return _ok()


@app.get("/api/shared-expenses")
def api_shared_expenses(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = SharedExpenseService(db, user.id).list_for_month(period)
    return {"period": period.label, "items": [_shared_expense_json(s) for s in items]}


@app.post("/api/shared-expenses")
def api_create_shared_expense(
    data: SharedExpenseIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    SharedExpenseService(db, user.id).create(data)
    return _ok()


@app.put("/api/shared-expenses/{shared_expense_id}")
def api_update_shared_expense(
    shared_expense_id: int,
    data: SharedExpenseUpdateIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    SharedExpenseService(db, user.id).update(shared_expense_id, data)
    return _ok()


@app.delete("/api/shared-expenses/{shared_expense_id}")
def api_delete_shared_expense(
    shared_expense_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    SharedExpenseService(db, user.id).delete(shared_expense_id)
    return _ok()


@app.get("/api/installments")
def api_installments(
    user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    return {"items": [_plan_json(p) for p in InstallmentService(db, user.id).list_all()]}


@app.post("/api/installments")
def api_create_installment_plan(
    data: InstallmentPlanIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    plan = InstallmentService(db, user.id).create(data)
    return _ok(id=plan.id)


@app.post("/api/installments/{plan_id}/pay")
def api_pay_installment(
    plan_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    InstallmentService(db, user.id).pay(plan_id)
    return _ok()


@app.post("/api/installments/{plan_id}/revert")
def api_revert_installment(
    plan_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    InstallmentService(db, user.id).revert(plan_id)
    return _ok()


@app.delete("/api/installments/{plan_id}")
def api_delete_installment_plan(
    plan_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    InstallmentService(db, user.id).delete(plan_id)
    return _ok()


@app.get("/api/expenses")
def api_expenses(
    period: Period = Depends(period_from_query),
    category: Optional[list[int]] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = ExpenseService(db, user.id).list_for_month(period, category)
    return {"period": period.label, "items": [_expense_json(e) for e in items]}


@app.post("/api/expenses")
def api_create_expense(
    data: ExpenseIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user.id).create(data)
    return _ok(id=expense.id)


@app.put("/api/expenses/{expense_id}")
def api_update_expense(
    expense_id: int,
    data: ExpenseIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user.id).update(expense_id, data)
    return _ok()


@app.delete("/api/expenses/{expense_id}")
def api_delete_expense(
    expense_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user.id).delete(expense_id)
    return _ok()


@app.get("/api/incomes")
def api_incomes(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = IncomeService(db, user.id).list_for_month(period)
    return {
        "period": period.label,
        "items": [
            {
                "id": i.id,
                "description": i.description,
                "amount": cents_to_units(i.amount_cents),
                "date": i.occurred_at.isoformat(),
            }
            for i in items
        ],
    }


@app.post("/api/incomes")
def api_create_income(
    data: IncomeIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    income = IncomeService(db, user.id).create(data)
    return _ok(id=income.id)


@app.put("/api/incomes/{income_id}")
def api_update_income(
    income_id: int,
    data: IncomeIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    IncomeService(db, user.id).update(income_id, data)
    return _ok()


@app.delete("/api/incomes/{income_id}")
def api_delete_income(
    income_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    IncomeService(db, user.id).delete(income_id)
    return _ok()


@app.get("/api/savings")
def api_savings(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = SavingsService(db, user.id).list_for_month(period)
    return {
        "period": period.label,
        "items": [
            {
                "id": s.id,
                "description": s.description,
                "amount": cents_to_units(s.amount_cents),
                "date": s.occurred_at.isoformat(),
            }
            for s in items
        ],
    }


@app.post("/api/savings")
def api_create_savings_entry(
    data: SavingsEntryIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    entry = SavingsService(db, user.id).create(data)
    return _ok(id=entry.id)


@app.delete("/api/savings/{entry_id}")
def api_delete_savings_entry(
    entry_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    SavingsService(db, user.id).delete(entry_id)
    return _ok()


@app.get("/api/savings/analysis")
def api_savings_analysis(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    analysis = SavingsService(db, user.id).analyze(period)
    return {
        "period": period.label,
        "total_income": cents_to_units(analysis["total_income_cents"]),
        "total_saved": cents_to_units(analysis["total_saved_cents"]),
        "accumulated_savings": cents_to_units(analysis["accumulated_savings_cents"]),
        "target_savings": cents_to_units(analysis["target_savings_cents"]),
        "savings_percentage": analysis["savings_percentage"],
        "percentage_saved": round(analysis["percentage_saved"], 2),
    }


@app.get("/api/savings/settings")
def api_savings_settings(
    user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    return {"savings_percentage": SavingsService(db, user.id).savings_percentage()}


@app.put("/api/savings/settings")
def api_update_savings_settings(
    data: SavingsSettingsIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    value = SavingsService(db, user.id).set_savings_percentage(data.savings_percentage)
    return _ok(savings_percentage=value)


@app.get("/api/investments")
def api_investments(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = InvestmentService(db, user.id).list_for_month(period)
    return {
        "period": period.label,
        "items": [
            {
                "id": inv.id,
                "kind": inv.kind,
                "name": inv.name,
                "amount": cents_to_units(inv.amount_cents),
                "date": inv.occurred_at.isoformat(),
                "notes": inv.notes,
            }
            for inv in items
        ],
    }


@app.get("/api/investments/summary")
def api_investment_summary(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    summary = InvestmentService(db, user.id).summary(period)
    return {
        "period": period.label,
        "total_invested": cents_to_units(summary["total_invested_cents"]),
        "invested_this_month": cents_to_units(summary["invested_this_month_cents"]),
        "count": summary["count"],
    }


@app.post("/api/investments")
def api_create_investment(
    data: InvestmentIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    investment = InvestmentService(db, user.id).create(data)
    return _ok(id=investment.id)


@app.delete("/api/investments/{investment_id}")
def api_delete_investment(
    investment_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    InvestmentService(db, user.id).delete(investment_id)
    return _ok()


def _loan_json(loan) -> dict[str, object]:
    return {
        "id": loan.id,
        "person": loan.person,
        "amount": cents_to_units(loan.amount_cents),
        "lent_on": loan.lent_on.isoformat(),
        "reminder_on": loan.reminder_on.isoformat() if loan.reminder_on else None,
        "repaid": loan.repaid,
        "notes": loan.notes,
    }


@app.get("/api/loans")
def api_loans(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = LoanService(db, user.id).list_for_month(period)
    return {"period": period.label, "items": [_loan_json(loan) for loan in items]}


@app.get("/api/loans/outstanding")
def api_outstanding_loans(
    user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    return {"items": [_loan_json(loan) for loan in LoanService(db, user.id).outstanding()]}


@app.post("/api/loans")
def api_create_loan(
    data: LoanIn,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    loan = LoanService(db, user.id).create(data)
    return _ok(id=loan.id)


@app.post("/api/loans/{loan_id}/repaid")
def api_mark_loan_repaid(
    loan_id: int,
    repaid: bool = Query(default=True),
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    LoanService(db, user.id).set_repaid(loan_id, repaid)
    return _ok()


@app.delete("/api/loans/{loan_id}")
def api_delete_loan(
    loan_id: int,
    user: CurrentUser = Depends(rate_limited_user),
    db: Session = Depends(get_db),
):
    LoanService(db, user.id).delete(loan_id)
    return _ok()


@app.get("/api/summary")
def api_summary(
    period: Period = Depends(period_from_query),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    summary = LedgerService(db, user.id).monthly_summary(period)
    return {
        "period": period.label,
        **{key.removesuffix("_cents"): cents_to_units(value) for key, value in summary.items()},
    }


@app.get("/api/available-months")
def api_available_months(
    user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    months = LedgerService(db, user.id).available_months()
    return {
        "items": [{"year": p.year, "month": p.month, "label": p.label} for p in months]
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
