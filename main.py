import logging
import time
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db
from errors import ErrorKind, Result, capture
from models import (
    Account,
    Bill,
    Budget,
    Category,
    CategoryType,
    Operation,
    OperationType,
    Template,
    User,
    Vendor,
)
from periods import resolve_period
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BalanceCorrectionIn,
    BillIn,
    BillPaymentIn,
    BudgetIn,
    CategoryIn,
    OperationIn,
    TemplateIn,
    UserIn,
    VendorIn,
)
from services import (
    AccountService,
    BillService,
    BudgetReport,
    BudgetService,
    CategoryService,
    OperationFilters,
    OperationService,
    TemplateService,
    UserService,
    VendorService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Walletbook")

STATUS_BY_KIND = {
    ErrorKind.validation: 400,
    ErrorKind.unauthorized: 401,
    ErrorKind.forbidden: 403,
    ErrorKind.not_found: 404,
    ErrorKind.conflict: 409,
    ErrorKind.failure: 500,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"request_handled: method={request.method} path={request.url.path} "
        f"status={response.status_code} elapsed_ms={elapsed_ms:.1f}"
    )
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        f"{'.'.join(str(part) for part in error['loc'][1:])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "kind": ErrorKind.validation.value,
            "message": "Invalid request",
            "details": details,
        },
    )


def unwrap(result: Result):
    if result.is_ok:
        return result.value
    error = result.error
    raise HTTPException(
        status_code=STATUS_BY_KIND[error.kind],
        detail={
            "kind": error.kind.value,
            "message": error.message,
            "details": error.details,
        },
    )


def current_user_id(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> int:
    user_id = int(x_user_id) if x_user_id and x_user_id.isdigit() else None
    user = unwrap(capture(UserService(db).require_enabled, user_id))
    return user.id


def user_json(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "is_enabled": user.is_enabled,
        "date_format": user.date_format,
        "time_zone": user.time_zone,
    }


def account_json(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "description": account.description,
        "type": account.type.value,
        "balance_cents": account.balance_cents,
        "version": account.version,
        "is_enabled": account.is_enabled,
    }


def category_json(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "is_enabled": category.is_enabled,
        "subcategories": [
            {"id": sub.id, "name": sub.name, "is_enabled": sub.is_enabled}
            for sub in category.subcategories
        ],
    }


def vendor_json(vendor: Vendor) -> dict:
    return {"id": vendor.id, "name": vendor.name, "is_enabled": vendor.is_enabled}


def allocation_json(entries) -> list[dict]:
    return [
        {
            "category_id": entry.category_id,
            "sub_category_id": entry.sub_category_id,
            "amount_cents": entry.amount_cents,
        }
        for entry in entries
    ]


def operation_json(operation: Operation) -> dict:
    return {
        "id": operation.id,
        "date": operation.date.isoformat(),
        "title": operation.title,
        "type": operation.type.value,
        "vendor_id": operation.vendor_id,
        "account_id": operation.account_id,
        "destination_account_id": operation.destination_account_id,
        "total_amount_cents": operation.total_amount_cents,
        "category_type": (
            operation.category_type.value if operation.category_type else None
        ),
        "comments": operation.comments,
        "allocation": allocation_json(operation.allocations),
    }


def template_json(template: Template) -> dict:
    return {
        "id": template.id,
        "title": template.title,
        "type": template.type.value,
        "vendor_id": template.vendor_id,
        "account_id": template.account_id,
        "destination_account_id": template.destination_account_id,
        "total_amount_cents": template.total_amount_cents,
        "category_type": (
            template.category_type.value if template.category_type else None
        ),
        "is_enabled": template.is_enabled,
        "allocation": allocation_json(template.allocations),
    }


def bill_json(bill: Bill) -> dict:
    return {
        "id": bill.id,
        "name": bill.name,
        "template_id": bill.template_id,
        "payment_frequency": bill.payment_frequency.value,
        "next_due_date": bill.next_due_date.isoformat(),
        "next_due_amount_cents": bill.next_due_amount_cents,
        "payment_day": bill.payment_day,
        "payment_month": bill.payment_month,
        "last_paid_date": bill.last_paid_date.isoformat() if bill.last_paid_date else None,
        "last_paid_amount_cents": bill.last_paid_amount_cents,
        "is_enabled": bill.is_enabled,
    }


def budget_json(budget: Budget) -> dict:
    return {
        "id": budget.id,
        "name": budget.name,
        "amount_cents": budget.amount_cents,
        "start_date": budget.start_date.isoformat(),
        "end_date": budget.end_date.isoformat(),
        "categories": [
            {"category_id": entry.category_id, "amount_cents": entry.amount_cents}
            for entry in budget.categories
        ],
    }


def report_json(report: BudgetReport) -> dict:
    return {
        "budget_id": report.budget_id,
        "name": report.name,
        "start_date": report.start_date.isoformat(),
        "end_date": report.end_date.isoformat(),
        "amount_cents": report.amount_cents,
        "spent_cents": report.spent_cents,
        "remaining_cents": report.remaining_cents,
        "categories": [
            {
                "category_id": line.category_id,
                "category": line.category_name,
                "budgeted_cents": line.budgeted_cents,
                "spent_cents": line.spent_cents,
                "remaining_cents": line.remaining_cents,
            }
            for line in report.categories
        ],
    }


# Users


@app.post("/api/users", status_code=201)
def create_user(data: UserIn, db: Session = Depends(get_db)):
    return user_json(unwrap(capture(UserService(db).create, data)))


@app.get("/api/users/me")
def get_me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return user_json(unwrap(capture(UserService(db).get, user_id)))


@app.put("/api/users/me")
def update_me(
    data: UserIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return user_json(unwrap(capture(UserService(db).update, user_id, data)))


@app.post("/api/users/me/disable")
def disable_me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return user_json(unwrap(capture(UserService(db).disable, user_id)))


# Accounts


@app.get("/api/accounts")
def list_accounts(
    enabled: bool = False,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    accounts = AccountService(db, user_id).list_all(enabled_only=enabled)
    return [account_json(account) for account in accounts]


@app.post("/api/accounts", status_code=201)
def create_account(
    data: AccountIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return account_json(unwrap(capture(AccountService(db, user_id).create, data)))


@app.get("/api/accounts/{account_id}")
def get_account(
    account_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return account_json(unwrap(capture(AccountService(db, user_id).get, account_id)))


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = AccountService(db, user_id)
    return account_json(unwrap(capture(service.update, account_id, data)))


@app.post("/api/accounts/{account_id}/balance")
def correct_account_balance(
    account_id: int,
    data: BalanceCorrectionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = AccountService(db, user_id)
    account = unwrap(
        capture(
            service.correct_balance,
            account_id,
            data.balance_cents,
            data.expected_balance_cents,
        )
    )
    return account_json(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    unwrap(capture(AccountService(db, user_id).delete, account_id))
    return Response(status_code=204)


# Categories


@app.get("/api/categories")
def list_categories(
    type: Optional[CategoryType] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    categories = CategoryService(db, user_id).list_all(type)
    return [category_json(category) for category in categories]


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return category_json(unwrap(capture(CategoryService(db, user_id).create, data)))


@app.get("/api/categories/{category_id}")
def get_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return category_json(unwrap(capture(CategoryService(db, user_id).get, category_id)))


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = CategoryService(db, user_id)
    return category_json(unwrap(capture(service.update, category_id, data)))


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    unwrap(capture(CategoryService(db, user_id).delete, category_id))
    return Response(status_code=204)


# Vendors


@app.get("/api/vendors")
def list_vendors(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return [vendor_json(vendor) for vendor in VendorService(db, user_id).list_all()]


@app.post("/api/vendors", status_code=201)
def create_vendor(
    data: VendorIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return vendor_json(unwrap(capture(VendorService(db, user_id).create, data)))


@app.put("/api/vendors/{vendor_id}")
def update_vendor(
    vendor_id: int,
    data: VendorIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = VendorService(db, user_id)
    return vendor_json(unwrap(capture(service.update, vendor_id, data)))


@app.delete("/api/vendors/{vendor_id}", status_code=204)
def delete_vendor(
    vendor_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    unwrap(capture(VendorService(db, user_id).delete, vendor_id))
    return Response(status_code=204)


# Operations


@app.get("/api/operations")
def list_operations(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    params = request.query_params
    try:
        period = resolve_period(params.get("period"), params.get("start"), params.get("end"))
        op_type = OperationType(params["type"]) if params.get("type") else None
        filters = OperationFilters(
            account_id=int(params["account"]) if params.get("account") else None,
            category_id=int(params["category"]) if params.get("category") else None,
            vendor_id=int(params["vendor"]) if params.get("vendor") else None,
            type=op_type,
            query=params.get("q") or None,
        )
        page = max(int(params.get("page", "1")), 1)
        limit = min(max(int(params.get("limit", "50")), 1), 100)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    offset = (page - 1) * limit
    items = OperationService(db, user_id).list(
        period, filters, limit=limit + 1, offset=offset
    )
    has_more = len(items) > limit
    return {
        "items": [operation_json(operation) for operation in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/operations", status_code=201)
def create_operation(
    data: OperationIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return operation_json(unwrap(capture(OperationService(db, user_id).create, data)))


@app.get("/api/operations/{operation_id}")
def get_operation(
    operation_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = OperationService(db, user_id)
    return operation_json(unwrap(capture(service.get, operation_id)))


@app.put("/api/operations/{operation_id}")
def update_operation(
    operation_id: int,
    data: OperationIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = OperationService(db, user_id)
    return operation_json(unwrap(capture(service.update, operation_id, data)))


@app.delete("/api/operations/{operation_id}", status_code=204)
def delete_operation(
    operation_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    unwrap(capture(OperationService(db, user_id).delete, operation_id))
    return Response(status_code=204)


# Templates


@app.get("/api/templates")
def list_templates(
    enabled: bool = False,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    templates = TemplateService(db, user_id).list_all(enabled_only=enabled)
    return [template_json(template) for template in templates]


@app.post("/api/templates", status_code=201)
def create_template(
    data: TemplateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return template_json(unwrap(capture(TemplateService(db, user_id).create, data)))


@app.get("/api/templates/{template_id}")
def get_template(
    template_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return template_json(unwrap(capture(TemplateService(db, user_id).get, template_id)))


@app.put("/api/templates/{template_id}")
def update_template(
    template_id: int,
    data: TemplateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TemplateService(db, user_id)
    return template_json(unwrap(capture(service.update, template_id, data)))


@app.post("/api/templates/{template_id}/toggle")
def toggle_template(
    template_id: int,
    enabled: bool,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TemplateService(db, user_id)
    return template_json(unwrap(capture(service.toggle, template_id, enabled)))


@app.get("/api/templates/{template_id}/operation")
def new_operation_from_template(
    template_id: int,
    on: Optional[date] = None,
    total_amount_cents: Optional[int] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TemplateService(db, user_id)
    draft = unwrap(
        capture(
            service.new_operation,
            template_id,
            operation_date=on,
            total_amount_cents=total_amount_cents,
        )
    )
    return draft.model_dump(mode="json")


@app.delete("/api/templates/{template_id}", status_code=204)
def delete_template(
    template_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    unwrap(capture(TemplateService(db, user_id).delete, template_id))
    return Response(status_code=204)


# Bills


@app.get("/api/bills")
def list_bills(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return [bill_json(bill) for bill in BillService(db, user_id).list_all()]


@app.post("/api/bills", status_code=201)
def create_bill(
    data: BillIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return bill_json(unwrap(capture(BillService(db, user_id).create, data)))


@app.get("/api/bills/{bill_id}")
def get_bill(
    bill_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return bill_json(unwrap(capture(BillService(db, user_id).get, bill_id)))


@app.put("/api/bills/{bill_id}")
def update_bill(
    bill_id: int,
    data: BillIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return bill_json(unwrap(capture(BillService(db, user_id).update, bill_id, data)))


@app.post("/api/bills/{bill_id}/pay")
def pay_bill(
    bill_id: int,
    data: BillPaymentIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return bill_json(unwrap(capture(BillService(db, user_id).pay, bill_id, data)))


@app.delete("/api/bills/{bill_id}", status_code=204)
def delete_bill(
    bill_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    unwrap(capture(BillService(db, user_id).delete, bill_id))
    return Response(status_code=204)


# Budgets


@app.get("/api/budgets")
def list_budgets(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return [budget_json(budget) for budget in BudgetService(db, user_id).list_all()]


@app.get("/api/budgets/current")
def current_budget(
    on: Optional[date] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    budget = BudgetService(db, user_id).current(on)
    if budget is None:
        raise HTTPException(status_code=404, detail="No budget covers this date")
    return budget_json(budget)


@app.post("/api/budgets", status_code=201)
def create_budget(
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return budget_json(unwrap(capture(BudgetService(db, user_id).create, data)))


@app.get("/api/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return budget_json(unwrap(capture(BudgetService(db, user_id).get, budget_id)))


@app.put("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user_id)
    return budget_json(unwrap(capture(service.update, budget_id, data)))


@app.get("/api/budgets/{budget_id}/report")
def budget_report(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return report_json(unwrap(capture(BudgetService(db, user_id).report, budget_id)))


@app.post("/api/budgets/{budget_id}/next", status_code=201)
def next_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user_id)
    return budget_json(unwrap(capture(service.create_next_period, budget_id)))


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    unwrap(capture(BudgetService(db, user_id).delete, budget_id))
    return Response(status_code=204)
