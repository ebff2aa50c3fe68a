import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import (
    COOKIE_NAME,
    SESSION_MAX_AGE_SECS,
    CredentialStore,
    default_credential_store,
    issue_session_token,
    read_session_token,
)
from database import SessionLocal
from periods import format_year_month, parse_year, resolve_month
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    CategoryIn,
    CategoryUpdate,
    FixedExpenseIn,
    LoginIn,
    TransactionIn,
)
from services import (
    AggregationError,
    BudgetService,
    CategoryService,
    FixedExpenseService,
    MetricsService,
    NotFoundError,
    ReportService,
    TransactionService,
    category_to_dict,
    cents_to_units,
    fixed_expense_to_dict,
    transaction_to_dict,
)


logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="FinTrack", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_credential_store() -> CredentialStore:
    return default_credential_store()


def current_owner(request: Request) -> str:
    owner = read_session_token(request.cookies.get(COOKIE_NAME))
    if not owner:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return owner


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(AggregationError)
def aggregation_error_handler(request: Request, exc: AggregationError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def month_from_request(request: Request) -> tuple[int, int]:
    try:
        return resolve_month(request.query_params.get("month"), today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/v1/ping")
def ping():
    return {"message": "pong"}


@app.post("/api/v1/auth/login")
def login(
    data: LoginIn,
    response: Response,
    store: CredentialStore = Depends(get_credential_store),
):
    if not store.verify(data.username, data.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    response.set_cookie(
        COOKIE_NAME,
        issue_session_token(data.username),
        max_age=SESSION_MAX_AGE_SECS,
        path="/",
        httponly=True,
        samesite="lax",
    )
    logger.info(f"login: owner={data.username}")
    return {"message": "Logged in", "user": data.username}


@app.post("/api/v1/auth/logout")
def logout(response: Response):
    response.delete_cookie(COOKIE_NAME, path="/")
    return {"message": "Logged out"}


@app.get("/api/v1/auth/me")
def check_auth(request: Request):
    owner = read_session_token(request.cookies.get(COOKIE_NAME))
    if not owner:
        return JSONResponse(status_code=401, content={"authenticated": False})
    return {"authenticated": True, "user": owner}


@app.get("/api/v1/transactions")
def list_transactions(
    owner: str = Depends(current_owner), db: Session = Depends(get_db)
):
    return [transaction_to_dict(t) for t in TransactionService(db, owner).list_all()]


@app.post("/api/v1/transactions")
def create_transaction(
    data: TransactionIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, owner).create(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_to_dict(txn)


@app.put("/api/v1/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, owner).update(transaction_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_to_dict(txn)


@app.delete("/api/v1/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, owner).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Deleted"}


@app.get("/api/v1/categories")
def list_categories(owner: str = Depends(current_owner), db: Session = Depends(get_db)):
    return [category_to_dict(c) for c in CategoryService(db, owner).list_all()]


@app.post("/api/v1/categories")
def create_category(
    data: CategoryIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, owner).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return category_to_dict(category)


@app.put("/api/v1/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryUpdate,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, owner).update(category_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return category_to_dict(category)


@app.delete("/api/v1/categories/{category_id}")
def delete_category(
    category_id: int,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, owner).delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Deleted"}


@app.get("/api/v1/stats")
def dashboard_stats(
    request: Request,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    year, month = month_from_request(request)
    return MetricsService(db, owner).dashboard(year, month)


@app.get("/api/v1/stats/category")
def category_stats(
    request: Request,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    year, month = month_from_request(request)
    return MetricsService(db, owner).category_breakdown(year, month)


@app.get("/api/v1/stats/comparison")
def monthly_comparison(
    request: Request,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    year, month = month_from_request(request)
    return MetricsService(db, owner).monthly_comparison(year, month)


@app.get("/api/v1/stats/weekly")
def weekly_habits(
    range_key: Optional[str] = Query(default=None, alias="range"),
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    return MetricsService(db, owner).weekly_habits(range_key)


@app.get("/api/v1/reports/yearly")
def yearly_report(
    request: Request,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        year = parse_year(request.query_params.get("year"), today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ReportService(db, owner).yearly_report(year)


@app.post("/api/v1/budgets")
def set_budget(
    data: BudgetIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, owner).set_budget(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "id": budget.id,
        "category": budget.category,
        "limit": cents_to_units(budget.amount_cents),
        "yearMonth": budget.year_month,
    }


@app.get("/api/v1/budgets/status")
def budget_status(
    request: Request,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    year, month = month_from_request(request)
    return BudgetService(db, owner).budget_status(format_year_month(year, month))


@app.delete("/api/v1/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    deleted = BudgetService(db, owner).delete_budget(budget_id)
    return {"message": "Deleted", "deleted": deleted}


@app.get("/api/v1/fixed-expenses")
def list_fixed_expenses(
    owner: str = Depends(current_owner), db: Session = Depends(get_db)
):
    return [fixed_expense_to_dict(t) for t in FixedExpenseService(db, owner).list_all()]


@app.post("/api/v1/fixed-expenses")
def create_fixed_expense(
    data: FixedExpenseIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        template = FixedExpenseService(db, owner).create(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return fixed_expense_to_dict(template)


@app.delete("/api/v1/fixed-expenses/{template_id}")
def delete_fixed_expense(
    template_id: int,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        FixedExpenseService(db, owner).delete(template_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Deleted"}
