import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import LedgerError
from models import TransactionType
from periods import Period, local_today, resolve_period
from scheduler import SchedulerManager
from schemas import (
    AllocationIn,
    BudgetIn,
    BudgetLinkOut,
    BudgetOut,
    BudgetUpdateIn,
    CategoryIn,
    CategoryOut,
    SpendingCreatedOut,
    SpendingIn,
    TransactionIn,
    TransactionOut,
)
from services import (
    BudgetService,
    BudgetWithMetrics,
    CategoryService,
    DashboardService,
    DashboardSummary,
    ReconciliationService,
    SweepResult,
    TransactionFilters,
    TransactionService,
)

logging.basicConfig(level=get_settings().log_level)

app = FastAPI(title="Budget Ledger")

STATUS_BY_CODE = {
    "validation_error": 400,
    "not_found": 404,
    "type_mismatch": 422,
    "insufficient_funds": 422,
    "store_error": 500,
    "aggregation_failed": 500,
}


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, 400)
    message = exc.message
    if status_code >= 500:
        logging.error(f"{request.method} {request.url.path} failed: {exc}")
        message = "The ledger could not complete the request"
    return JSONResponse(
        status_code=status_code, content={"error": exc.code, "message": message}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'][1:])}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": details or "Invalid request"},
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def period_from_request(request: Request) -> Period:
    return resolve_period(
        request.query_params.get("period"),
        request.query_params.get("start"),
        request.query_params.get("end"),
    )


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).create(data)


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def rename_category(category_id: int, data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).rename(category_id, data.name)


@app.post("/api/seed")
def seed_categories(db: Session = Depends(get_db)):
    categories = CategoryService(db).seed_defaults()
    return {
        "success": True,
        "categories": [CategoryOut.model_validate(c) for c in categories],
    }


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    request: Request,
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    min_amount_cents: Optional[int] = None,
    max_amount_cents: Optional[int] = None,
    db: Session = Depends(get_db),
):
    period = None
    if request.query_params.get("start") or request.query_params.get("period"):
        period = period_from_request(request)
    filters = TransactionFilters(
        type=type,
        category_id=category_id,
        min_amount_cents=min_amount_cents,
        max_amount_cents=max_amount_cents,
    )
    return TransactionService(db).list(period, filters)


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    return TransactionService(db).create(data)


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    return TransactionService(db).get(transaction_id)


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    return TransactionService(db).update(transaction_id, data)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    TransactionService(db).delete(transaction_id)
    return Response(status_code=204)


@app.get("/api/budgets", response_model=list[BudgetWithMetrics])
def list_budgets(request: Request, db: Session = Depends(get_db)):
    return BudgetService(db).list_budgets(period_from_request(request))


@app.post("/api/budgets", response_model=BudgetOut)
def upsert_budget(data: BudgetIn, db: Session = Depends(get_db)):
    return BudgetService(db).upsert_budget(data)


@app.get(
    "/api/budgets/by-category/{category_id}",
    response_model=Optional[BudgetWithMetrics],
)
def budget_for_category(
    category_id: int,
    on: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
):
    return BudgetService(db).find_budget_for_category(category_id, on or local_today())


@app.get("/api/budgets/{budget_id}", response_model=BudgetWithMetrics)
def get_budget(budget_id: int, db: Session = Depends(get_db)):
    return BudgetService(db).get_with_metrics(budget_id)


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(budget_id: int, data: BudgetUpdateIn, db: Session = Depends(get_db)):
    return BudgetService(db).update_budget(budget_id, data)


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    BudgetService(db).delete_budget(budget_id)
    return Response(status_code=204)


@app.get("/api/budget-allocations", response_model=list[BudgetLinkOut])
def list_allocations(budget_id: Optional[int] = None, db: Session = Depends(get_db)):
    return ReconciliationService(db).list_allocations(budget_id)


@app.post("/api/budget-allocations", response_model=BudgetLinkOut, status_code=201)
def create_allocation(data: AllocationIn, db: Session = Depends(get_db)):
    service = ReconciliationService(db)
    allocation = service.create_allocation(
        data.budget_id, data.transaction_id, data.amount_cents
    )
    return service.get_allocation(allocation.id)


@app.get("/api/budget-allocations/{allocation_id}", response_model=BudgetLinkOut)
def get_allocation(allocation_id: int, db: Session = Depends(get_db)):
    return ReconciliationService(db).get_allocation(allocation_id)


@app.delete("/api/budget-allocations/{allocation_id}", status_code=204)
def delete_allocation(allocation_id: int, db: Session = Depends(get_db)):
    ReconciliationService(db).delete_allocation(allocation_id)
    return Response(status_code=204)


@app.get("/api/budget-spending", response_model=list[BudgetLinkOut])
def list_spending(budget_id: Optional[int] = None, db: Session = Depends(get_db)):
    return ReconciliationService(db).list_spending(budget_id)


@app.post("/api/budget-spending", response_model=SpendingCreatedOut, status_code=201)
def create_spending(data: SpendingIn, db: Session = Depends(get_db)):
    service = ReconciliationService(db)
    spending = service.create_spending(
        data.budget_id, data.transaction_id, data.amount_cents
    )
    spending = service.get_spending(spending.id)
    metrics = BudgetService(db).compute_metrics(spending.budget)
    link = BudgetLinkOut.model_validate(spending)
    return SpendingCreatedOut(
        **link.model_dump(),
        budget_remaining_cents=metrics.remaining_cents,
        overspent=metrics.remaining_cents < 0,
    )


@app.get(
    "/api/budget-spending/by-transaction/{transaction_id}",
    response_model=Optional[BudgetLinkOut],
)
def spending_for_transaction(transaction_id: int, db: Session = Depends(get_db)):
    service = ReconciliationService(db)
    spending = service.find_spending_by_transaction(transaction_id)
    if spending is None:
        return None
    return service.get_spending(spending.id)


@app.get("/api/budget-spending/{spending_id}", response_model=BudgetLinkOut)
def get_spending(spending_id: int, db: Session = Depends(get_db)):
    return ReconciliationService(db).get_spending(spending_id)


@app.delete("/api/budget-spending/{spending_id}", status_code=204)
def delete_spending(spending_id: int, db: Session = Depends(get_db)):
    ReconciliationService(db).delete_spending(spending_id)
    return Response(status_code=204)


@app.get("/api/dashboard", response_model=DashboardSummary)
def dashboard(request: Request, db: Session = Depends(get_db)):
    return DashboardService(db).summarize(period_from_request(request))


@app.post("/api/maintenance/reconcile", response_model=SweepResult)
def reconcile(db: Session = Depends(get_db)):
    result = ReconciliationService(db).sweep()
    logging.info(
        f"Reconciliation sweep relinked {result.relinked} spending rows, "
        f"removed {result.removed_spending} spending and "
        f"{result.removed_allocations} allocation rows"
    )
    return result
