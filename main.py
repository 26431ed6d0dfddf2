import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import SessionLocal, init_db
from models import BudgetDirection, Notification, Transaction, TransactionDirection
from periods import parse_period_kind
from scheduler import SchedulerManager
from schemas import BudgetIn, ScannedBillIn, TransactionIn
from services import (
    BudgetService,
    NotificationService,
    TransactionService,
    WriteResult,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Alerts")


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
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"database_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Database error"})


def _date_param(request: Request, name: str) -> Optional[date]:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name} date") from exc


def serialize_transaction(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "direction": txn.direction.value,
        "origin": txn.origin.value,
        "amount_cents": txn.amount_cents,
        "category": txn.category,
        "description": txn.description,
        "splits": [
            {
                "category": split.category,
                "subtotal_cents": split.subtotal_cents,
                "is_non_essential": split.is_non_essential,
            }
            for split in txn.splits
        ],
    }


def serialize_notification(notification: Notification) -> dict[str, object]:
    return {
        "id": notification.id,
        "transaction_id": notification.transaction_id,
        "message": notification.message,
        "read": notification.read,
        "created_at": notification.created_at.isoformat(),
    }


def _write_response(result: WriteResult) -> JSONResponse:
    return JSONResponse(
        status_code=201,
        content={
            "transaction": serialize_transaction(result.transaction),
            "notification": serialize_notification(result.notification)
            if result.notification
            else None,
        },
    )


@app.post("/api/transactions")
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        result = TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _write_response(result)


@app.post("/api/transactions/scanned")
def create_scanned_transaction(data: ScannedBillIn, db: Session = Depends(get_db)):
    try:
        result = TransactionService(db).create_scanned(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _write_response(result)


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    direction = None
    direction_param = request.query_params.get("direction")
    if direction_param and direction_param != "all":
        try:
            direction = TransactionDirection(direction_param)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="Invalid transaction direction"
            ) from exc
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
        limit = min(max(int(request.query_params.get("limit", "10")), 1), 100)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid pagination") from exc

    items = TransactionService(db).list(
        direction=direction,
        category=request.query_params.get("category"),
        start=_date_param(request, "start"),
        end=_date_param(request, "end"),
        limit=limit + 1,
        offset=(page - 1) * limit,
    )
    has_more = len(items) > limit
    return {
        "items": [serialize_transaction(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/budgets")
def save_budget(data: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).upsert(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(
        status_code=201,
        content={
            "id": budget.id,
            "category": budget.category,
            "amount_cents": budget.amount_cents,
            "period_kind": budget.period_kind.value,
            "direction": budget.direction.value,
        },
    )


@app.get("/api/budgets")
def list_budgets(request: Request, db: Session = Depends(get_db)):
    period_param = request.query_params.get("period")
    direction_param = request.query_params.get("direction")
    try:
        period_kind = parse_period_kind(period_param) if period_param else None
        direction = BudgetDirection(direction_param) if direction_param else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    budgets = BudgetService(db).list_budgets(
        period_kind=period_kind, direction=direction
    )
    return [
        {
            "id": b.id,
            "category": b.category,
            "amount_cents": b.amount_cents,
            "period_kind": b.period_kind.value,
            "direction": b.direction.value,
        }
        for b in budgets
    ]


@app.get("/api/budgets/overview")
def budget_overview(request: Request, db: Session = Depends(get_db)):
    try:
        period_kind = parse_period_kind(request.query_params.get("period"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BudgetService(db).overview(period_kind, _date_param(request, "date"))


@app.get("/api/budgets/comparison")
def budget_comparison(request: Request, db: Session = Depends(get_db)):
    try:
        return BudgetService(db).comparison(
            request.query_params.get("start"),
            request.query_params.get("end"),
            request.query_params.get("category"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/budgets/{budget_id}")
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/notifications")
def list_notifications(db: Session = Depends(get_db)):
    service = NotificationService(db)
    return [serialize_notification(n) for n in service.list_recent()]


@app.post("/api/notifications/refresh")
def refresh_notifications(db: Session = Depends(get_db)):
    service = NotificationService(db)
    created = service.reconcile()
    return {
        "created": created,
        "notifications": [serialize_notification(n) for n in service.list_recent()],
    }


@app.post("/api/notifications/{notification_id}/read")
def mark_notification_read(notification_id: int, db: Session = Depends(get_db)):
    try:
        notification = NotificationService(db).mark_read(notification_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return serialize_notification(notification)


@app.patch("/api/notifications/toggle")
def toggle_notifications(db: Session = Depends(get_db)):
    enabled = NotificationService(db).toggle_enabled()
    return {"notifications_enabled": enabled}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
