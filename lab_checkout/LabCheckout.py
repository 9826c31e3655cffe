import logging
import os
from datetime import datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

load_dotenv()

from db.deps import get_checkout_db
from models.checkout_models import AuditLog
from schemas.checkout import ActingUser, CheckoutRequest, EquipmentSnapshot, HistoryPage, HistoryQuery, ReturnDateRequest
from schemas.projection import SessionFlags
from services.checkout_engine import (
    evaluate,
    merge_history_page,
    request_checkout,
    request_history_page,
    request_return,
    request_return_date_update,
)
from services.checkout_store import (
    current_acting_user,
    fetch_history_page,
    fetch_snapshot,
    submit_checkout,
    submit_return,
    submit_return_date_update,
)
from services.errors import CheckoutError, ConflictError, InvalidInput, PermissionDenied, RemoteError
from services.projection_service import project

app = FastAPI()


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)

HISTORY_PAGE_SIZE = int(os.environ.get("HISTORY_PAGE_SIZE") or "20")
HISTORY_MAX_PAGES = int(os.environ.get("HISTORY_MAX_PAGES") or "10")
CHECKOUT_LOGGER = logging.getLogger("lab_checkout.checkout")

ERROR_STATUS_CODES = {
    InvalidInput: 400,
    PermissionDenied: 403,
    ConflictError: 409,
    RemoteError: 502,
}


def log_audit(db: Session, entity_type: str, entity_id: str, action: str, details: str | None = None, user_id: str | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )


def _checkout_http_error(exc: CheckoutError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _resolve_acting_user(db: Session, member_id: str | None) -> ActingUser:
    candidate = (member_id or "").strip()
    if not candidate:
        raise HTTPException(status_code=401, detail="X-Member-ID header is required.")
    try:
        acting_user = current_acting_user(db, candidate)
    except RemoteError as exc:
        raise _checkout_http_error(exc) from exc
    if not acting_user:
        raise HTTPException(status_code=401, detail="Unknown member.")
    return acting_user


def _fetch_snapshot_or_404(db: Session, equipment_id: str) -> EquipmentSnapshot:
    try:
        return fetch_snapshot(db, equipment_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Equipment not found") from exc
    except RemoteError as exc:
        raise _checkout_http_error(exc) from exc


def _load_history(db: Session, snapshot: EquipmentSnapshot, pages: int) -> HistoryPage | None:
    history = None
    for _ in range(min(max(pages, 0), HISTORY_MAX_PAGES)):
        query = request_history_page(snapshot, history)
        if query is None:
            break
        history = merge_history_page(history, fetch_history_page(db, query, HISTORY_PAGE_SIZE))
    return history


def _detail_payload(
    db: Session,
    snapshot: EquipmentSnapshot,
    acting_user: ActingUser,
    history_pages: int = 0,
    password_revealed: bool = False,
) -> dict:
    decision = evaluate(snapshot, acting_user)
    try:
        history = _load_history(db, snapshot, history_pages)
    except RemoteError as exc:
        raise _checkout_http_error(exc) from exc
    sections = project(snapshot, decision, history, SessionFlags(passwordRevealed=password_revealed), acting_user)
    return {
        "equipment": snapshot.model_dump(mode="json"),
        "decision": decision.model_dump(mode="json"),
        "sections": [section.model_dump(mode="json") for section in sections],
    }


def _commit_or_502(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        CHECKOUT_LOGGER.error("Commit failed error=%s", exc)
        raise HTTPException(status_code=502, detail="Could not save changes.") from exc


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_checkout_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/equipment/{equipment_id}")
def get_equipment(
    equipment_id: str,
    db: Session = Depends(get_checkout_db),
    x_member_id: str | None = Header(None, alias="X-Member-ID"),
):
    acting_user = _resolve_acting_user(db, x_member_id)
    snapshot = _fetch_snapshot_or_404(db, equipment_id)
    return {
        "equipment": snapshot.model_dump(mode="json"),
        "decision": evaluate(snapshot, acting_user).model_dump(mode="json"),
    }


@app.get("/api/equipment/{equipment_id}/sections")
def get_equipment_sections(
    equipment_id: str,
    password_revealed: bool = Query(False, alias="passwordRevealed"),
    history_pages: int = Query(0, alias="historyPages", ge=0),
    db: Session = Depends(get_checkout_db),
    x_member_id: str | None = Header(None, alias="X-Member-ID"),
):
    acting_user = _resolve_acting_user(db, x_member_id)
    snapshot = _fetch_snapshot_or_404(db, equipment_id)
    return _detail_payload(db, snapshot, acting_user, history_pages, password_revealed)


@app.get("/api/equipment/{equipment_id}/history")
def get_equipment_history(
    equipment_id: str,
    before: datetime | None = Query(None),
    before_holder_id: str | None = Query(None, alias="beforeHolderId"),
    db: Session = Depends(get_checkout_db),
):
    snapshot = _fetch_snapshot_or_404(db, equipment_id)
    query = HistoryQuery(equipmentId=snapshot.id, before=before, beforeHolderId=before_holder_id)
    try:
        page = fetch_history_page(db, query, HISTORY_PAGE_SIZE)
    except RemoteError as exc:
        raise _checkout_http_error(exc) from exc
    return page.model_dump(mode="json")


@app.post("/api/equipment/{equipment_id}/checkout")
def checkout_equipment(
    equipment_id: str,
    payload: CheckoutRequest,
    history_pages: int = Query(0, alias="historyPages", ge=0),
    db: Session = Depends(get_checkout_db),
    x_member_id: str | None = Header(None, alias="X-Member-ID"),
):
    acting_user = _resolve_acting_user(db, x_member_id)
    snapshot = _fetch_snapshot_or_404(db, equipment_id)
    try:
        operation = request_checkout(snapshot, acting_user, payload.expectedReturnDate)
        updated = submit_checkout(db, operation)
    except CheckoutError as exc:
        db.rollback()
        raise _checkout_http_error(exc) from exc

    details = f"Return by {operation.expectedReturnDate}" if operation.expectedReturnDate else "No return date"
    log_audit(db, "Equipment", equipment_id, "CheckOut", details, user_id=acting_user.id)
    _commit_or_502(db)
    CHECKOUT_LOGGER.info("Checked out equipment=%s member=%s", equipment_id, acting_user.id)
    return _detail_payload(db, updated, acting_user, history_pages)


@app.post("/api/equipment/{equipment_id}/return")
def return_equipment(
    equipment_id: str,
    history_pages: int = Query(0, alias="historyPages", ge=0),
    db: Session = Depends(get_checkout_db),
    x_member_id: str | None = Header(None, alias="X-Member-ID"),
):
    acting_user = _resolve_acting_user(db, x_member_id)
    snapshot = _fetch_snapshot_or_404(db, equipment_id)
    try:
        operation = request_return(snapshot, acting_user)
        updated = submit_return(db, operation)
    except CheckoutError as exc:
        db.rollback()
        raise _checkout_http_error(exc) from exc

    log_audit(db, "Equipment", equipment_id, "Return", "Equipment returned", user_id=acting_user.id)
    _commit_or_502(db)
    CHECKOUT_LOGGER.info("Returned equipment=%s member=%s", equipment_id, acting_user.id)
    return _detail_payload(db, updated, acting_user, history_pages)


@app.post("/api/equipment/{equipment_id}/return-date")
def update_return_date(
    equipment_id: str,
    payload: ReturnDateRequest,
    history_pages: int = Query(0, alias="historyPages", ge=0),
    db: Session = Depends(get_checkout_db),
    x_member_id: str | None = Header(None, alias="X-Member-ID"),
):
    acting_user = _resolve_acting_user(db, x_member_id)
    snapshot = _fetch_snapshot_or_404(db, equipment_id)
    try:
        operation = request_return_date_update(snapshot, acting_user, payload.newReturnDate)
        updated = submit_return_date_update(db, operation)
    except CheckoutError as exc:
        db.rollback()
        raise _checkout_http_error(exc) from exc

    log_audit(
        db,
        "Equipment",
        equipment_id,
        "UpdateReturnDate",
        f"Return date set to {payload.newReturnDate}",
        user_id=acting_user.id,
    )
    _commit_or_502(db)
    CHECKOUT_LOGGER.info("Return date updated equipment=%s member=%s", equipment_id, acting_user.id)
    return _detail_payload(db, updated, acting_user, history_pages)
