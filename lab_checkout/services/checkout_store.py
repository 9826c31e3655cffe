from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models.checkout_models import CheckoutRecord, Equipment, Member
from schemas.checkout import (
    ActingUser,
    CheckoutOperation,
    EquipmentSnapshot,
    HistoryPage,
    HistoryQuery,
    HoldRecord,
    ReturnOperation,
    UpdateOperation,
)
from services.checkout_engine import sort_history
from services.errors import RemoteError


STORE_LOGGER = logging.getLogger("lab_checkout.store")


def _to_hold(record: CheckoutRecord) -> HoldRecord:
    return HoldRecord(
        holderId=record.MemberID,
        holderName=record.Member.Name if record.Member else record.MemberID,
        startDate=record.StartDate,
        expectedReturnDate=record.ExpectedReturnDate,
        endDate=record.EndDate,
    )


def _active_records(db: Session, equipment_id: str, member_id: str | None = None) -> list[CheckoutRecord]:
    stmt = (
        select(CheckoutRecord)
        .options(selectinload(CheckoutRecord.Member))
        .where(CheckoutRecord.EquipmentID == equipment_id)
        .where(CheckoutRecord.EndDate.is_(None))
    )
    if member_id is not None:
        stmt = stmt.where(CheckoutRecord.MemberID == member_id)
    stmt = stmt.order_by(CheckoutRecord.StartDate.asc(), CheckoutRecord.RecordID.asc())
    return list(db.execute(stmt).scalars().all())


def _load_snapshot(db: Session, equipment_id: str) -> EquipmentSnapshot:
    equipment = db.get(Equipment, equipment_id)
    if not equipment:
        raise LookupError(f"Equipment {equipment_id} not found.")

    last = db.execute(
        select(CheckoutRecord)
        .options(selectinload(CheckoutRecord.Member))
        .where(CheckoutRecord.EquipmentID == equipment_id)
        .order_by(CheckoutRecord.StartDate.desc(), CheckoutRecord.RecordID.desc())
    ).scalars().first()

    return EquipmentSnapshot(
        id=equipment.EquipmentID,
        name=equipment.Name,
        kind=equipment.Kind or "Singleton",
        make=equipment.Make,
        model=equipment.Model,
        serialNumber=equipment.SerialNumber,
        password=equipment.Password,
        description=equipment.Description,
        iconName=equipment.IconName,
        currentHolders=tuple(_to_hold(record) for record in _active_records(db, equipment_id)),
        lastCheckout=_to_hold(last) if last else None,
    )


def fetch_snapshot(db: Session, equipment_id: str) -> EquipmentSnapshot:
    try:
        return _load_snapshot(db, equipment_id)
    except SQLAlchemyError as exc:
        STORE_LOGGER.error("Snapshot fetch failed equipment=%s error=%s", equipment_id, exc)
        raise RemoteError("Could not load equipment.") from exc
    except ValidationError as exc:
        STORE_LOGGER.error("Stored equipment state is inconsistent equipment=%s error=%s", equipment_id, exc)
        raise RemoteError("Stored equipment state is inconsistent.") from exc


def fetch_history_page(db: Session, query: HistoryQuery, limit: int) -> HistoryPage:
    page_size = max(int(limit), 1)
    stmt = (
        select(CheckoutRecord)
        .options(selectinload(CheckoutRecord.Member))
        .where(CheckoutRecord.EquipmentID == query.equipmentId)
    )
    if query.before is not None and query.beforeHolderId is not None:
        stmt = stmt.where(
            or_(
                CheckoutRecord.StartDate < query.before,
                and_(CheckoutRecord.StartDate == query.before, CheckoutRecord.MemberID > query.beforeHolderId),
            )
        )
    elif query.before is not None:
        stmt = stmt.where(CheckoutRecord.StartDate < query.before)
    stmt = stmt.order_by(CheckoutRecord.StartDate.desc(), CheckoutRecord.MemberID.asc()).limit(page_size + 1)

    try:
        rows = list(db.execute(stmt).scalars().all())
        records = sort_history(_to_hold(record) for record in rows[:page_size])
    except (SQLAlchemyError, ValidationError) as exc:
        STORE_LOGGER.error("History fetch failed equipment=%s error=%s", query.equipmentId, exc)
        raise RemoteError("Could not retrieve the check-out history.") from exc

    return HistoryPage(records=records, hasMore=len(rows) > page_size)


def submit_checkout(db: Session, operation: CheckoutOperation, now: datetime | None = None) -> EquipmentSnapshot:
    try:
        equipment = db.get(Equipment, operation.equipmentId)
        if not equipment:
            raise RemoteError(f"Equipment {operation.equipmentId} not found.")
        # The caller's snapshot may be stale; re-check inside this transaction.
        if (equipment.Kind or "Singleton") == "Singleton" and _active_records(db, operation.equipmentId):
            STORE_LOGGER.warning(
                "Checkout rejected equipment=%s member=%s reason=concurrent_checkout",
                operation.equipmentId,
                operation.holderId,
            )
            raise RemoteError(f"{equipment.Name} was checked out by another member.")

        db.add(
            CheckoutRecord(
                EquipmentID=operation.equipmentId,
                MemberID=operation.holderId,
                StartDate=now or datetime.now(),
                ExpectedReturnDate=operation.expectedReturnDate,
                UpdatedDate=datetime.now(),
            )
        )
        equipment.UpdatedDate = datetime.now()
        db.flush()
        return _load_snapshot(db, operation.equipmentId)
    except (SQLAlchemyError, ValidationError) as exc:
        STORE_LOGGER.error("Checkout failed equipment=%s error=%s", operation.equipmentId, exc)
        raise RemoteError("Could not check out equipment.") from exc


def submit_return(db: Session, operation: ReturnOperation, now: datetime | None = None) -> EquipmentSnapshot:
    try:
        records = _active_records(db, operation.equipmentId, operation.holderId)
        if not records:
            raise RemoteError("No active checkout to return.")
        record = records[-1]
        record.EndDate = now or datetime.now()
        record.UpdatedDate = datetime.now()
        db.flush()
        return _load_snapshot(db, operation.equipmentId)
    except (SQLAlchemyError, ValidationError) as exc:
        STORE_LOGGER.error("Return failed equipment=%s error=%s", operation.equipmentId, exc)
        raise RemoteError("Could not return equipment.") from exc


def submit_return_date_update(db: Session, operation: UpdateOperation) -> EquipmentSnapshot:
    try:
        records = _active_records(db, operation.equipmentId, operation.holderId)
        if not records:
            raise RemoteError("No active checkout to update.")
        record = records[-1]
        record.ExpectedReturnDate = operation.expectedReturnDate
        record.UpdatedDate = datetime.now()
        db.flush()
        return _load_snapshot(db, operation.equipmentId)
    except (SQLAlchemyError, ValidationError) as exc:
        STORE_LOGGER.error("Return date update failed equipment=%s error=%s", operation.equipmentId, exc)
        raise RemoteError("Could not update the return date.") from exc


def current_acting_user(db: Session, member_id: str) -> ActingUser | None:
    try:
        member = db.get(Member, member_id)
    except SQLAlchemyError as exc:
        raise RemoteError("Could not resolve member.") from exc
    if not member:
        return None
    return ActingUser(id=member.MemberID, name=member.Name)
