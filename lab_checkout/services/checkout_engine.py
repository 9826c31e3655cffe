from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from schemas.checkout import (
    ActingUser,
    CheckoutOperation,
    Decision,
    EquipmentSnapshot,
    HistoryPage,
    HistoryQuery,
    HoldRecord,
    ReturnOperation,
    UpdateOperation,
    naive_local,
)
from services.errors import ConflictError, InvalidInput, PermissionDenied


CHECKOUT_LOGGER = logging.getLogger("lab_checkout.checkout")


def _active_holds(snapshot: EquipmentSnapshot) -> list[HoldRecord]:
    return [hold for hold in snapshot.currentHolders if hold.isActive]


def _occupancy(snapshot: EquipmentSnapshot, acting_user: ActingUser) -> str:
    holders = {hold.holderId for hold in _active_holds(snapshot)}
    if not holders:
        return "Available"
    if holders == {acting_user.id}:
        return "HeldBySelf"
    if acting_user.id not in holders:
        return "HeldByOthers"
    return "HeldByMixed"


def evaluate(snapshot: EquipmentSnapshot, acting_user: ActingUser) -> Decision:
    can_return = any(hold.holderId == acting_user.id for hold in _active_holds(snapshot))
    if snapshot.kind == "Collection":
        can_checkout = True
    else:
        can_checkout = not snapshot.isCheckedOut
    return Decision(
        canCheckout=can_checkout,
        canReturn=can_return,
        effectiveOccupancy=_occupancy(snapshot, acting_user),
    )


def request_checkout(
    snapshot: EquipmentSnapshot,
    acting_user: ActingUser,
    expected_return_date: datetime | None,
    now: datetime | None = None,
) -> CheckoutOperation:
    """Validate a checkout against the freshest snapshot.

    Singleton equipment needs a return date and must be free; Collection
    equipment may be checked out by any number of members and the return
    date is optional. The snapshot is never modified.
    """
    current_time = naive_local(now) or datetime.now()
    expected_return_date = naive_local(expected_return_date)
    if snapshot.kind == "Singleton" and expected_return_date is None:
        CHECKOUT_LOGGER.warning(
            "Checkout refused equipment=%s member=%s reason=missing_return_date", snapshot.id, acting_user.id
        )
        raise InvalidInput(f"A return date is required to check out {snapshot.name}.")
    if expected_return_date is not None and expected_return_date < current_time:
        CHECKOUT_LOGGER.warning(
            "Checkout refused equipment=%s member=%s reason=return_date_in_past", snapshot.id, acting_user.id
        )
        raise InvalidInput("expectedReturnDate must not be in the past.")
    if snapshot.kind == "Singleton" and snapshot.isCheckedOut:
        CHECKOUT_LOGGER.warning(
            "Checkout refused equipment=%s member=%s reason=already_checked_out", snapshot.id, acting_user.id
        )
        raise ConflictError(f"{snapshot.name} is already checked out.")

    return CheckoutOperation(
        equipmentId=snapshot.id,
        holderId=acting_user.id,
        expectedReturnDate=expected_return_date,
    )


def request_return(snapshot: EquipmentSnapshot, acting_user: ActingUser) -> ReturnOperation:
    if not evaluate(snapshot, acting_user).canReturn:
        CHECKOUT_LOGGER.warning(
            "Return refused equipment=%s member=%s reason=not_a_holder", snapshot.id, acting_user.id
        )
        raise PermissionDenied(f"You have not checked out {snapshot.name}.")
    return ReturnOperation(equipmentId=snapshot.id, holderId=acting_user.id)


def request_return_date_update(
    snapshot: EquipmentSnapshot,
    acting_user: ActingUser,
    new_date: datetime,
    now: datetime | None = None,
) -> UpdateOperation:
    # Collection holders share the pool, so per-record edits are not offered.
    active = _active_holds(snapshot)
    holds_item = (
        snapshot.kind == "Singleton"
        and len(active) == 1
        and active[0].holderId == acting_user.id
    )
    if not holds_item:
        CHECKOUT_LOGGER.warning(
            "Return date update refused equipment=%s member=%s reason=not_sole_holder", snapshot.id, acting_user.id
        )
        raise PermissionDenied(f"Only the member holding {snapshot.name} can change its return date.")
    new_date = naive_local(new_date)
    if new_date < (naive_local(now) or datetime.now()):
        raise InvalidInput("newReturnDate must not be in the past.")
    return UpdateOperation(equipmentId=snapshot.id, holderId=acting_user.id, expectedReturnDate=new_date)


def sort_history(records: Iterable[HoldRecord]) -> tuple[HoldRecord, ...]:
    ordered = sorted(records, key=lambda record: record.holderId)
    ordered.sort(key=lambda record: record.startDate, reverse=True)
    return tuple(ordered)


def _completeness(record: HoldRecord) -> tuple:
    return (
        record.endDate is not None,
        record.endDate or datetime.min,
        record.expectedReturnDate or datetime.min,
        record.holderName,
    )


def merge_history_page(existing_page: HistoryPage | None, new_page: HistoryPage) -> HistoryPage:
    """Union two pages keyed on (holderId, startDate).

    When both pages carry the same hold, the more complete copy is kept
    (closed over active, then the later end and return dates), so the
    result does not depend on the order pages arrive in.
    """
    merged: dict[tuple[str, datetime], HoldRecord] = {}
    existing_records = existing_page.records if existing_page is not None else ()
    for record in (*existing_records, *new_page.records):
        key = (record.holderId, record.startDate)
        current = merged.get(key)
        if current is None or _completeness(record) > _completeness(current):
            merged[key] = record
    return HistoryPage(records=sort_history(merged.values()), hasMore=new_page.hasMore)


def request_history_page(snapshot: EquipmentSnapshot, existing_page: HistoryPage | None) -> HistoryQuery | None:
    if existing_page is None:
        return HistoryQuery(equipmentId=snapshot.id)
    if not existing_page.hasMore or not existing_page.records:
        return None
    # Cursor is the last record in (startDate desc, holderId asc) order.
    last = sort_history(existing_page.records)[-1]
    return HistoryQuery(equipmentId=snapshot.id, before=last.startDate, beforeHolderId=last.holderId)
