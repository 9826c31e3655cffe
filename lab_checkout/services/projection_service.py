from __future__ import annotations

from schemas.checkout import ActingUser, Decision, EquipmentSnapshot, HistoryPage, HoldRecord
from schemas.projection import (
    ActionRow,
    HistoryRow,
    HolderRow,
    IdentityRow,
    LoadMoreRow,
    NoteRow,
    PasswordRow,
    ReturnDateRow,
    Section,
    SessionFlags,
)


PASSWORD_MASK_CHAR = "●"


def _identity_detail(snapshot: EquipmentSnapshot) -> str:
    parts = []
    if snapshot.description:
        parts.append(snapshot.description)
    elif snapshot.make and snapshot.model:
        parts.append(f"{snapshot.make} {snapshot.model}")

    if snapshot.serialNumber:
        parts.append(f"SN: {snapshot.serialNumber}")
    else:
        parts.append(f"ID: {snapshot.id}")
    return " | ".join(parts)


def _identity_section(snapshot: EquipmentSnapshot) -> Section:
    row = IdentityRow(
        equipmentId=snapshot.id,
        name=snapshot.name,
        iconKey=snapshot.iconName,
        detail=_identity_detail(snapshot),
    )
    return Section(title=None, rows=[row])


def _return_date_section(snapshot: EquipmentSnapshot, acting_user: ActingUser) -> Section:
    active = [hold for hold in snapshot.currentHolders if hold.isActive]
    rows = []
    if snapshot.kind == "Singleton" and len(active) == 1:
        hold = active[0]
        if hold.holderId == acting_user.id and hold.expectedReturnDate is not None:
            rows.append(ReturnDateRow(current=hold.expectedReturnDate))
    return Section(title="Return Date", rows=rows)


def _notes_section(snapshot: EquipmentSnapshot, session_flags: SessionFlags) -> Section:
    rows = []
    if snapshot.password:
        if session_flags.passwordRevealed:
            rows.append(PasswordRow(value=snapshot.password, revealed=True))
        else:
            rows.append(PasswordRow(value=PASSWORD_MASK_CHAR * len(snapshot.password), revealed=False))
    for title, value in (
        ("Make", snapshot.make),
        ("Model", snapshot.model),
        ("Serial Number", snapshot.serialNumber),
    ):
        if value:
            rows.append(NoteRow(title=title, value=value))
    return Section(title="Notes", rows=rows)


def _history_row(record: HoldRecord) -> HistoryRow:
    return HistoryRow(
        status="Current" if record.isActive else "Past",
        holderId=record.holderId,
        holderName=record.holderName,
        startDate=record.startDate,
        expectedReturnDate=record.expectedReturnDate,
        endDate=record.endDate,
    )


def _latest_known_hold(snapshot: EquipmentSnapshot) -> HoldRecord | None:
    if snapshot.lastCheckout is not None:
        return snapshot.lastCheckout
    active = [hold for hold in snapshot.currentHolders if hold.isActive]
    if not active:
        return None
    return max(active, key=lambda hold: hold.startDate)


def _history_section(snapshot: EquipmentSnapshot, history_page: HistoryPage | None) -> Section:
    rows = []
    if history_page is None:
        latest = _latest_known_hold(snapshot)
        if latest is not None:
            rows.append(_history_row(latest))
            rows.append(LoadMoreRow())
    else:
        rows.extend(_history_row(record) for record in history_page.records)
        if history_page.hasMore:
            rows.append(LoadMoreRow())
    return Section(title="History", rows=rows)


def _holders_section(snapshot: EquipmentSnapshot) -> Section:
    if snapshot.kind != "Collection":
        return Section(title="Members checking out", rows=[])

    counts: dict[str, int] = {}
    names: dict[str, str] = {}
    for hold in snapshot.currentHolders:
        if not hold.isActive:
            continue
        counts[hold.holderId] = counts.get(hold.holderId, 0) + 1
        names.setdefault(hold.holderId, hold.holderName)

    rows = [
        HolderRow(
            holderId=holder_id,
            holderName=names[holder_id],
            count=count,
            label=f"x{count}" if count != 1 else "",
        )
        for holder_id, count in counts.items()
    ]
    return Section(title="Members checking out", rows=rows)


def _actions_section(decision: Decision) -> Section:
    rows = []
    if decision.canReturn:
        rows.append(ActionRow(action="Return", title="Return", enabled=True))
    if decision.effectiveOccupancy != "HeldBySelf":
        rows.append(ActionRow(action="CheckOut", title="Check out", enabled=decision.canCheckout))
    return Section(title="Actions", rows=rows)


def project(
    snapshot: EquipmentSnapshot,
    decision: Decision,
    history_page: HistoryPage | None,
    session_flags: SessionFlags,
    acting_user: ActingUser,
) -> list[Section]:
    """Build the ordered display sections for one equipment item.

    Sections come out as identity, return date, notes, history, members
    checking out and actions; any section without rows is dropped. The
    output depends only on the arguments.
    """
    sections = [
        _identity_section(snapshot),
        _return_date_section(snapshot, acting_user),
        _notes_section(snapshot, session_flags),
        _history_section(snapshot, history_page),
        _holders_section(snapshot),
        _actions_section(decision),
    ]
    return [section for section in sections if section.rows]
