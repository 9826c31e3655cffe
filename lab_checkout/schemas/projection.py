from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SessionFlags(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    passwordRevealed: bool = False


class IdentityRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["Identity"] = "Identity"
    equipmentId: str
    name: str
    iconKey: Optional[str] = None
    detail: str


class ReturnDateRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ReturnDate"] = "ReturnDate"
    current: datetime


class PasswordRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["Password"] = "Password"
    value: str
    revealed: bool


class NoteRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["Note"] = "Note"
    title: str
    value: str


class HistoryRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["History"] = "History"
    status: Literal["Current", "Past"]
    holderId: str
    holderName: str
    startDate: datetime
    expectedReturnDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class LoadMoreRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["LoadMore"] = "LoadMore"


class HolderRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["Holder"] = "Holder"
    holderId: str
    holderName: str
    count: int
    label: str


class ActionRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["Action"] = "Action"
    action: Literal["Return", "CheckOut"]
    title: str
    enabled: bool


RowDescriptor = Annotated[
    Union[IdentityRow, ReturnDateRow, PasswordRow, NoteRow, HistoryRow, LoadMoreRow, HolderRow, ActionRow],
    Field(discriminator="kind"),
]


class Section(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    rows: List[RowDescriptor] = []
