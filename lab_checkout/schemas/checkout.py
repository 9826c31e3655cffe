from datetime import datetime
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


EquipmentKind = Literal["Singleton", "Collection"]
Occupancy = Literal["Available", "HeldBySelf", "HeldByOthers", "HeldByMixed"]


def naive_local(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class HoldRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    holderId: str
    holderName: str
    startDate: datetime
    expectedReturnDate: Optional[datetime] = None
    endDate: Optional[datetime] = None

    @field_validator("startDate", "expectedReturnDate", "endDate")
    @classmethod
    def _strip_timezone(cls, value):
        return naive_local(value)

    @model_validator(mode="after")
    def _check_dates(self):
        if self.expectedReturnDate is not None and self.expectedReturnDate < self.startDate:
            raise ValueError("expectedReturnDate must be on or after startDate.")
        if self.endDate is not None and self.endDate < self.startDate:
            raise ValueError("endDate must be on or after startDate.")
        return self

    @property
    def isActive(self) -> bool:
        return self.endDate is None


class EquipmentSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    name: str
    kind: EquipmentKind = "Singleton"
    make: Optional[str] = None
    model: Optional[str] = None
    serialNumber: Optional[str] = None
    password: Optional[str] = None
    description: Optional[str] = None
    iconName: Optional[str] = None
    currentHolders: Tuple[HoldRecord, ...] = ()
    lastCheckout: Optional[HoldRecord] = None

    @model_validator(mode="after")
    def _check_holders(self):
        if self.kind == "Singleton":
            if len(self.currentHolders) > 1:
                raise ValueError("Singleton equipment can have at most one holder.")
            for hold in self.currentHolders:
                if hold.isActive and hold.expectedReturnDate is None:
                    raise ValueError("Singleton holds require an expectedReturnDate.")
        return self

    @property
    def isCheckedOut(self) -> bool:
        return len(self.currentHolders) > 0


class HistoryPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    records: Tuple[HoldRecord, ...] = ()
    hasMore: bool = False


class ActingUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    name: Optional[str] = None


class Decision(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    canCheckout: bool
    canReturn: bool
    effectiveOccupancy: Occupancy


class CheckoutOperation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    equipmentId: str
    holderId: str
    expectedReturnDate: Optional[datetime] = None


class ReturnOperation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    equipmentId: str
    holderId: str


class UpdateOperation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    equipmentId: str
    holderId: str
    expectedReturnDate: datetime


class HistoryQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    equipmentId: str
    before: Optional[datetime] = None
    beforeHolderId: Optional[str] = None

    @field_validator("before")
    @classmethod
    def _strip_timezone(cls, value):
        return naive_local(value)


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    expectedReturnDate: Optional[datetime] = None

    @field_validator("expectedReturnDate")
    @classmethod
    def _strip_timezone(cls, value):
        return naive_local(value)


class ReturnDateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    newReturnDate: datetime

    @field_validator("newReturnDate")
    @classmethod
    def _strip_timezone(cls, value):
        return naive_local(value)
