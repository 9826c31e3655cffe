from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class Member(Base):
    __tablename__ = "Members"

    MemberID = Column(String(64), primary_key=True)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255))
    CreatedDate = Column(DateTime, server_default=func.now())

    CheckoutRecords = relationship("CheckoutRecord", back_populates="Member")


class Equipment(Base):
    __tablename__ = "Equipment"

    EquipmentID = Column(String(64), primary_key=True)
    Name = Column(String(255), nullable=False)
    Kind = Column(String(20), nullable=False, default="Singleton")
    Make = Column(String(255))
    Model = Column(String(255))
    SerialNumber = Column(String(255))
    Password = Column(String(255))
    Description = Column(String(1000))
    IconName = Column(String(100))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    CheckoutRecords = relationship(
        "CheckoutRecord",
        back_populates="Equipment",
        order_by="CheckoutRecord.StartDate",
    )


class CheckoutRecord(Base):
    __tablename__ = "CheckoutRecords"

    RecordID = Column(Integer, primary_key=True, autoincrement=True)
    EquipmentID = Column(String(64), ForeignKey("Equipment.EquipmentID"), nullable=False)
    MemberID = Column(String(64), ForeignKey("Members.MemberID"), nullable=False)
    StartDate = Column(DateTime, nullable=False)
    ExpectedReturnDate = Column(DateTime)
    EndDate = Column(DateTime)
    UpdatedDate = Column(DateTime, server_default=func.now())

    Equipment = relationship("Equipment", back_populates="CheckoutRecords")
    Member = relationship("Member", back_populates="CheckoutRecords")


class AuditLog(Base):
    __tablename__ = "AuditLog"

    AuditID = Column(Integer, primary_key=True, autoincrement=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(String(64), nullable=False)
    Action = Column(String(50), nullable=False)
    Details = Column(String(1000))
    UserID = Column(String(64))
    CreatedAt = Column(DateTime, server_default=func.now())
