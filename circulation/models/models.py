import enum
from datetime import datetime, timezone

from sqlalchemy import (Column, Integer, String, Text, Numeric, DateTime, Boolean, ForeignKey, Index,
                        CheckConstraint, Enum)
from sqlalchemy.orm import relationship

from circulation.core.database import Base


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AssetStatus(str, enum.Enum):
    AVAILABLE = "Available"
    RESERVED = "Reserved"
    BORROWED = "Borrowed"
    MAINTENANCE = "Maintenance"
    BROKEN = "Broken"
    LOST = "Lost"
    RETIRED = "Retired"


# statuses that keep an asset out of the borrowable list
UNAVAILABLE_STATUSES = (
    AssetStatus.RESERVED,
    AssetStatus.BORROWED,
    AssetStatus.MAINTENANCE,
    AssetStatus.BROKEN,
    AssetStatus.LOST,
    AssetStatus.RETIRED,
)


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"


class BorrowItemStatus(str, enum.Enum):
    BORROWED = "Borrowed"
    RETURNED = "Returned"


class ReturnCondition(str, enum.Enum):
    GOOD = "Good"
    DAMAGED = "Damaged"
    LOST = "Lost"


def _enum(cls):
    return Enum(cls, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e])


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(String, nullable=False, default="Staff")
    joined_at = Column(DateTime, default=utcnow)

    assignments = relationship("Assignment", back_populates="user", foreign_keys="Assignment.user_id")


class Asset(Base):
    __tablename__ = "assets"
    __table_args__ = (
        CheckConstraint("total_stock >= 1", name="ck_assets_total_stock_positive"),
        CheckConstraint("current_stock >= 0 AND current_stock <= total_stock", name="ck_assets_stock_bounds"),
    )
    id = Column(Integer, primary_key=True, index=True)
    asset_code = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False, index=True)
    total_stock = Column(Integer, nullable=False, default=1)
    current_stock = Column(Integer, nullable=False, default=1, index=True)
    status = Column(_enum(AssetStatus), nullable=False, default=AssetStatus.AVAILABLE, index=True)
    created_at = Column(DateTime, default=utcnow)

    borrow_items = relationship("BorrowItem", back_populates="asset")
    inspections = relationship("Inspection", back_populates="asset")

    @property
    def is_unique(self):
        return self.total_stock == 1


Index('ix_assets_name_code', Asset.name, Asset.asset_code)


class Inspection(Base):
    __tablename__ = "inspections"
    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    inspection_date = Column(DateTime, default=utcnow, index=True)
    overall_condition = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    asset = relationship("Asset", back_populates="inspections")


class Assignment(Base):
    __tablename__ = "assignments"
    id = Column(Integer, primary_key=True, index=True)
    assignment_number = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    academic_year = Column(String, nullable=False, index=True)
    semester = Column(Integer, nullable=False)
    status = Column(_enum(AssignmentStatus), nullable=False, default=AssignmentStatus.ACTIVE, index=True)
    created_at = Column(DateTime, default=utcnow)
    closed_at = Column(DateTime, nullable=True)
    closed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    closure_signature = Column(String, nullable=True)
    closure_notes = Column(Text, nullable=True)

    user = relationship("User", back_populates="assignments", foreign_keys=[user_id])
    borrow_transactions = relationship("BorrowTransaction", back_populates="assignment",
                                       order_by="BorrowTransaction.id")
    return_transactions = relationship("ReturnTransaction", back_populates="assignment",
                                       order_by="ReturnTransaction.id")


class BorrowTransaction(Base):
    __tablename__ = "borrow_transactions"
    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False, index=True)
    transaction_number = Column(String, unique=True, nullable=False, index=True)
    borrow_date = Column(DateTime, default=utcnow)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    borrower_signature = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    is_signed = Column(Boolean, default=False, nullable=False)
    signed_at = Column(DateTime, nullable=True)

    assignment = relationship("Assignment", back_populates="borrow_transactions")
    items = relationship("BorrowItem", back_populates="transaction", order_by="BorrowItem.id")


class BorrowItem(Base):
    __tablename__ = "borrow_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_borrow_items_quantity_positive"),
        CheckConstraint("returned_quantity >= 0 AND returned_quantity <= quantity",
                        name="ck_borrow_items_returned_bounds"),
    )
    id = Column(Integer, primary_key=True, index=True)
    borrow_transaction_id = Column(Integer, ForeignKey("borrow_transactions.id"), nullable=False, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    returned_quantity = Column(Integer, nullable=False, default=0)
    status = Column(_enum(BorrowItemStatus), nullable=False, default=BorrowItemStatus.BORROWED, index=True)
    checkout_inspection_id = Column(Integer, ForeignKey("inspections.id"), nullable=True)

    transaction = relationship("BorrowTransaction", back_populates="items")
    asset = relationship("Asset", back_populates="borrow_items")
    checkout_inspection = relationship("Inspection")
    return_items = relationship("ReturnItem", back_populates="borrow_item")

    @property
    def outstanding_quantity(self):
        return self.quantity - (self.returned_quantity or 0)


class ReturnTransaction(Base):
    __tablename__ = "return_transactions"
    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False, index=True)
    return_number = Column(String, unique=True, nullable=False, index=True)
    return_date = Column(DateTime, default=utcnow)
    checked_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    checker_signature = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    assignment = relationship("Assignment", back_populates="return_transactions")
    items = relationship("ReturnItem", back_populates="transaction", order_by="ReturnItem.id")


class ReturnItem(Base):
    __tablename__ = "return_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_return_items_quantity_positive"),
    )
    id = Column(Integer, primary_key=True, index=True)
    return_transaction_id = Column(Integer, ForeignKey("return_transactions.id"), nullable=False, index=True)
    borrow_item_id = Column(Integer, ForeignKey("borrow_items.id"), nullable=False, index=True)
    condition = Column(_enum(ReturnCondition), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    damage_notes = Column(Text, nullable=True)
    damage_charge = Column(Numeric(10, 2), nullable=True)

    transaction = relationship("ReturnTransaction", back_populates="items")
    borrow_item = relationship("BorrowItem", back_populates="return_items")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"
    id = Column(Integer, primary_key=True)
    scope = Column(String(64), unique=True, nullable=False)
    current_value = Column(Integer, nullable=False, default=0)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False, index=True)
    entity = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    details = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
