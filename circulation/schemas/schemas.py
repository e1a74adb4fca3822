from pydantic import BaseModel, ConfigDict, Field, constr, field_validator
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from circulation.models.models import AssetStatus, AssignmentStatus, BorrowItemStatus, ReturnCondition


class AssetBase(BaseModel):
    asset_code: constr(strip_whitespace=True, min_length=1)
    name: constr(strip_whitespace=True, min_length=1)
    total_stock: int = Field(default=1, ge=1)


class AssetCreate(AssetBase):
    pass


class AssetOut(AssetBase):
    id: int
    current_stock: int
    status: AssetStatus
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class UserBase(BaseModel):
    name: constr(strip_whitespace=True, min_length=1)
    email: constr(strip_whitespace=True, min_length=5)


class UserCreate(UserBase):
    # omitted means the default role; anything else needs an administrator
    role: Optional[constr(strip_whitespace=True, min_length=1)] = None


class UserOut(UserBase):
    id: int
    role: str
    joined_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AssignmentCreate(BaseModel):
    user_id: int
    academic_year: constr(min_length=1, max_length=20)
    semester: int = Field(ge=1)

    @field_validator('academic_year')
    @classmethod
    def strip_year(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('academic_year must not be blank')
        return v


class AssignmentClose(BaseModel):
    signature_path: Optional[str] = None
    notes: Optional[str] = None


class BorrowItemIn(BaseModel):
    asset_id: int
    quantity: int = Field(default=1, ge=1)


class BorrowCreate(BaseModel):
    items: List[BorrowItemIn] = Field(min_length=1)
    signature_path: Optional[str] = None
    notes: Optional[str] = None


class BorrowSign(BaseModel):
    signature_path: Optional[str] = None


class ReturnItemIn(BaseModel):
    borrow_item_id: int
    condition: ReturnCondition
    quantity: int = Field(default=1, ge=1)
    damage_notes: Optional[str] = None
    damage_charge: Optional[Decimal] = Field(default=None, ge=0)


class ReturnCreate(BaseModel):
    items: List[ReturnItemIn] = Field(min_length=1)
    signature_path: Optional[str] = None
    notes: Optional[str] = None


class BorrowItemOut(BaseModel):
    id: int
    asset_id: int
    quantity: int
    returned_quantity: int
    status: BorrowItemStatus
    checkout_inspection_id: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class BorrowTransactionOut(BaseModel):
    id: int
    assignment_id: int
    transaction_number: str
    borrow_date: datetime
    created_by_id: int
    borrower_signature: Optional[str] = None
    notes: Optional[str] = None
    is_signed: bool
    signed_at: Optional[datetime] = None
    items: List[BorrowItemOut] = []
    model_config = ConfigDict(from_attributes=True)


class ReturnItemOut(BaseModel):
    id: int
    borrow_item_id: int
    condition: ReturnCondition
    quantity: int
    damage_notes: Optional[str] = None
    damage_charge: Optional[Decimal] = None
    model_config = ConfigDict(from_attributes=True)


class ReturnTransactionOut(BaseModel):
    id: int
    assignment_id: int
    return_number: str
    return_date: datetime
    checked_by_id: int
    checker_signature: Optional[str] = None
    notes: Optional[str] = None
    items: List[ReturnItemOut] = []
    model_config = ConfigDict(from_attributes=True)


class AssignmentOut(BaseModel):
    id: int
    assignment_number: str
    user_id: int
    academic_year: str
    semester: int
    status: AssignmentStatus
    created_at: datetime
    closed_at: Optional[datetime] = None
    closed_by_id: Optional[int] = None
    closure_signature: Optional[str] = None
    closure_notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class AssignmentDetail(AssignmentOut):
    borrow_transactions: List[BorrowTransactionOut] = []
    return_transactions: List[ReturnTransactionOut] = []
    outstanding_count: int = 0
