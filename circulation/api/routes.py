from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from circulation.core import config
from circulation.core.database import get_db
from circulation.core.errors import ForbiddenError
from circulation.core.unit_of_work import UnitOfWork
from circulation.models import models
from circulation.schemas import schemas
from circulation.services import assignments, borrow, ledger, returns
from circulation.services.collaborators import RolePermissionChecker

logger = logging.getLogger("circulation.api")

router = APIRouter()


def get_actor_id(x_actor_id: Optional[str] = Header(None), db: Session = Depends(get_db)):
    """Actor id as supplied by the session provider; None when missing or unknown."""
    if not x_actor_id or not x_actor_id.strip().isdigit():
        return None
    user = db.get(models.User, int(x_actor_id))
    return user.id if user else None


def get_uow(db: Session = Depends(get_db), actor_id: Optional[int] = Depends(get_actor_id)):
    return UnitOfWork(db, actor_id=actor_id)


def get_permissions(db: Session = Depends(get_db)):
    return RolePermissionChecker(db)


# -----------------------------
# Users & assets
# -----------------------------
@router.post("/users/", response_model=schemas.UserOut)
def create_user(user_in: schemas.UserCreate, uow: UnitOfWork = Depends(get_uow),
                permissions: RolePermissionChecker = Depends(get_permissions)):
    role = user_in.role or config.DEFAULT_ROLE
    with uow:
        actor_id = uow.require_actor()
        if role != config.DEFAULT_ROLE and not permissions.has_permission(actor_id, "users", "assign_role"):
            raise ForbiddenError(f"Only administrators may create users with role {role}")
        db = uow.session
        existing = db.query(models.User).filter(models.User.email == user_in.email).first()
        if existing:
            raise HTTPException(status_code=400, detail="Email already registered")
        user = models.User(name=user_in.name, email=user_in.email, role=role)
        db.add(user)
        db.flush()
        uow.audit("CREATE_USER", "User", user.id, f"Created user {user.email} with role {role}")
    logger.info(f"Created user id={user.id} email={user.email} role={role} by {actor_id}")
    return schemas.UserOut.model_validate(user)


@router.post("/assets/", response_model=schemas.AssetOut)
def create_asset(asset_in: schemas.AssetCreate, uow: UnitOfWork = Depends(get_uow)):
    with uow:
        actor_id = uow.require_actor()
        db = uow.session
        existing = db.query(models.Asset).filter(models.Asset.asset_code == asset_in.asset_code).first()
        if existing:
            raise HTTPException(status_code=400, detail="Asset code already exists")
        asset = models.Asset(
            asset_code=asset_in.asset_code,
            name=asset_in.name,
            total_stock=asset_in.total_stock,
            current_stock=asset_in.total_stock,
            status=models.AssetStatus.AVAILABLE,
        )
        db.add(asset)
        db.flush()
        uow.audit("CREATE_ASSET", "Asset", asset.id,
                  f"Created asset {asset.asset_code} with stock {asset.total_stock}")
    logger.info(f"Created asset id={asset.id} code={asset.asset_code} stock={asset.total_stock} by {actor_id}")
    return schemas.AssetOut.model_validate(asset)


@router.get("/assets/available", response_model=List[schemas.AssetOut])
def list_available_assets(q: Optional[str] = Query(None, description="search name or asset code"),
                          skip: int = 0, limit: int = 20, db: Session = Depends(get_db)):
    return [schemas.AssetOut.model_validate(a) for a in ledger.eligible_assets(db, q=q, skip=skip, limit=limit)]


@router.get("/assets/{asset_id}", response_model=schemas.AssetOut)
def read_asset(asset_id: int, db: Session = Depends(get_db)):
    return schemas.AssetOut.model_validate(ledger.get_asset(db, asset_id))


@router.post("/assets/{asset_id}/return-to-service", response_model=schemas.AssetOut)
def return_asset_to_service(asset_id: int, uow: UnitOfWork = Depends(get_uow)):
    with uow:
        uow.require_actor()
        asset = ledger.return_to_service(uow.session, asset_id)
        uow.audit("RETURN_TO_SERVICE", "Asset", asset.id, f"Asset {asset.asset_code} back in service")
    return schemas.AssetOut.model_validate(ledger.get_asset(uow.session, asset_id))


# -----------------------------
# Assignments
# -----------------------------
def _assignment_detail(db, assignment_id):
    assignment = borrow.get_assignment(db, assignment_id)
    detail = schemas.AssignmentDetail.model_validate(assignment)
    detail.outstanding_count = len(assignments.outstanding_items(db, assignment_id))
    return detail


@router.post("/assignments/", response_model=schemas.AssignmentOut)
def open_assignment(data: schemas.AssignmentCreate, uow: UnitOfWork = Depends(get_uow)):
    with uow:
        assignment = assignments.open_assignment(uow, data.user_id, data.academic_year, data.semester)
    return schemas.AssignmentOut.model_validate(assignment)


@router.get("/assignments/{assignment_id}", response_model=schemas.AssignmentDetail)
def read_assignment(assignment_id: int, db: Session = Depends(get_db)):
    return _assignment_detail(db, assignment_id)


@router.post("/assignments/{assignment_id}/close", response_model=schemas.AssignmentOut)
def close_assignment(assignment_id: int, data: Optional[schemas.AssignmentClose] = None,
                     uow: UnitOfWork = Depends(get_uow)):
    data = data or schemas.AssignmentClose()
    with uow:
        assignment = assignments.close_assignment(uow, assignment_id, data.signature_path, data.notes)
    return schemas.AssignmentOut.model_validate(assignment)


@router.post("/assignments/{assignment_id}/reopen", response_model=schemas.AssignmentOut)
def reopen_assignment(assignment_id: int, uow: UnitOfWork = Depends(get_uow),
                      permissions: RolePermissionChecker = Depends(get_permissions)):
    with uow:
        assignment = assignments.reopen_assignment(uow, assignment_id, permissions)
    return schemas.AssignmentOut.model_validate(assignment)


@router.delete("/assignments/{assignment_id}")
def delete_assignment(assignment_id: int, uow: UnitOfWork = Depends(get_uow),
                      permissions: RolePermissionChecker = Depends(get_permissions)):
    with uow:
        number = assignments.delete_assignment(uow, assignment_id, permissions)
    return {"ok": True, "assignment_number": number}


# -----------------------------
# Borrow & return
# -----------------------------
@router.post("/assignments/{assignment_id}/borrow", response_model=schemas.BorrowTransactionOut)
def create_borrow(assignment_id: int, data: schemas.BorrowCreate, uow: UnitOfWork = Depends(get_uow)):
    with uow:
        transaction = borrow.open_borrow(
            uow, assignment_id, [(i.asset_id, i.quantity) for i in data.items],
            signature_path=data.signature_path, notes=data.notes,
        )
    return schemas.BorrowTransactionOut.model_validate(transaction)


@router.post("/assignments/{assignment_id}/returns", response_model=schemas.ReturnTransactionOut)
def create_return(assignment_id: int, data: schemas.ReturnCreate, uow: UnitOfWork = Depends(get_uow)):
    with uow:
        transaction = returns.close_return(
            uow, assignment_id, [i.model_dump() for i in data.items],
            signature_path=data.signature_path, notes=data.notes,
        )
    return schemas.ReturnTransactionOut.model_validate(transaction)


@router.post("/borrow-transactions/{transaction_id}/sign", response_model=schemas.BorrowTransactionOut)
def sign_borrow(transaction_id: int, data: Optional[schemas.BorrowSign] = None, uow: UnitOfWork = Depends(get_uow)):
    data = data or schemas.BorrowSign()
    with uow:
        transaction = borrow.sign_borrow_transaction(uow, transaction_id, data.signature_path)
    return schemas.BorrowTransactionOut.model_validate(transaction)


@router.delete("/borrow-transactions/{transaction_id}")
def delete_borrow(transaction_id: int, uow: UnitOfWork = Depends(get_uow)):
    with uow:
        number = assignments.delete_borrow_transaction(uow, transaction_id)
    return {"ok": True, "message": f"Transaction {number} deleted successfully"}
