"""
Asset ledger: the only code that writes ``Asset.current_stock`` and
``Asset.status``.

An asset circulates in one of two modes. A *unique* asset (``total_stock ==
1``) is a single serialized unit; its stock follows from its status (1 when
Available, 0 otherwise). A *bulk* asset only moves ``current_stock``; its
status is informational. ``circulation_of`` turns a row into the matching
variant and every transition is computed on the variant.

Writes are single conditional UPDATE statements guarded by the state the
transition was computed from. An affected-row count of zero means another
transaction got there first, and the call fails instead of overdrawing.
"""
import logging
from dataclasses import dataclass
from typing import Union

from sqlalchemy import case, func, or_, update

from circulation.core.errors import (AssetNotFoundError, InsufficientStockError, InvalidQuantityError,
                                     InvalidStateError)
from circulation.models.models import (Asset, AssetStatus, BorrowItem, BorrowItemStatus, ReturnCondition,
                                       UNAVAILABLE_STATUSES)

logger = logging.getLogger("circulation.ledger")


@dataclass(frozen=True)
class UniqueCirculation:
    status: AssetStatus

    @property
    def current_stock(self):
        return 1 if self.status == AssetStatus.AVAILABLE else 0


@dataclass(frozen=True)
class BulkCirculation:
    total_stock: int
    current_stock: int
    status: AssetStatus


Circulation = Union[UniqueCirculation, BulkCirculation]

_OUTCOME_STATUS = {
    ReturnCondition.GOOD: AssetStatus.AVAILABLE,
    ReturnCondition.DAMAGED: AssetStatus.MAINTENANCE,
    ReturnCondition.LOST: AssetStatus.LOST,
}


def circulation_of(asset) -> Circulation:
    if asset.total_stock == 1:
        return UniqueCirculation(status=AssetStatus(asset.status))
    return BulkCirculation(total_stock=asset.total_stock, current_stock=asset.current_stock,
                           status=AssetStatus(asset.status))


def get_asset(db, asset_id):
    asset = db.get(Asset, asset_id, populate_existing=True)
    if asset is None:
        raise AssetNotFoundError(asset_id)
    return asset


def _write(db, asset_id, guards, values):
    stmt = (
        update(Asset)
        .where(Asset.id == asset_id, *guards)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def reserve(db, asset_id, quantity):
    """Take ``quantity`` units out of circulation for a pending loan."""
    if quantity < 1:
        raise InvalidQuantityError(f"Quantity must be at least 1, got {quantity}")
    asset = get_asset(db, asset_id)
    circ = circulation_of(asset)

    if isinstance(circ, UniqueCirculation):
        ok = quantity == 1 and circ.status == AssetStatus.AVAILABLE and _write(
            db, asset_id,
            [Asset.status == AssetStatus.AVAILABLE, Asset.current_stock == 1],
            {"current_stock": 0, "status": AssetStatus.RESERVED},
        )
    else:
        # bulk status is informational: only stock gates a reservation
        ok = _write(db, asset_id, [Asset.current_stock >= quantity],
                    {"current_stock": Asset.current_stock - quantity})
    if not ok:
        raise InsufficientStockError(asset_id, quantity, circ.current_stock, name=asset.name)
    return get_asset(db, asset_id)


def release(db, asset_id, quantity, outcome):
    """Bring ``quantity`` units back according to the return ``outcome``."""
    if quantity < 1:
        raise InvalidQuantityError(f"Quantity must be at least 1, got {quantity}")
    outcome = ReturnCondition(outcome)
    asset = get_asset(db, asset_id)
    circ = circulation_of(asset)

    if isinstance(circ, UniqueCirculation):
        if quantity != 1:
            raise InvalidQuantityError(f"Unique asset {asset.asset_code} cannot be released {quantity} times")
        status = _OUTCOME_STATUS[outcome]
        ok = _write(db, asset_id, [Asset.current_stock == 0],
                    {"status": status, "current_stock": 1 if status == AssetStatus.AVAILABLE else 0})
    elif outcome == ReturnCondition.LOST:
        # lost units never come back into stock
        ok = _write(db, asset_id, [], {"status": AssetStatus.LOST})
    else:
        if outcome == ReturnCondition.DAMAGED:
            status = AssetStatus.MAINTENANCE
        else:
            status = case(
                (Asset.status.in_([AssetStatus.BORROWED, AssetStatus.RESERVED]), AssetStatus.AVAILABLE),
                else_=Asset.status,
            )
        ok = _write(db, asset_id, [Asset.current_stock + quantity <= Asset.total_stock],
                    {"current_stock": Asset.current_stock + quantity, "status": status})
    if not ok:
        raise InvalidQuantityError(
            f"Releasing {quantity} unit(s) of {asset.asset_code} would exceed its total stock"
        )
    return get_asset(db, asset_id)


def restore(db, asset_id, quantity):
    """Undo a reservation that never turned into a loan."""
    if quantity < 1:
        raise InvalidQuantityError(f"Quantity must be at least 1, got {quantity}")
    asset = get_asset(db, asset_id)
    if isinstance(circulation_of(asset), UniqueCirculation):
        ok = quantity == 1 and _write(db, asset_id, [Asset.current_stock == 0],
                                      {"current_stock": 1, "status": AssetStatus.AVAILABLE})
    else:
        ok = _write(db, asset_id, [Asset.current_stock + quantity <= Asset.total_stock],
                    {"current_stock": Asset.current_stock + quantity})
    if not ok:
        raise InvalidQuantityError(
            f"Restoring {quantity} unit(s) of {asset.asset_code} would exceed its total stock"
        )
    return get_asset(db, asset_id)


def confirm(db, asset_id):
    """Signature received: a reserved unique unit is now borrowed."""
    asset = get_asset(db, asset_id)
    if isinstance(circulation_of(asset), UniqueCirculation):
        _write(db, asset_id, [Asset.status == AssetStatus.RESERVED], {"status": AssetStatus.BORROWED})
        asset = get_asset(db, asset_id)
    return asset


def return_to_service(db, asset_id):
    asset = get_asset(db, asset_id)
    circ = circulation_of(asset)
    if isinstance(circ, UniqueCirculation):
        allowed = (AssetStatus.MAINTENANCE, AssetStatus.BROKEN)
        values = {"status": AssetStatus.AVAILABLE, "current_stock": 1}
    else:
        allowed = (AssetStatus.MAINTENANCE,)
        values = {"status": AssetStatus.AVAILABLE}
    if circ.status not in allowed or not _write(db, asset_id, [Asset.status == circ.status], values):
        raise InvalidStateError(f"Asset {asset.asset_code} in status {circ.status.value} cannot return to service")
    return get_asset(db, asset_id)


def eligible_assets(db, q=None, skip=0, limit=20):
    query = db.query(Asset).filter(Asset.status.notin_(UNAVAILABLE_STATUSES), Asset.current_stock > 0)
    if q:
        like_q = f"%{q}%"
        query = query.filter(or_(Asset.name.ilike(like_q), Asset.asset_code.ilike(like_q)))
    return query.order_by(Asset.name).offset(skip).limit(limit).all()


# -----------------------------
# Integrity scan
# -----------------------------
def find_inconsistent_assets(db):
    """
    Unique assets whose row breaks the ledger rules, as ``(asset, reason)``.

    ``stock_mismatch``: stock disagrees with status.
    ``stuck``: Reserved/Borrowed with no outstanding borrow item.
    """
    open_loans = (
        db.query(BorrowItem.asset_id, func.count(BorrowItem.id).label("n"))
        .filter(BorrowItem.status == BorrowItemStatus.BORROWED)
        .group_by(BorrowItem.asset_id)
        .subquery()
    )
    rows = (
        db.query(Asset, open_loans.c.n)
        .outerjoin(open_loans, open_loans.c.asset_id == Asset.id)
        .filter(Asset.total_stock == 1)
        .order_by(Asset.id)
        .all()
    )
    found = []
    for asset, n in rows:
        if asset.status in (AssetStatus.RESERVED, AssetStatus.BORROWED) and not n:
            found.append((asset, "stuck"))
        elif asset.current_stock != circulation_of(asset).current_stock:
            found.append((asset, "stock_mismatch"))
    return found


def repair_inconsistent_assets(db):
    repaired = []
    for asset, reason in find_inconsistent_assets(db):
        if reason == "stuck":
            values = {"status": AssetStatus.AVAILABLE, "current_stock": 1}
        else:
            values = {"current_stock": circulation_of(asset).current_stock}
        _write(db, asset.id, [], values)
        logger.info(f"Repaired asset {asset.asset_code} ({reason})")
        repaired.append((get_asset(db, asset.id), reason))
    return repaired
