import logging

from sqlalchemy import case, update

from circulation.core.errors import AlreadyReturnedError, BorrowItemNotFoundError, InvalidQuantityError
from circulation.models.models import (BorrowItem, BorrowItemStatus, BorrowTransaction, ReturnCondition, ReturnItem,
                                       ReturnTransaction, utcnow)
from circulation.services import ledger, sequence
from circulation.services.borrow import get_assignment

logger = logging.getLogger("circulation.returns")


def _get_borrow_item(db, borrow_item_id, assignment_id):
    borrow_item = (
        db.query(BorrowItem)
        .join(BorrowTransaction, BorrowItem.borrow_transaction_id == BorrowTransaction.id)
        .filter(BorrowItem.id == borrow_item_id, BorrowTransaction.assignment_id == assignment_id)
        .populate_existing()
        .first()
    )
    if borrow_item is None:
        raise BorrowItemNotFoundError(borrow_item_id)
    return borrow_item


def mark_returned(db, borrow_item_id, quantity):
    """
    Add ``quantity`` to the line's returned count in one guarded UPDATE.

    The guard is evaluated against the stored row, so two returns racing on
    the same line can never push it past its borrowed quantity.
    """
    if quantity < 1:
        raise InvalidQuantityError(f"Quantity must be at least 1, got {quantity}")
    returned = BorrowItem.returned_quantity + quantity
    stmt = (
        update(BorrowItem)
        .where(BorrowItem.id == borrow_item_id,
               BorrowItem.status == BorrowItemStatus.BORROWED,
               returned <= BorrowItem.quantity)
        .values(
            returned_quantity=returned,
            status=case((returned >= BorrowItem.quantity, BorrowItemStatus.RETURNED), else_=BorrowItem.status),
        )
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        raise InvalidQuantityError(f"Cannot return {quantity} unit(s) of BorrowItem {borrow_item_id}")
    return db.get(BorrowItem, borrow_item_id, populate_existing=True)


def close_return(uow, assignment_id, items, signature_path=None, notes=None):
    """
    Check in borrowed lines under one assignment.

    ``items`` are mappings with ``borrow_item_id``, ``condition``,
    ``quantity`` and optional ``damage_notes``/``damage_charge``. A bulk line
    may come back over several returns; it flips to Returned once its full
    quantity is in. Closing the assignment is left to the caller.
    """
    staff_id = uow.require_actor()
    db = uow.session
    if not items:
        raise InvalidQuantityError("A return transaction needs at least one item")
    assignment = get_assignment(db, assignment_id)

    now = utcnow()
    return_number = sequence.next_return_number(db, now.year)
    transaction = ReturnTransaction(
        assignment_id=assignment.id,
        return_number=return_number,
        return_date=now,
        checked_by_id=staff_id,
        checker_signature=signature_path,
        notes=notes,
    )
    db.add(transaction)
    db.flush()

    for item in items:
        uow.checkpoint()
        quantity = int(item.get("quantity", 1))
        condition = ReturnCondition(item["condition"])
        borrow_item = _get_borrow_item(db, item["borrow_item_id"], assignment.id)

        if borrow_item.status == BorrowItemStatus.RETURNED:
            raise AlreadyReturnedError(borrow_item.id)
        if quantity < 1 or quantity > borrow_item.outstanding_quantity:
            raise InvalidQuantityError(
                f"Cannot return {quantity} unit(s) of BorrowItem {borrow_item.id}: "
                f"{borrow_item.outstanding_quantity} outstanding"
            )

        mark_returned(db, borrow_item.id, quantity)
        transaction.items.append(ReturnItem(
            borrow_item_id=borrow_item.id,
            condition=condition,
            quantity=quantity,
            damage_notes=item.get("damage_notes"),
            damage_charge=item.get("damage_charge"),
        ))
        db.flush()

        ledger.release(db, borrow_item.asset_id, quantity, condition)

    uow.audit("CREATE_RETURN", "ReturnTransaction", transaction.id,
              f"Processed return {return_number} for {len(items)} items")
    logger.info(f"Staff {staff_id} recorded return {return_number} on assignment {assignment.id} "
                f"({len(items)} items)")
    return transaction
