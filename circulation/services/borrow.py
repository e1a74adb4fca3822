import logging

from circulation.core.errors import (AssignmentNotFoundError, BorrowTransactionNotFoundError, InvalidQuantityError,
                                     InvalidStateError, SignedTransactionImmutableError)
from circulation.models.models import (Assignment, AssignmentStatus, BorrowItem, BorrowItemStatus,
                                       BorrowTransaction, utcnow)
from circulation.services import ledger, sequence
from circulation.services.collaborators import latest_inspection

logger = logging.getLogger("circulation.borrow")


def get_assignment(db, assignment_id):
    assignment = db.get(Assignment, assignment_id)
    if assignment is None:
        raise AssignmentNotFoundError(assignment_id)
    return assignment


def open_borrow(uow, assignment_id, items, signature_path=None, notes=None):
    """
    Lend ``items`` (``(asset_id, quantity)`` pairs) under one assignment.

    Every asset is reserved in the ledger inside the caller's unit of work;
    the first failing item aborts the whole transaction.
    """
    staff_id = uow.require_actor()
    db = uow.session
    items = [(int(asset_id), int(quantity)) for asset_id, quantity in items]
    if not items:
        raise InvalidQuantityError("A borrow transaction needs at least one item")
    assignment = get_assignment(db, assignment_id)
    if assignment.status != AssignmentStatus.ACTIVE:
        raise InvalidStateError(f"Assignment {assignment.assignment_number} is closed")

    now = utcnow()
    transaction_number = sequence.next_transaction_number(db, now.year)
    transaction = BorrowTransaction(
        assignment_id=assignment.id,
        transaction_number=transaction_number,
        borrow_date=now,
        created_by_id=staff_id,
        borrower_signature=signature_path,
        notes=notes,
    )
    db.add(transaction)
    db.flush()

    for asset_id, quantity in items:
        uow.checkpoint()
        # repeated assets hit the ledger once per line, so reservations add up
        ledger.reserve(db, asset_id, quantity)
        inspection = latest_inspection(db, asset_id)
        transaction.items.append(BorrowItem(
            asset_id=asset_id,
            quantity=quantity,
            returned_quantity=0,
            status=BorrowItemStatus.BORROWED,
            checkout_inspection_id=inspection.id if inspection else None,
        ))
    db.flush()

    uow.audit("CREATE_BORROW", "BorrowTransaction", transaction.id,
              f"Created transaction {transaction_number} with {len(items)} items")
    logger.info(f"Staff {staff_id} opened borrow {transaction_number} on assignment {assignment.id} "
                f"({len(items)} items)")
    return transaction


def get_borrow_transaction(db, transaction_id):
    transaction = db.get(BorrowTransaction, transaction_id)
    if transaction is None:
        raise BorrowTransactionNotFoundError(transaction_id)
    return transaction


def sign_borrow_transaction(uow, transaction_id, signature_path=None):
    """Borrower acknowledged custody: the transaction becomes immutable history."""
    actor_id = uow.require_actor()
    db = uow.session
    transaction = get_borrow_transaction(db, transaction_id)
    if transaction.is_signed:
        raise SignedTransactionImmutableError(transaction.transaction_number)

    transaction.is_signed = True
    transaction.signed_at = utcnow()
    if signature_path:
        transaction.borrower_signature = signature_path
    db.flush()
    for item in transaction.items:
        if item.status == BorrowItemStatus.BORROWED:
            ledger.confirm(db, item.asset_id)

    uow.audit("SIGN_BORROW", "BorrowTransaction", transaction.id,
              f"Signed transaction {transaction.transaction_number}")
    logger.info(f"Borrow {transaction.transaction_number} signed (actor {actor_id})")
    return transaction
