"""
Assignment lifecycle: a borrower's loans for one academic period.

Deletion paths are guarded so history is never rewritten: an assignment
can only be deleted once nothing is out, and a borrow transaction only
while unsigned and untouched by returns.
"""
import logging

from sqlalchemy import delete, func, select

from circulation.core.errors import (ForbiddenError, InvalidStateError, OutstandingItemsError,
                                     SignedTransactionImmutableError, TransactionHasReturnsError,
                                     UserNotFoundError)
from circulation.models.models import (Assignment, AssignmentStatus, BorrowItem, BorrowItemStatus,
                                       BorrowTransaction, ReturnItem, ReturnTransaction, User, utcnow)
from circulation.services import ledger, sequence
from circulation.services.borrow import get_assignment, get_borrow_transaction

logger = logging.getLogger("circulation.assignments")


def _require(permissions, actor_id, action):
    if permissions is None or not permissions.has_permission(actor_id, "assignments", action):
        raise ForbiddenError()


def open_assignment(uow, user_id, academic_year, semester):
    actor_id = uow.require_actor()
    db = uow.session
    if db.get(User, user_id) is None:
        raise UserNotFoundError(user_id)

    assignment_number = sequence.next_assignment_number(db, academic_year)
    assignment = Assignment(
        assignment_number=assignment_number,
        user_id=user_id,
        academic_year=academic_year,
        semester=semester,
        status=AssignmentStatus.ACTIVE,
    )
    db.add(assignment)
    db.flush()

    uow.audit("CREATE_ASSIGNMENT", "Assignment", assignment.id,
              f"Created assignment {assignment_number} for user {user_id}")
    logger.info(f"Created assignment id={assignment.id} number={assignment_number} user={user_id}")
    return assignment


def close_assignment(uow, assignment_id, signature_path=None, notes=None):
    """Close without checking outstanding items; staff may override."""
    actor_id = uow.require_actor()
    db = uow.session
    assignment = get_assignment(db, assignment_id)
    if assignment.status == AssignmentStatus.CLOSED:
        raise InvalidStateError(f"Assignment {assignment.assignment_number} is already closed")

    assignment.status = AssignmentStatus.CLOSED
    assignment.closed_at = utcnow()
    assignment.closed_by_id = actor_id
    assignment.closure_signature = signature_path
    assignment.closure_notes = notes
    db.flush()

    uow.audit("CLOSE_ASSIGNMENT", "Assignment", assignment.id,
              f"Closed assignment {assignment.assignment_number}")
    logger.info(f"Closed assignment id={assignment.id} by {actor_id}")
    return assignment


def reopen_assignment(uow, assignment_id, permissions):
    actor_id = uow.require_actor()
    _require(permissions, actor_id, "reopen")
    db = uow.session
    assignment = get_assignment(db, assignment_id)
    if assignment.status != AssignmentStatus.CLOSED:
        raise InvalidStateError(f"Assignment {assignment.assignment_number} is not closed")

    assignment.status = AssignmentStatus.ACTIVE
    assignment.closed_at = None
    assignment.closed_by_id = None
    assignment.closure_signature = None
    assignment.closure_notes = None
    db.flush()

    uow.audit("REOPEN_ASSIGNMENT", "Assignment", assignment.id,
              f"Reopened assignment {assignment.assignment_number}")
    logger.info(f"Reopened assignment id={assignment.id} by {actor_id}")
    return assignment


def outstanding_items(db, assignment_id):
    return (
        db.query(BorrowItem)
        .join(BorrowTransaction, BorrowItem.borrow_transaction_id == BorrowTransaction.id)
        .filter(BorrowTransaction.assignment_id == assignment_id,
                BorrowItem.status == BorrowItemStatus.BORROWED)
        .order_by(BorrowItem.id)
        .all()
    )


def delete_assignment(uow, assignment_id, permissions):
    actor_id = uow.require_actor()
    _require(permissions, actor_id, "delete")
    db = uow.session
    assignment = get_assignment(db, assignment_id)

    unreturned = (
        db.query(func.count(BorrowItem.id))
        .join(BorrowTransaction, BorrowItem.borrow_transaction_id == BorrowTransaction.id)
        .filter(BorrowTransaction.assignment_id == assignment.id,
                BorrowItem.status == BorrowItemStatus.BORROWED)
        .scalar()
    )
    if unreturned:
        raise OutstandingItemsError(unreturned)

    # children first: ReturnItems -> ReturnTransactions -> BorrowItems -> BorrowTransactions -> Assignment
    return_tx_ids = select(ReturnTransaction.id).where(ReturnTransaction.assignment_id == assignment.id)
    borrow_tx_ids = select(BorrowTransaction.id).where(BorrowTransaction.assignment_id == assignment.id)
    for stmt in (
        delete(ReturnItem).where(ReturnItem.return_transaction_id.in_(return_tx_ids)),
        delete(ReturnTransaction).where(ReturnTransaction.assignment_id == assignment.id),
        delete(BorrowItem).where(BorrowItem.borrow_transaction_id.in_(borrow_tx_ids)),
        delete(BorrowTransaction).where(BorrowTransaction.assignment_id == assignment.id),
        delete(Assignment).where(Assignment.id == assignment.id),
    ):
        db.execute(stmt.execution_options(synchronize_session=False))
    assignment_number = assignment.assignment_number

    uow.audit("DELETE_ASSIGNMENT", "Assignment", assignment_id, f"Deleted assignment {assignment_number}")
    logger.info(f"Deleted assignment id={assignment_id} number={assignment_number} by {actor_id}")
    return assignment_number


def delete_borrow_transaction(uow, transaction_id):
    """Reverse an unsigned borrow: give every reserved unit back to the ledger."""
    actor_id = uow.require_actor()
    db = uow.session
    transaction = get_borrow_transaction(db, transaction_id)
    if transaction.is_signed:
        raise SignedTransactionImmutableError(transaction.transaction_number)
    items = list(transaction.items)
    if any(item.returned_quantity or item.return_items for item in items):
        raise TransactionHasReturnsError(transaction.transaction_number)

    for item in items:
        uow.checkpoint()
        ledger.restore(db, item.asset_id, item.quantity)

    transaction_number = transaction.transaction_number
    assignment_id = transaction.assignment_id
    db.execute(
        delete(BorrowItem)
        .where(BorrowItem.borrow_transaction_id == transaction.id)
        .execution_options(synchronize_session=False)
    )
    db.execute(delete(BorrowTransaction).where(BorrowTransaction.id == transaction_id)
               .execution_options(synchronize_session=False))
    db.flush()

    uow.audit("DELETE_TRANSACTION", "BorrowTransaction", transaction_id,
              f"Deleted transaction {transaction_number}")
    logger.info(f"Deleted borrow {transaction_number} from assignment {assignment_id} by {actor_id}")
    return transaction_number
