"""
Typed errors raised by the circulation services.

Every error carries a machine-readable ``code`` and the HTTP ``status_code``
the API answers with, so routes never have to parse messages.
"""


class CirculationError(Exception):
    code = "CIRCULATION_ERROR"
    status_code = 400

    def __init__(self, message=None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class UnauthorizedError(CirculationError):
    """No authenticated actor"""
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(UnauthorizedError):
    """Insufficient permissions"""
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(CirculationError):
    code = "NOT_FOUND"
    status_code = 404
    entity = "Record"

    def __init__(self, entity_id=None, message=None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity} {entity_id} not found")


class AssetNotFoundError(NotFoundError):
    code = "ASSET_NOT_FOUND"
    entity = "Asset"


class BorrowItemNotFoundError(NotFoundError):
    code = "BORROW_ITEM_NOT_FOUND"
    entity = "BorrowItem"


class AssignmentNotFoundError(NotFoundError):
    code = "ASSIGNMENT_NOT_FOUND"
    entity = "Assignment"


class BorrowTransactionNotFoundError(NotFoundError):
    code = "TRANSACTION_NOT_FOUND"
    entity = "BorrowTransaction"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"
    entity = "User"


class InsufficientStockError(CirculationError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, asset_id, requested, available=None, name=None):
        self.asset_id = asset_id
        self.requested = requested
        self.available = available
        label = name or f"asset {asset_id}"
        super().__init__(f"Insufficient stock for {label}: requested {requested}, available {available}")


class SignedTransactionImmutableError(CirculationError):
    code = "SIGNED_TRANSACTION_IMMUTABLE"
    status_code = 409

    def __init__(self, transaction_number):
        self.transaction_number = transaction_number
        super().__init__(f"Transaction {transaction_number} is signed and cannot be changed")


class OutstandingItemsError(CirculationError):
    code = "OUTSTANDING_ITEMS"
    status_code = 409

    def __init__(self, count):
        self.count = count
        super().__init__(
            f"Cannot delete assignment with {count} unreturned item(s). Please return all items first."
        )


class TransactionHasReturnsError(CirculationError):
    code = "TRANSACTION_HAS_RETURNS"
    status_code = 409

    def __init__(self, transaction_number):
        self.transaction_number = transaction_number
        super().__init__(f"Transaction {transaction_number} already has recorded returns")


class InvalidStateError(CirculationError):
    code = "INVALID_STATE"
    status_code = 409


class InvalidQuantityError(CirculationError):
    code = "INVALID_QUANTITY"
    status_code = 422


class AlreadyReturnedError(InvalidQuantityError):
    code = "ALREADY_RETURNED"

    def __init__(self, borrow_item_id):
        self.borrow_item_id = borrow_item_id
        super().__init__(f"BorrowItem {borrow_item_id} has already been returned")


class OperationCancelledError(CirculationError):
    """Operation cancelled before completion"""
    code = "OPERATION_CANCELLED"
    status_code = 409
