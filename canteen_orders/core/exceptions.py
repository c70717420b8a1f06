"""
Application exception classes

Business-rule outcomes are not exceptions: they are the tagged failures in
``core.failures``. Exceptions here cover infrastructure faults and the single
carrier used to unwind a transaction when a business rule rejects a request.
"""

from typing import Any, Dict, Optional

from .failures import OrderFailure


class BaseApplicationError(Exception):
    """Base class for application errors"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class DatabaseError(BaseApplicationError):
    """Database related errors"""
    pass


class StoreError(DatabaseError):
    """A transactional store operation failed"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, error_code="STORE_FAILURE")
        self.cause = cause


class StoreConflictError(StoreError):
    """Write-write conflict, unique constraint violation or stale version"""
    pass


class TransactionStateError(StoreError):
    """begin/commit/rollback called in the wrong transaction state"""
    pass


class OrderRejected(BaseApplicationError):
    """
    Carries a business failure out of a transaction block.

    Raised inside ``with gateway.transaction():`` so the rollback runs
    before the failure is handed back to the caller as a value.
    """

    def __init__(self, failure: OrderFailure):
        super().__init__(failure.message, error_code=failure.error_code,
                         details=failure.details())
        self.failure = failure
