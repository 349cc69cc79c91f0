"""
Error Taxonomy Module

Exceptions raised by the ledger store, the balance updater and the
transfer engine. Driver-level failures are translated to StoreError at
the store boundary; everything else propagates unchanged.
"""

from typing import Any, Optional


class TransferEngineError(Exception):
    """Base class for all transfer engine errors"""


class NotFoundError(TransferEngineError):
    """A referenced record does not exist"""

    entity = "record"

    def __init__(self, entity_id: Any, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity} {entity_id} not found")


class AccountNotFoundError(NotFoundError):
    entity = "account"


class EntryNotFoundError(NotFoundError):
    entity = "entry"


class TransferNotFoundError(NotFoundError):
    entity = "transfer"


class StoreError(TransferEngineError):
    """
    Failure in the underlying store: connection loss, constraint violation,
    serialization conflict or lock wait timeout.
    """


class ReferencedAccountError(StoreError):
    """An account cannot be deleted while entries or transfers reference it"""

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"account {account_id} is referenced by ledger records")


class RollbackError(TransferEngineError):
    """
    A transaction failed and rolling it back failed too.

    The store may be left inconsistent; this needs operator attention
    rather than an automatic retry.
    """

    def __init__(self, original_error: BaseException, rollback_error: BaseException):
        self.original_error = original_error
        self.rollback_error = rollback_error
        super().__init__(
            f"tx error: {original_error!r}, rollback error: {rollback_error!r}"
        )


class InvalidTransferError(TransferEngineError, ValueError):
    """Transfer request rejected before touching the store"""


class InsufficientFundsError(TransferEngineError):
    """A debit would take an account balance below zero"""

    def __init__(self, account_id: int, balance: int, amount: int):
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"account {account_id} has balance {balance}, cannot debit {amount}"
        )
