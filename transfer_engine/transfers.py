"""
Transfer Engine Module

Moves money between two accounts as one all-or-nothing unit of work:
records the transfer, a debit entry and a credit entry, then applies both
balance deltas through the balance updater. Safe to call from many threads
against the same pair of accounts in either direction.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from .balances import BalanceUpdater
from .entries import EntryRecorder
from .errors import InvalidTransferError, RollbackError
from .models import Entry, Transfer, TransferResult
from .storage import DEFAULT_PAGE_SIZE, LedgerStore, Queries
from .logging_config import get_logger, log_action


T = TypeVar("T")


@dataclass(frozen=True)
class TransferRequest:
    """A request to move amount from one account to another"""
    from_account_id: int
    to_account_id: int
    amount: int

    def validate(self) -> None:
        """
        Reject requests the ledger cannot represent

        Raises:
            InvalidTransferError: If the amount is not a positive integer or
                both sides name the same account
        """
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise InvalidTransferError("Transfer amount must be an integer in the smallest currency unit")
        if self.amount <= 0:
            raise InvalidTransferError("Transfer amount must be positive")
        if self.from_account_id == self.to_account_id:
            raise InvalidTransferError("Cannot transfer to the same account")


class TransferEngine:
    """
    Executes funds transfers against an injected ledger store

    Args:
        store: Ledger store that owns the connections
        entry_recorder: Creates the debit and credit entries
        balance_updater: Applies the balance deltas in ascending id order
    """

    def __init__(
        self,
        store: LedgerStore,
        entry_recorder: Optional[EntryRecorder] = None,
        balance_updater: Optional[BalanceUpdater] = None
    ):
        self.store = store
        self.entry_recorder = entry_recorder or EntryRecorder()
        self.balance_updater = balance_updater or BalanceUpdater()
        self.logger = get_logger("transfer_engine.transfers")

    def execute_in_transaction(self, fn: Callable[[Queries], T]) -> T:
        """
        Run fn with the query handle of a new transaction

        The transaction commits when fn returns and rolls back when it
        raises. fn's exception propagates unchanged, or as RollbackError if
        the rollback fails as well.
        """
        with self.store.transaction() as queries:
            return fn(queries)

    def transfer(self, from_account_id: int, to_account_id: int, amount: int) -> TransferResult:
        """
        Move amount from one account to another

        Args:
            from_account_id: Sender account id
            to_account_id: Receiver account id
            amount: Positive amount in the smallest currency unit

        Returns:
            TransferResult with the transfer, both entries and both
            updated accounts

        Raises:
            InvalidTransferError: Amount not positive or accounts identical
            AccountNotFoundError: Either account does not exist
            InsufficientFundsError: Sender balance would go negative
            StoreError: The store failed; nothing was written
            RollbackError: The store failed and could not roll back
        """
        return self.execute(TransferRequest(from_account_id, to_account_id, amount))

    def execute(self, request: TransferRequest) -> TransferResult:
        """Execute a validated TransferRequest"""
        request.validate()
        resource = f"accounts:{request.from_account_id}->{request.to_account_id}"

        try:
            result = self.execute_in_transaction(lambda queries: self._transfer_tx(queries, request))
        except RollbackError as e:
            log_action(
                self.logger, "critical", f"Transfer rollback failed: {e}",
                action="transfer", resource=resource,
                extra={"amount": request.amount}, exc_info=True
            )
            raise
        except Exception as e:
            log_action(
                self.logger, "warning", f"Transfer aborted: {e}",
                action="transfer", resource=resource,
                extra={"amount": request.amount, "error": type(e).__name__}
            )
            raise

        log_action(
            self.logger, "info", "Transfer committed",
            action="transfer", resource=f"transfer:{result.transfer.id}",
            extra={
                "from_account": request.from_account_id,
                "to_account": request.to_account_id,
                "amount": request.amount,
                "from_balance": result.from_account.balance,
                "to_balance": result.to_account.balance
            }
        )
        return result

    def _transfer_tx(self, queries: Queries, request: TransferRequest) -> TransferResult:
        amount = request.amount
        transfer = queries.create_transfer(request.from_account_id, request.to_account_id, amount)
        from_entry = self.entry_recorder.record(queries, request.from_account_id, -amount)
        to_entry = self.entry_recorder.record(queries, request.to_account_id, amount)

        if request.from_account_id < request.to_account_id:
            from_account, to_account = self.balance_updater.apply_deltas(
                queries, request.from_account_id, request.to_account_id, -amount, amount
            )
        else:
            to_account, from_account = self.balance_updater.apply_deltas(
                queries, request.to_account_id, request.from_account_id, amount, -amount
            )

        return TransferResult(
            transfer=transfer,
            from_entry=from_entry,
            to_entry=to_entry,
            from_account=from_account,
            to_account=to_account
        )

    def get_transfer(self, transfer_id: int) -> Transfer:
        """Get a committed transfer by id"""
        return self.execute_in_transaction(lambda queries: queries.get_transfer(transfer_id))

    def get_entry(self, entry_id: int) -> Entry:
        """Get a committed entry by id"""
        return self.execute_in_transaction(lambda queries: queries.get_entry(entry_id))

    def list_transfers(
        self,
        from_account_id: int,
        to_account_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0
    ) -> List[Transfer]:
        """List transfers sent by from_account_id or received by to_account_id"""
        return self.execute_in_transaction(
            lambda queries: queries.list_transfers(from_account_id, to_account_id, limit, offset)
        )

    def list_entries(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Entry]:
        """List the entries posted to an account"""
        return self.execute_in_transaction(
            lambda queries: queries.list_entries(account_id, limit, offset)
        )
