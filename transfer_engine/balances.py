"""
Balance Updater Module

Applies signed deltas to the two accounts of a transfer. The lower account
id is always locked and updated first, whichever side sends the money.
With every transfer taking row locks in the same global order, two
transfers in opposite directions between the same accounts cannot wait on
each other in a cycle.
"""

from typing import Tuple

from .errors import InsufficientFundsError
from .models import Account
from .storage import Queries
from .logging_config import get_logger


class BalanceUpdater:
    """
    Read-modify-write of account balances under row locks

    Args:
        enforce_non_negative: Refuse a debit that would take a balance
            below zero. The check runs on the locked row, so it holds even
            when the caller's own balance check was stale.
    """

    def __init__(self, enforce_non_negative: bool = True):
        self.enforce_non_negative = enforce_non_negative
        self.logger = get_logger("transfer_engine.balances")

    def apply_deltas(
        self,
        queries: Queries,
        id_low: int,
        id_high: int,
        delta_low: int,
        delta_high: int
    ) -> Tuple[Account, Account]:
        """
        Apply deltas to two accounts in ascending id order

        Args:
            queries: Query handle of the open transaction
            id_low: The smaller account id
            id_high: The larger account id
            delta_low: Signed change for id_low
            delta_high: Signed change for id_high

        Returns:
            (account_low, account_high) snapshots after the update

        Raises:
            ValueError: If id_low is not smaller than id_high
            AccountNotFoundError: If either account does not exist
            InsufficientFundsError: If a debit would overdraw an account
        """
        if id_low >= id_high:
            raise ValueError(f"account ids out of order: {id_low} >= {id_high}")

        account_low = self._apply_delta(queries, id_low, delta_low)
        account_high = self._apply_delta(queries, id_high, delta_high)
        return account_low, account_high

    def _apply_delta(self, queries: Queries, account_id: int, delta: int) -> Account:
        account = queries.get_account_for_update(account_id)
        new_balance = account.balance + delta

        if self.enforce_non_negative and delta < 0 and new_balance < 0:
            raise InsufficientFundsError(account_id, account.balance, -delta)

        updated = queries.update_account_balance(account_id, new_balance)
        self.logger.debug(
            "Account %s balance %s -> %s", account_id, account.balance, updated.balance
        )
        return updated
