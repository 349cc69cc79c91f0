"""
Entry Recorder Module

Appends ledger entries. Recording an entry never touches a balance;
balances change only through the balance updater.
"""

from .models import Entry
from .storage import Queries
from .logging_config import get_logger


class EntryRecorder:
    """Creates one ledger entry per call inside the caller's transaction"""

    def __init__(self):
        self.logger = get_logger("transfer_engine.entries")

    def record(self, queries: Queries, account_id: int, amount: int) -> Entry:
        """
        Append an entry for an account

        Args:
            queries: Query handle of the open transaction
            account_id: Account the amount is posted to
            amount: Signed amount, negative for a debit

        Returns:
            The created Entry
        """
        entry = queries.create_entry(account_id, amount)
        self.logger.debug("Entry %s recorded: account %s amount %s", entry.id, account_id, amount)
        return entry
