"""
Account Management Module

Opens, looks up, lists and deletes accounts. Balances are never changed
here after opening; only transfers move money.
"""

from typing import List, Optional

from .currency import get_full_currency_name
from .models import Account
from .storage import DEFAULT_PAGE_SIZE, LedgerStore
from .logging_config import get_logger, log_action


class AccountManager:
    """Account lifecycle on top of a ledger store"""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = get_logger("transfer_engine.accounts")

    def open_account(self, owner: str, currency: str, balance: int = 0) -> Account:
        """
        Open a new account

        Args:
            owner: Owner reference, e.g. a username
            currency: Supported ISO 4217 code
            balance: Opening balance in the smallest currency unit

        Returns:
            Created Account

        Raises:
            UnsupportedCurrencyError: If the currency is not supported
            ValueError: If owner is empty or balance is negative
        """
        if not owner or not owner.strip():
            raise ValueError("Account owner is required")
        get_full_currency_name(currency)
        if isinstance(balance, bool) or not isinstance(balance, int):
            raise ValueError("Opening balance must be an integer in the smallest currency unit")
        if balance < 0:
            raise ValueError("Opening balance cannot be negative")

        with self.store.transaction() as queries:
            account = queries.create_account(owner, currency, balance)

        log_action(
            self.logger, "info", "Account opened",
            action="open_account", resource=f"account:{account.id}",
            extra={"owner": owner, "currency": currency, "balance": balance}
        )
        return account

    def get_account(self, account_id: int) -> Account:
        """Get an account, raising AccountNotFoundError if missing"""
        with self.store.transaction() as queries:
            return queries.get_account(account_id)

    def list_accounts(
        self,
        owner: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0
    ) -> List[Account]:
        """List accounts ordered by id, optionally only those of one owner"""
        with self.store.transaction() as queries:
            return queries.list_accounts(owner=owner, limit=limit, offset=offset)

    def delete_account(self, account_id: int) -> None:
        """
        Delete an account

        Raises:
            AccountNotFoundError: If the account does not exist
            ReferencedAccountError: If entries or transfers still reference it
        """
        with self.store.transaction() as queries:
            queries.delete_account(account_id)

        log_action(
            self.logger, "info", "Account deleted",
            action="delete_account", resource=f"account:{account_id}"
        )
