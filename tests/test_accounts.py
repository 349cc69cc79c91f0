"""
Tests for account management and the currency catalogue
"""

import pytest

from transfer_engine.accounts import AccountManager
from transfer_engine.currency import (
    Currency, UnsupportedCurrencyError, get_full_currency_name,
    is_supported_currency, supported_currencies
)
from transfer_engine.errors import AccountNotFoundError, StoreError
from transfer_engine.storage import InMemoryLedgerStore, SQLiteLedgerStore
from transfer_engine.transfers import TransferEngine


@pytest.fixture(params=["memory", "sqlite"])
def manager(request):
    store = InMemoryLedgerStore() if request.param == "memory" else SQLiteLedgerStore()
    yield AccountManager(store)
    store.close()


class TestAccountManager:
    """Opening, listing and deleting accounts"""

    def test_open_account(self, manager):
        account = manager.open_account("alice", "USD", 1000)

        assert account.id > 0
        assert account.owner == "alice"
        assert account.currency == "USD"
        assert account.balance == 1000
        assert manager.get_account(account.id) == account

    def test_open_account_defaults_to_zero_balance(self, manager):
        assert manager.open_account("alice", "EUR").balance == 0

    def test_open_account_unsupported_currency(self, manager):
        with pytest.raises(UnsupportedCurrencyError):
            manager.open_account("alice", "XYZ", 100)
        assert manager.list_accounts() == []

    @pytest.mark.parametrize("owner", ["", "   "])
    def test_open_account_requires_owner(self, manager, owner):
        with pytest.raises(ValueError):
            manager.open_account(owner, "USD")

    def test_open_account_negative_balance(self, manager):
        with pytest.raises(ValueError):
            manager.open_account("alice", "USD", -1)

    def test_list_accounts(self, manager):
        first = manager.open_account("alice", "USD", 10)
        manager.open_account("bob", "USD", 10)
        third = manager.open_account("alice", "CAD", 10)

        assert [a.id for a in manager.list_accounts(owner="alice")] == [first.id, third.id]
        assert len(manager.list_accounts(limit=2)) == 2
        assert [a.id for a in manager.list_accounts(offset=2)] == [third.id]

    def test_get_missing_account(self, manager):
        with pytest.raises(AccountNotFoundError):
            manager.get_account(31337)

    def test_delete_account(self, manager):
        account = manager.open_account("alice", "USD")
        manager.delete_account(account.id)

        with pytest.raises(AccountNotFoundError):
            manager.get_account(account.id)
        with pytest.raises(AccountNotFoundError):
            manager.delete_account(account.id)

    def test_cannot_delete_account_with_ledger_history(self, manager):
        a = manager.open_account("alice", "USD", 100)
        b = manager.open_account("bob", "USD", 100)
        TransferEngine(manager.store).transfer(a.id, b.id, 10)

        with pytest.raises(StoreError):
            manager.delete_account(a.id)
        assert manager.get_account(a.id).balance == 90


class TestCurrency:
    """Supported currency catalogue"""

    def test_supported_currencies(self):
        assert sorted(supported_currencies()) == ["CAD", "EUR", "USD"]

    def test_is_supported_currency(self):
        assert is_supported_currency("USD")
        assert not is_supported_currency("usd")
        assert not is_supported_currency("JPY")

    def test_full_currency_name(self):
        assert get_full_currency_name("USD") == "US Dollar"
        assert get_full_currency_name("EUR") == "Euro"
        assert get_full_currency_name("CAD") == "Canadian Dollar"
        assert Currency.CAD.code == "CAD"

    def test_unsupported_currency_name(self):
        with pytest.raises(UnsupportedCurrencyError):
            get_full_currency_name("GBP")
