"""
Ledger Store Module

Provides the transactional store the transfer engine runs against: an
abstract query interface, an abstract store that hands out transactions,
and in-memory (testing), SQLite and PostgreSQL implementations.

Every unit of work goes through a transaction. Account rows read with
get_account_for_update stay locked until the transaction commits or rolls
back, so two transactions can never lose each other's balance updates.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Union
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
import itertools
import sqlite3
import threading

from .errors import (
    AccountNotFoundError, EntryNotFoundError, TransferNotFoundError,
    ReferencedAccountError, RollbackError, StoreError
)
from .models import Account, Entry, Transfer, utc_now


DEFAULT_PAGE_SIZE = 50


class Queries(ABC):
    """Query capability bound to one open transaction"""

    @abstractmethod
    def create_account(self, owner: str, currency: str, balance: int) -> Account:
        """Insert a new account"""
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Account:
        """Fetch an account, raising AccountNotFoundError if missing"""
        pass

    @abstractmethod
    def get_account_for_update(self, account_id: int) -> Account:
        """Fetch an account and lock its row until the transaction ends"""
        pass

    @abstractmethod
    def list_accounts(self, owner: Optional[str] = None,
                      limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Account]:
        """List accounts ordered by id, optionally for one owner"""
        pass

    @abstractmethod
    def update_account_balance(self, account_id: int, balance: int) -> Account:
        """Write an absolute balance and return the updated snapshot"""
        pass

    @abstractmethod
    def delete_account(self, account_id: int) -> None:
        """Delete an account that no entry or transfer references"""
        pass

    @abstractmethod
    def create_entry(self, account_id: int, amount: int) -> Entry:
        """Append a ledger entry"""
        pass

    @abstractmethod
    def get_entry(self, entry_id: int) -> Entry:
        """Fetch an entry, raising EntryNotFoundError if missing"""
        pass

    @abstractmethod
    def list_entries(self, account_id: int,
                     limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Entry]:
        """List entries of one account ordered by id"""
        pass

    @abstractmethod
    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        """Append a transfer record"""
        pass

    @abstractmethod
    def get_transfer(self, transfer_id: int) -> Transfer:
        """Fetch a transfer, raising TransferNotFoundError if missing"""
        pass

    @abstractmethod
    def list_transfers(self, from_account_id: int, to_account_id: int,
                       limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Transfer]:
        """List transfers sent by from_account_id or received by to_account_id"""
        pass


class StoreTransaction(ABC):
    """An open transaction: its queries plus commit and rollback"""

    queries: Queries

    @abstractmethod
    def commit(self) -> None:
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard everything done in the transaction"""
        pass


class LedgerStore(ABC):
    """Abstract interface for ledger store backends"""

    @abstractmethod
    def begin(self) -> StoreTransaction:
        """Start a transaction"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release connections held by the store"""
        pass

    @contextmanager
    def transaction(self) -> Iterator[Queries]:
        """
        Run a block as one all-or-nothing unit of work.

        Commits when the block succeeds. On any exception, including
        cancellation, the transaction is rolled back and the exception
        re-raised unchanged. If the rollback fails too, RollbackError is
        raised carrying both causes.
        """
        txn = self.begin()
        try:
            yield txn.queries
        except BaseException as exc:
            _abort(txn, exc)
            raise
        try:
            txn.commit()
        except Exception as exc:
            _abort(txn, exc)
            raise


def _abort(txn: StoreTransaction, exc: BaseException) -> None:
    try:
        txn.rollback()
    except Exception as rollback_exc:
        raise RollbackError(exc, rollback_exc) from exc


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory store for testing.

    Writes are buffered per transaction and published on commit. Account
    rows are protected by per-row locks held until commit or rollback.
    """

    def __init__(self, lock_timeout: float = 10.0):
        self.lock_timeout = lock_timeout
        self.accounts: Dict[int, Account] = {}
        self.entries: Dict[int, Entry] = {}
        self.transfers: Dict[int, Transfer] = {}
        self._row_locks: Dict[int, threading.Lock] = {}
        self._mutex = threading.RLock()
        self._sequences = {
            "accounts": itertools.count(1),
            "entries": itertools.count(1),
            "transfers": itertools.count(1)
        }

    def next_id(self, table: str) -> int:
        with self._mutex:
            return next(self._sequences[table])

    def row_lock(self, account_id: int) -> threading.Lock:
        with self._mutex:
            return self._row_locks.setdefault(account_id, threading.Lock())

    @contextmanager
    def snapshot(self) -> Iterator[None]:
        """Hold the store mutex while reading committed state"""
        with self._mutex:
            yield

    def begin(self) -> 'InMemoryTransaction':
        return InMemoryTransaction(self)

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class InMemoryTransaction(StoreTransaction):
    """Transaction against an InMemoryLedgerStore"""

    def __init__(self, store: InMemoryLedgerStore):
        self.store = store
        self.accounts: Dict[int, Account] = {}
        self.deleted_accounts: Set[int] = set()
        self.entries: Dict[int, Entry] = {}
        self.transfers: Dict[int, Transfer] = {}
        self._held_locks: Dict[int, threading.Lock] = {}
        self._closed = False
        self.queries = InMemoryQueries(self)

    def lock_account(self, account_id: int) -> None:
        """Acquire the row lock of an account for the rest of the transaction"""
        self.ensure_open()
        if account_id in self._held_locks:
            return
        lock = self.store.row_lock(account_id)
        if not lock.acquire(timeout=self.store.lock_timeout):
            raise StoreError(f"lock wait timeout on account {account_id}")
        self._held_locks[account_id] = lock

    def commit(self) -> None:
        self.ensure_open()
        with self.store.snapshot():
            self.store.accounts.update(self.accounts)
            for account_id in self.deleted_accounts:
                self.store.accounts.pop(account_id, None)
            self.store.entries.update(self.entries)
            self.store.transfers.update(self.transfers)
        self._finish()

    def rollback(self) -> None:
        self.ensure_open()
        self._finish()

    def ensure_open(self) -> None:
        if self._closed:
            raise StoreError("transaction is already closed")

    def _finish(self) -> None:
        self._closed = True
        self.accounts.clear()
        self.deleted_accounts.clear()
        self.entries.clear()
        self.transfers.clear()
        for lock in self._held_locks.values():
            lock.release()
        self._held_locks.clear()


class InMemoryQueries(Queries):
    """Queries that see committed state plus the transaction's own writes"""

    def __init__(self, txn: InMemoryTransaction):
        self._txn = txn
        self._store = txn.store

    def _find_account(self, account_id: int) -> Optional[Account]:
        if account_id in self._txn.deleted_accounts:
            return None
        if account_id in self._txn.accounts:
            return self._txn.accounts[account_id]
        with self._store.snapshot():
            return self._store.accounts.get(account_id)

    def _all_accounts(self) -> List[Account]:
        with self._store.snapshot():
            merged = dict(self._store.accounts)
        merged.update(self._txn.accounts)
        for account_id in self._txn.deleted_accounts:
            merged.pop(account_id, None)
        return [merged[key] for key in sorted(merged)]

    def _all_entries(self) -> List[Entry]:
        with self._store.snapshot():
            merged = dict(self._store.entries)
        merged.update(self._txn.entries)
        return [merged[key] for key in sorted(merged)]

    def _all_transfers(self) -> List[Transfer]:
        with self._store.snapshot():
            merged = dict(self._store.transfers)
        merged.update(self._txn.transfers)
        return [merged[key] for key in sorted(merged)]

    def _require_accounts(self, *account_ids: int) -> None:
        # Row locks in ascending id order, held until the transaction ends,
        # so a concurrent delete cannot remove a referenced account
        for account_id in sorted(set(account_ids)):
            self._txn.lock_account(account_id)
        for account_id in account_ids:
            if self._find_account(account_id) is None:
                raise AccountNotFoundError(account_id)

    def create_account(self, owner: str, currency: str, balance: int) -> Account:
        self._txn.ensure_open()
        account = Account(
            id=self._store.next_id("accounts"),
            owner=owner,
            currency=currency,
            balance=balance,
            created_at=utc_now()
        )
        self._txn.lock_account(account.id)
        self._txn.accounts[account.id] = account
        return account

    def get_account(self, account_id: int) -> Account:
        account = self._find_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_account_for_update(self, account_id: int) -> Account:
        self._txn.lock_account(account_id)
        return self.get_account(account_id)

    def list_accounts(self, owner: Optional[str] = None,
                      limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Account]:
        accounts = [
            account for account in self._all_accounts()
            if owner is None or account.owner == owner
        ]
        return accounts[offset:offset + limit]

    def update_account_balance(self, account_id: int, balance: int) -> Account:
        account = self.get_account_for_update(account_id)
        updated = replace(account, balance=balance)
        self._txn.accounts[account_id] = updated
        return updated

    def delete_account(self, account_id: int) -> None:
        self.get_account_for_update(account_id)
        referenced = any(entry.account_id == account_id for entry in self._all_entries()) or any(
            account_id in (transfer.from_account_id, transfer.to_account_id)
            for transfer in self._all_transfers()
        )
        if referenced:
            raise ReferencedAccountError(account_id)
        self._txn.accounts.pop(account_id, None)
        self._txn.deleted_accounts.add(account_id)

    def create_entry(self, account_id: int, amount: int) -> Entry:
        self._txn.ensure_open()
        self._require_accounts(account_id)
        entry = Entry(
            id=self._store.next_id("entries"),
            account_id=account_id,
            amount=amount,
            created_at=utc_now()
        )
        self._txn.entries[entry.id] = entry
        return entry

    def get_entry(self, entry_id: int) -> Entry:
        entry = self._txn.entries.get(entry_id)
        if entry is None:
            with self._store.snapshot():
                entry = self._store.entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def list_entries(self, account_id: int,
                     limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Entry]:
        entries = [entry for entry in self._all_entries() if entry.account_id == account_id]
        return entries[offset:offset + limit]

    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        self._txn.ensure_open()
        if amount <= 0:
            raise StoreError("transfer amount must be positive")
        self._require_accounts(from_account_id, to_account_id)
        transfer = Transfer(
            id=self._store.next_id("transfers"),
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            created_at=utc_now()
        )
        self._txn.transfers[transfer.id] = transfer
        return transfer

    def get_transfer(self, transfer_id: int) -> Transfer:
        transfer = self._txn.transfers.get(transfer_id)
        if transfer is None:
            with self._store.snapshot():
                transfer = self._store.transfers.get(transfer_id)
        if transfer is None:
            raise TransferNotFoundError(transfer_id)
        return transfer

    def list_transfers(self, from_account_id: int, to_account_id: int,
                       limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Transfer]:
        transfers = [
            transfer for transfer in self._all_transfers()
            if transfer.from_account_id == from_account_id or transfer.to_account_id == to_account_id
        ]
        return transfers[offset:offset + limit]


ACCOUNT_COLUMNS = "id, owner, currency, balance, created_at"
ENTRY_COLUMNS = "id, account_id, amount, created_at"
TRANSFER_COLUMNS = "id, from_account_id, to_account_id, amount, created_at"


class SQLQueries(Queries):
    """
    Queries shared by the SQL backends.

    Statements use "?" placeholders; backends translate them and turn
    driver errors into StoreError.
    """

    # Appended to the account lookup in get_account_for_update
    lock_clause = ""

    @abstractmethod
    def _query(self, statement: str, params: Sequence[Any] = ()) -> List[Mapping[str, Any]]:
        """Run a SELECT and return all rows"""
        pass

    @abstractmethod
    def _execute(self, statement: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count"""
        pass

    @abstractmethod
    def _insert(self, statement: str, params: Sequence[Any] = ()) -> int:
        """Run an INSERT and return the generated id"""
        pass

    def _timestamp(self, value):
        return value

    def _require_accounts(self, *account_ids: int) -> None:
        placeholders = ", ".join("?" for _ in account_ids)
        rows = self._query(f"SELECT id FROM accounts WHERE id IN ({placeholders})", account_ids)
        found = {row["id"] for row in rows}
        for account_id in account_ids:
            if account_id not in found:
                raise AccountNotFoundError(account_id)

    def create_account(self, owner: str, currency: str, balance: int) -> Account:
        now = utc_now()
        account_id = self._insert(
            "INSERT INTO accounts (owner, currency, balance, created_at) VALUES (?, ?, ?, ?)",
            (owner, currency, balance, self._timestamp(now))
        )
        return Account(id=account_id, owner=owner, currency=currency, balance=balance, created_at=now)

    def get_account(self, account_id: int) -> Account:
        rows = self._query(f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ?", (account_id,))
        if not rows:
            raise AccountNotFoundError(account_id)
        return Account.from_row(rows[0])

    def get_account_for_update(self, account_id: int) -> Account:
        rows = self._query(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ?{self.lock_clause}",
            (account_id,)
        )
        if not rows:
            raise AccountNotFoundError(account_id)
        return Account.from_row(rows[0])

    def list_accounts(self, owner: Optional[str] = None,
                      limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Account]:
        if owner is None:
            rows = self._query(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts ORDER BY id LIMIT ? OFFSET ?",
                (limit, offset)
            )
        else:
            rows = self._query(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE owner = ? ORDER BY id LIMIT ? OFFSET ?",
                (owner, limit, offset)
            )
        return [Account.from_row(row) for row in rows]

    def update_account_balance(self, account_id: int, balance: int) -> Account:
        updated = self._execute("UPDATE accounts SET balance = ? WHERE id = ?", (balance, account_id))
        if updated == 0:
            raise AccountNotFoundError(account_id)
        return self.get_account(account_id)

    def delete_account(self, account_id: int) -> None:
        self.get_account_for_update(account_id)
        referenced = self._query(
            "SELECT 1 FROM entries WHERE account_id = ? "
            "UNION ALL SELECT 1 FROM transfers WHERE from_account_id = ? OR to_account_id = ? "
            "LIMIT 1",
            (account_id, account_id, account_id)
        )
        if referenced:
            raise ReferencedAccountError(account_id)
        deleted = self._execute("DELETE FROM accounts WHERE id = ?", (account_id,))
        if deleted == 0:
            raise AccountNotFoundError(account_id)

    def create_entry(self, account_id: int, amount: int) -> Entry:
        self._require_accounts(account_id)
        now = utc_now()
        entry_id = self._insert(
            "INSERT INTO entries (account_id, amount, created_at) VALUES (?, ?, ?)",
            (account_id, amount, self._timestamp(now))
        )
        return Entry(id=entry_id, account_id=account_id, amount=amount, created_at=now)

    def get_entry(self, entry_id: int) -> Entry:
        rows = self._query(f"SELECT {ENTRY_COLUMNS} FROM entries WHERE id = ?", (entry_id,))
        if not rows:
            raise EntryNotFoundError(entry_id)
        return Entry.from_row(rows[0])

    def list_entries(self, account_id: int,
                     limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Entry]:
        rows = self._query(
            f"SELECT {ENTRY_COLUMNS} FROM entries WHERE account_id = ? ORDER BY id LIMIT ? OFFSET ?",
            (account_id, limit, offset)
        )
        return [Entry.from_row(row) for row in rows]

    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        self._require_accounts(from_account_id, to_account_id)
        now = utc_now()
        transfer_id = self._insert(
            "INSERT INTO transfers (from_account_id, to_account_id, amount, created_at) "
            "VALUES (?, ?, ?, ?)",
            (from_account_id, to_account_id, amount, self._timestamp(now))
        )
        return Transfer(
            id=transfer_id,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            created_at=now
        )

    def get_transfer(self, transfer_id: int) -> Transfer:
        rows = self._query(f"SELECT {TRANSFER_COLUMNS} FROM transfers WHERE id = ?", (transfer_id,))
        if not rows:
            raise TransferNotFoundError(transfer_id)
        return Transfer.from_row(rows[0])

    def list_transfers(self, from_account_id: int, to_account_id: int,
                       limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Transfer]:
        rows = self._query(
            f"SELECT {TRANSFER_COLUMNS} FROM transfers "
            "WHERE from_account_id = ? OR to_account_id = ? ORDER BY id LIMIT ? OFFSET ?",
            (from_account_id, to_account_id, limit, offset)
        )
        return [Transfer.from_row(row) for row in rows]


SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    currency TEXT NOT NULL,
    balance INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_accounts_owner ON accounts (owner);

CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts (id),
    amount INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entries_account_id ON entries (account_id);

CREATE TABLE IF NOT EXISTS transfers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    from_account_id INTEGER NOT NULL REFERENCES accounts (id),
    to_account_id INTEGER NOT NULL REFERENCES accounts (id),
    amount INTEGER NOT NULL CHECK (amount > 0),
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_transfers_from_account_id ON transfers (from_account_id);
CREATE INDEX IF NOT EXISTS idx_transfers_to_account_id ON transfers (to_account_id);
"""


class SQLiteQueries(SQLQueries):
    """Queries over a SQLite connection"""

    def __init__(self, connection: sqlite3.Connection):
        self._connection = connection

    def _timestamp(self, value):
        return value.isoformat()

    def _run(self, statement: str, params: Sequence[Any]) -> sqlite3.Cursor:
        try:
            return self._connection.execute(statement, tuple(params))
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def _query(self, statement: str, params: Sequence[Any] = ()) -> List[Mapping[str, Any]]:
        return self._run(statement, params).fetchall()

    def _execute(self, statement: str, params: Sequence[Any] = ()) -> int:
        return self._run(statement, params).rowcount

    def _insert(self, statement: str, params: Sequence[Any] = ()) -> int:
        return self._run(statement, params).lastrowid


class SQLiteLedgerStore(LedgerStore):
    """
    SQLite store for single-node persistence.

    One connection is shared by all threads. A transaction holds the
    connection lock from BEGIN IMMEDIATE to COMMIT/ROLLBACK, so
    transactions in this process run one at a time and other processes
    wait on SQLite's write lock.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: float = 10.0):
        self.db_path = str(db_path)
        self.lock_timeout = lock_timeout
        # isolation_level=None: transactions are started explicitly in begin()
        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=lock_timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False

        with self._lock:
            self._connection.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.executescript(SQLITE_SCHEMA)

    def begin(self) -> 'SQLiteTransaction':
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for the database connection")
        if self._in_transaction:
            self._lock.release()
            raise StoreError("nested transactions are not supported")
        try:
            self._connection.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._lock.release()
            raise StoreError(str(e)) from e
        self._in_transaction = True
        return SQLiteTransaction(self, self._connection)

    def end_transaction(self) -> None:
        self._in_transaction = False
        self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class SQLiteTransaction(StoreTransaction):
    def __init__(self, store: SQLiteLedgerStore, connection: sqlite3.Connection):
        self._store = store
        self._connection = connection
        self._closed = False
        self.queries = SQLiteQueries(connection)

    def commit(self) -> None:
        if self._closed:
            raise StoreError("transaction is already closed")
        try:
            self._connection.execute("COMMIT")
        except sqlite3.Error as e:
            # Still open: the caller is expected to roll back
            raise StoreError(str(e)) from e
        self._close()

    def rollback(self) -> None:
        if self._closed:
            raise StoreError("transaction is already closed")
        try:
            self._connection.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            self._close()

    def _close(self) -> None:
        self._closed = True
        self._store.end_transaction()


POSTGRESQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id BIGSERIAL PRIMARY KEY,
    owner TEXT NOT NULL,
    currency TEXT NOT NULL,
    balance BIGINT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_accounts_owner ON accounts (owner);

CREATE TABLE IF NOT EXISTS entries (
    id BIGSERIAL PRIMARY KEY,
    account_id BIGINT NOT NULL REFERENCES accounts (id),
    amount BIGINT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_entries_account_id ON entries (account_id);

CREATE TABLE IF NOT EXISTS transfers (
    id BIGSERIAL PRIMARY KEY,
    from_account_id BIGINT NOT NULL REFERENCES accounts (id),
    to_account_id BIGINT NOT NULL REFERENCES accounts (id),
    amount BIGINT NOT NULL CHECK (amount > 0),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_transfers_from_account_id ON transfers (from_account_id);
CREATE INDEX IF NOT EXISTS idx_transfers_to_account_id ON transfers (to_account_id);
"""


class PostgreSQLQueries(SQLQueries):
    """Queries over a psycopg2 connection"""

    # FOR NO KEY UPDATE does not conflict with the key-share locks taken by
    # foreign key checks when entries and transfers are inserted
    lock_clause = " FOR NO KEY UPDATE"

    def __init__(self, connection, driver_error: type):
        self._connection = connection
        self._driver_error = driver_error

    def _run(self, statement: str, params: Sequence[Any], fetch: bool):
        try:
            with self._connection.cursor() as cursor:
                cursor.execute(statement.replace("?", "%s"), tuple(params))
                if fetch:
                    return cursor.fetchall()
                return cursor.rowcount
        except self._driver_error as e:
            raise StoreError(str(e)) from e

    def _query(self, statement: str, params: Sequence[Any] = ()) -> List[Mapping[str, Any]]:
        return self._run(statement, params, fetch=True)

    def _execute(self, statement: str, params: Sequence[Any] = ()) -> int:
        return self._run(statement, params, fetch=False)

    def _insert(self, statement: str, params: Sequence[Any] = ()) -> int:
        rows = self._run(statement + " RETURNING id", params, fetch=True)
        return rows[0]["id"]


class PostgreSQLLedgerStore(LedgerStore):
    """PostgreSQL store with row-level locking and a per-store connection pool"""

    def __init__(self, connection_string: str, pool_size: int = 5, lock_timeout: float = 10.0):
        try:
            import psycopg2
            import psycopg2.extras
            import psycopg2.pool
            self.psycopg2 = psycopg2
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.lock_timeout = lock_timeout
        # ThreadedConnectionPool fails at once when exhausted; callers queue here instead
        self._slots = threading.BoundedSemaphore(pool_size)
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                1, pool_size, connection_string,
                cursor_factory=psycopg2.extras.RealDictCursor
            )
        except psycopg2.Error as e:
            raise StoreError(str(e)) from e
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        connection = self._pool.getconn()
        try:
            with connection.cursor() as cursor:
                cursor.execute(POSTGRESQL_SCHEMA)
            connection.commit()
        except self.psycopg2.Error as e:
            connection.rollback()
            raise StoreError(str(e)) from e
        finally:
            self._pool.putconn(connection)

    def begin(self) -> 'PostgreSQLTransaction':
        if not self._slots.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for a pooled connection")
        try:
            connection = self._pool.getconn()
        except self.psycopg2.Error as e:
            self._slots.release()
            raise StoreError(str(e)) from e
        try:
            connection.autocommit = False
            with connection.cursor() as cursor:
                cursor.execute(
                    "SET LOCAL lock_timeout = %s",
                    (f"{int(self.lock_timeout * 1000)}ms",)
                )
        except self.psycopg2.Error as e:
            self.release(connection, broken=True)
            raise StoreError(str(e)) from e
        return PostgreSQLTransaction(self, connection)

    def release(self, connection, broken: bool = False) -> None:
        try:
            self._pool.putconn(connection, close=broken)
        finally:
            self._slots.release()

    def close(self) -> None:
        """Close all pooled connections"""
        self._pool.closeall()


class PostgreSQLTransaction(StoreTransaction):
    def __init__(self, store: PostgreSQLLedgerStore, connection):
        self._store = store
        self._connection = connection
        self._closed = False
        self.queries = PostgreSQLQueries(connection, store.psycopg2.Error)

    def commit(self) -> None:
        if self._closed:
            raise StoreError("transaction is already closed")
        try:
            self._connection.commit()
        except self._store.psycopg2.Error as e:
            raise StoreError(str(e)) from e
        self._closed = True
        self._store.release(self._connection)

    def rollback(self) -> None:
        if self._closed:
            raise StoreError("transaction is already closed")
        self._closed = True
        try:
            self._connection.rollback()
        except self._store.psycopg2.Error as e:
            self._store.release(self._connection, broken=True)
            raise StoreError(str(e)) from e
        self._store.release(self._connection)


def create_store(
    database_url: str,
    pool_size: int = 5,
    lock_timeout: float = 10.0
) -> LedgerStore:
    """
    Create a ledger store from a database URL

    Args:
        database_url: "memory://", "sqlite:///path/to/file.db" ("sqlite://"
            for an in-memory SQLite database) or "postgresql://..."
        pool_size: Maximum pooled connections (PostgreSQL only)
        lock_timeout: Seconds to wait for a row or connection lock

    Returns:
        LedgerStore instance
    """
    if database_url == "memory://":
        return InMemoryLedgerStore(lock_timeout=lock_timeout)

    if database_url == "sqlite://":
        return SQLiteLedgerStore(":memory:", lock_timeout=lock_timeout)

    if database_url.startswith("sqlite:///") and len(database_url) > len("sqlite:///"):
        return SQLiteLedgerStore(database_url[len("sqlite:///"):], lock_timeout=lock_timeout)

    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLLedgerStore(database_url, pool_size=pool_size, lock_timeout=lock_timeout)

    raise ValueError(f"Unsupported database URL: {database_url}")
