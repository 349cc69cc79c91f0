"""
Ledger Data Model

Accounts, entries and transfers as stored in the ledger, plus the
TransferResult view returned to callers. Money is always an integer in the
smallest currency unit; timestamps are timezone-aware UTC datetimes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Convert a stored timestamp (ISO string or datetime) to a datetime"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Account:
    """
    Snapshot of an account row.

    Balances are only changed through the balance updater; a snapshot is
    never mutated in place.
    """
    id: int
    owner: str
    currency: str
    balance: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "currency": self.currency,
            "balance": self.balance,
            "created_at": self.created_at.isoformat()
        }

    @classmethod
    def from_row(cls, row: Any) -> 'Account':
        return cls(
            id=row["id"],
            owner=row["owner"],
            currency=row["currency"],
            balance=row["balance"],
            created_at=parse_timestamp(row["created_at"])
        )


@dataclass(frozen=True)
class Entry:
    """A single signed amount posted to one account"""
    id: int
    account_id: int
    amount: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "amount": self.amount,
            "created_at": self.created_at.isoformat()
        }

    @classmethod
    def from_row(cls, row: Any) -> 'Entry':
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            amount=row["amount"],
            created_at=parse_timestamp(row["created_at"])
        )


@dataclass(frozen=True)
class Transfer:
    """Movement of a positive amount from one account to another"""
    id: int
    from_account_id: int
    to_account_id: int
    amount: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_account_id": self.from_account_id,
            "to_account_id": self.to_account_id,
            "amount": self.amount,
            "created_at": self.created_at.isoformat()
        }

    @classmethod
    def from_row(cls, row: Any) -> 'Transfer':
        return cls(
            id=row["id"],
            from_account_id=row["from_account_id"],
            to_account_id=row["to_account_id"],
            amount=row["amount"],
            created_at=parse_timestamp(row["created_at"])
        )


@dataclass(frozen=True)
class TransferResult:
    """Everything a committed transfer created or changed. Not persisted."""
    transfer: Transfer
    from_entry: Entry
    to_entry: Entry
    from_account: Account
    to_account: Account

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transfer": self.transfer.to_dict(),
            "from_entry": self.from_entry.to_dict(),
            "to_entry": self.to_entry.to_dict(),
            "from_account": self.from_account.to_dict(),
            "to_account": self.to_account.to_dict()
        }
