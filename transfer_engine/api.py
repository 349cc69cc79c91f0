"""
FastAPI REST API Module

HTTP surface over the transfer engine: account opening and lookup,
transfers and ledger read-back. Transfer requests are pre-checked here
(currency, ownership of the stated currency, balance, distinct accounts);
the engine re-applies balances atomically regardless, since these checks
can be stale under concurrency.
"""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, HTTPException, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from .accounts import AccountManager
from .balances import BalanceUpdater
from .config import EngineConfig, get_config
from .currency import UnsupportedCurrencyError, get_full_currency_name
from .errors import (
    InsufficientFundsError, InvalidTransferError, NotFoundError,
    ReferencedAccountError, RollbackError, StoreError
)
from .models import Account
from .storage import LedgerStore, create_store
from .transfers import TransferEngine
from .logging_config import get_logger, setup_logging
from . import __version__


class CreateAccountRequest(BaseModel):
    owner: str = Field(..., min_length=1)
    currency: str = Field(..., description="Currency code (USD, EUR, CAD)")
    balance: int = Field(0, ge=0, description="Opening balance in the smallest currency unit")


class CreateTransferRequest(BaseModel):
    from_account_id: int = Field(..., ge=1)
    to_account_id: int = Field(..., ge=1)
    amount: int = Field(..., gt=0, description="Amount in the smallest currency unit, 100 is 1.00")
    currency: str = Field(..., description="Currency code both accounts must carry")


class TransferSystem:
    """Transfer engine components sharing one store"""

    def __init__(self, store: LedgerStore, config: EngineConfig):
        self.store = store
        self.config = config
        self.account_manager = AccountManager(store)
        self.engine = TransferEngine(
            store,
            balance_updater=BalanceUpdater(
                enforce_non_negative=config.enforce_non_negative_balance
            )
        )


def get_system(request: Request) -> TransferSystem:
    return request.app.state.system


def create_app(store: Optional[LedgerStore] = None, config: Optional[EngineConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        store: Ledger store to use; built from config.database_url if omitted
        config: Configuration; the global configuration if omitted
    """
    config = config or get_config()
    if store is None:
        store = create_store(
            config.database_url,
            pool_size=config.database_pool_size,
            lock_timeout=config.lock_timeout_seconds
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    app = FastAPI(
        title="Funds Transfer API",
        description="Atomic funds transfers with an append-only ledger",
        version=__version__,
        lifespan=lifespan
    )
    app.state.system = TransferSystem(store, config)
    logger = get_logger("transfer_engine.api")

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransferError)
    async def invalid_transfer_handler(request: Request, exc: InvalidTransferError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(request: Request, exc: InsufficientFundsError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Ledger store unavailable, retry later"})

    @app.exception_handler(RollbackError)
    async def rollback_error_handler(request: Request, exc: RollbackError):
        logger.critical("Rollback failed on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal ledger error"})

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "transfer_engine",
            "version": __version__
        }

    @app.post("/accounts", status_code=status.HTTP_201_CREATED)
    def create_account(request: CreateAccountRequest, system: TransferSystem = Depends(get_system)):
        """Open a new account"""
        try:
            account = system.account_manager.open_account(
                owner=request.owner,
                currency=request.currency,
                balance=request.balance
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return account.to_dict()

    @app.get("/accounts")
    def list_accounts(
        owner: Optional[str] = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        system: TransferSystem = Depends(get_system)
    ):
        """List accounts"""
        accounts = system.account_manager.list_accounts(owner=owner, limit=limit, offset=offset)
        return {"accounts": [account.to_dict() for account in accounts]}

    @app.get("/accounts/{account_id}")
    def get_account(account_id: int, system: TransferSystem = Depends(get_system)):
        """Get account details"""
        return system.account_manager.get_account(account_id).to_dict()

    @app.get("/accounts/{account_id}/entries")
    def get_account_entries(
        account_id: int,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        system: TransferSystem = Depends(get_system)
    ):
        """Get the ledger entries of an account"""
        system.account_manager.get_account(account_id)
        entries = system.engine.list_entries(account_id, limit=limit, offset=offset)
        return {"entries": [entry.to_dict() for entry in entries]}

    @app.delete("/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_account(account_id: int, system: TransferSystem = Depends(get_system)):
        """Delete an account with no ledger history"""
        system.account_manager.get_account(account_id)
        try:
            system.account_manager.delete_account(account_id)
        except ReferencedAccountError as e:
            raise HTTPException(status_code=409, detail=str(e))

    @app.post("/transfers")
    def create_transfer(request: CreateTransferRequest, system: TransferSystem = Depends(get_system)):
        """Transfer money between two accounts of the same currency"""
        try:
            get_full_currency_name(request.currency)
        except UnsupportedCurrencyError as e:
            raise HTTPException(status_code=400, detail=str(e))

        from_account = _checked_account(system, request.from_account_id, request.currency)
        if from_account.balance < request.amount:
            raise HTTPException(
                status_code=400,
                detail="Sender does not have enough balance to perform this transfer"
            )
        _checked_account(system, request.to_account_id, request.currency)
        if request.from_account_id == request.to_account_id:
            raise HTTPException(status_code=400, detail="Cannot transfer to the same account")

        result = system.engine.transfer(
            request.from_account_id, request.to_account_id, request.amount
        )
        return result.to_dict()

    @app.get("/transfers")
    def list_transfers(
        from_account_id: int,
        to_account_id: int,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        system: TransferSystem = Depends(get_system)
    ):
        """List transfers sent by one account or received by another"""
        transfers = system.engine.list_transfers(
            from_account_id, to_account_id, limit=limit, offset=offset
        )
        return {"transfers": [transfer.to_dict() for transfer in transfers]}

    @app.get("/transfers/{transfer_id}")
    def get_transfer(transfer_id: int, system: TransferSystem = Depends(get_system)):
        """Get a transfer"""
        return system.engine.get_transfer(transfer_id).to_dict()

    @app.get("/entries/{entry_id}")
    def get_entry(entry_id: int, system: TransferSystem = Depends(get_system)):
        """Get a ledger entry"""
        return system.engine.get_entry(entry_id).to_dict()

    return app


def _checked_account(system: TransferSystem, account_id: int, currency: str) -> Account:
    account = system.account_manager.get_account(account_id)
    if account.currency != currency:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid currency for account [{account.id}]: expected {account.currency} received {currency}"
        )
    return account


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        create_app(config=config),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
