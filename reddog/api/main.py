"""
HTTP front door for the credit ledger and the approval registry.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    AccountCreateRequest,
    AccountResponse,
    AccountStatusRequest,
    ApprovalDecisionRequest,
    ApprovalListResponse,
    ApprovalView,
    ApproveResponse,
    BalanceResponse,
    BillingSummaryResponse,
    ConsumeRequest,
    ConsumeResponse,
    CreditRequest,
    CreditResponse,
    DatasetEventRequest,
    DenyResponse,
    EnqueueResponse,
    FundsCheckRequest,
    FundsCheckResponse,
    HealthResponse,
    StoredPayloadListResponse,
    StoredPayloadView,
    SweepResponse,
    TransactionResponse,
)
from ..core.config import VERSION, debug_enabled
from ..core.db import health_check
from ..core.errors import (
    AccountExists, AccountInactive, AlreadyProcessed, ApprovalNotFound, Expired, InsufficientCredits, NotFound,
    PayloadStoreError, ReddogError, TransientStorageError
)
from ..core.pricing import pricing_table
from ..core.schema import Account, ApprovalRequest, ApprovedPayload, DatasetEvent, StoredPayload
from ..core.service import Services, build_services
from ..util.logging import logger

# Checked in order; first match wins
ERROR_STATUS = [
    (NotFound, 404),
    (InsufficientCredits, 402),
    (AccountInactive, 403),
    (AlreadyProcessed, 409),
    (AccountExists, 409),
    (Expired, 410),
    (TransientStorageError, 503),
    (PayloadStoreError, 503),
]
RETRY_AFTER_SEC = "5"


def get_services(request: Request) -> Services:
    return request.app.state.services


def _account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        account_id=account.account_id,
        email=account.email,
        name=account.name,
        plan=account.plan,
        balance=account.balance,
        status=account.status,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def _approval_view(request: ApprovalRequest) -> ApprovalView:
    return ApprovalView(
        approval_id=request.approval_id,
        request_id=request.request_id,
        provider=request.provider,
        data_type=request.data_type,
        status=request.status.value,
        created_at=request.created_at,
        expires_at=request.expires_at,
        record_count=request.metadata.record_count,
        byte_size=request.metadata.byte_size,
        source_metadata=request.metadata.source_metadata,
        decided_by=request.decided_by,
        decided_at=request.decided_at,
        denial_reason=request.denial_reason,
    )


def _approve_response(approved: ApprovedPayload, stored: StoredPayload) -> ApproveResponse:
    return ApproveResponse(
        approval_id=approved.approval_id,
        request_id=approved.request_id,
        approved_by=approved.approved_by,
        approved_at=approved.approved_at,
        location=stored.location,
        checksum=stored.checksum,
    )


def create_app(services: Optional[Services] = None, start_heartbeat: bool = True) -> FastAPI:
    """Build the application around one Services instance."""
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        heartbeat = app.state.services.heartbeat
        if start_heartbeat and heartbeat.list_tasks():
            heartbeat.start_background()
        try:
            yield
        finally:
            heartbeat.stop()

    app = FastAPI(
        title="Red Dog Billing & Approvals API",
        version=VERSION,
        description="Prepaid credit ledger and human approval of provider datasets",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ReddogError)
    async def reddog_error_handler(request: Request, exc: ReddogError):
        status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
        headers = {"Retry-After": RETRY_AFTER_SEC} if exc.retryable else None
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={
            "error_type": "INVALID_REQUEST",
            "message": str(exc),
            "retryable": False,
            "details": {},
        })

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={
            "error_type": "INTERNAL_ERROR",
            "message": str(exc) if debug_enabled() else "Internal server error",
            "retryable": False,
            "details": {},
        })

    _register_routes(app)
    return app


def _register_routes(app: FastAPI):

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(services: Services = Depends(get_services)):
        """Check system health."""
        db_health = health_check(services.db_path)
        return HealthResponse(
            status="healthy" if db_health else "unhealthy",
            version=VERSION,
            db_health=db_health,
            billing=services.ledger.get_status(),
            approvals={**services.registry.get_stats(), "unstored": len(services.commands.unstored())},
            heartbeat=services.heartbeat.get_status(),
        )

    # Accounts
    @app.post("/accounts", response_model=AccountResponse, status_code=201)
    def create_account_endpoint(request: AccountCreateRequest, services: Services = Depends(get_services)):
        account = services.ledger.create_account(
            request.account_id, request.email, request.name, request.plan
        )
        return _account_response(account)

    @app.patch("/accounts/{account_id}/status", response_model=AccountResponse)
    def set_account_status_endpoint(account_id: str, request: AccountStatusRequest,
                                    services: Services = Depends(get_services)):
        return _account_response(services.ledger.set_status(account_id, request.status))

    # Credits
    @app.get("/credits/{account_id}", response_model=BalanceResponse)
    def get_balance_endpoint(account_id: str, services: Services = Depends(get_services)):
        info = services.ledger.get_balance(account_id)
        return BalanceResponse(
            account_id=account_id,
            balance=info.balance,
            plan=info.plan,
            status=info.status,
            updated_at=info.updated_at,
        )

    @app.post("/credits/{account_id}/check", response_model=FundsCheckResponse)
    def check_funds_endpoint(account_id: str, request: FundsCheckRequest,
                             services: Services = Depends(get_services)):
        check = services.ledger.check_funds(account_id, amount=request.amount, operation=request.operation)
        return FundsCheckResponse(
            allowed=check.allowed,
            required=check.required,
            available=check.available,
            reason=check.reason,
            degraded=check.degraded,
            suggestion=check.suggestion,
        )

    @app.post("/credits/{account_id}/consume", response_model=ConsumeResponse)
    def consume_endpoint(account_id: str, request: ConsumeRequest, services: Services = Depends(get_services)):
        result = services.ledger.consume(account_id, request.operation, request.amount, request.metadata)
        return ConsumeResponse(
            consumed=result.consumed,
            remaining_balance=result.remaining_balance,
            transaction_id=result.transaction_id,
        )

    @app.post("/credits/{account_id}/add", response_model=CreditResponse)
    def add_credits_endpoint(account_id: str, request: CreditRequest, services: Services = Depends(get_services)):
        """Apply a confirmed payment."""
        if (request.credits is None) == (request.package_usd is None):
            raise ValueError("Provide exactly one of credits or package_usd")

        credits = request.credits
        metadata = dict(request.metadata)
        if request.package_usd is not None:
            credits = services.ledger.credits_for_package(request.package_usd)
            metadata["package_usd"] = request.package_usd

        result = services.ledger.credit(account_id, credits, request.source, metadata)
        return CreditResponse(added=result.added, new_balance=result.new_balance,
                              transaction_id=result.transaction_id)

    # Billing (pricing must be declared before the path parameter route)
    @app.get("/billing/pricing")
    def pricing_endpoint():
        return pricing_table()

    @app.get("/billing/{account_id}", response_model=BillingSummaryResponse)
    def billing_summary_endpoint(account_id: str, limit: int = 20, services: Services = Depends(get_services)):
        summary = services.ledger.summary(account_id, limit)
        return BillingSummaryResponse(
            account=_account_response(summary.account),
            transactions=[
                TransactionResponse(
                    id=t.id,
                    amount=t.amount,
                    operation=t.operation,
                    source=t.source,
                    balance_before=t.balance_before,
                    balance_after=t.balance_after,
                    metadata=t.metadata,
                    created_at=t.created_at,
                )
                for t in summary.transactions
            ],
            pricing=summary.pricing,
        )

    # Approvals
    @app.post("/approvals", response_model=EnqueueResponse, status_code=201)
    def enqueue_endpoint(request: DatasetEventRequest, services: Services = Depends(get_services)):
        """Accept a provider-data-ready event."""
        result = services.registry.enqueue(DatasetEvent(
            provider=request.provider,
            data_type=request.data_type,
            request_id=request.request_id,
            payload=request.payload,
            source_metadata=request.source_metadata,
            record_count=request.record_count,
        ))
        return EnqueueResponse(
            approval_id=result.approval_id,
            provider=result.provider,
            data_type=result.data_type,
            record_count=result.record_count,
            byte_size=result.byte_size,
            expires_at=result.expires_at,
        )

    @app.get("/approvals/pending", response_model=ApprovalListResponse)
    def list_pending_endpoint(provider: Optional[str] = None, data_type: Optional[str] = None,
                              services: Services = Depends(get_services)):
        pending = services.registry.list_pending(provider=provider, data_type=data_type)
        return ApprovalListResponse(count=len(pending), pending=[_approval_view(r) for r in pending])

    @app.post("/approvals/sweep", response_model=SweepResponse)
    def sweep_endpoint(services: Services = Depends(get_services)):
        expired = services.registry.sweep_expired()
        return SweepResponse(expired=expired, pending=services.registry.pending_count())

    @app.get("/approvals/{approval_id}", response_model=ApprovalView)
    def get_approval_endpoint(approval_id: str, services: Services = Depends(get_services)):
        request = services.registry.get(approval_id)
        if request is None:
            raise ApprovalNotFound(approval_id)
        return _approval_view(request)

    @app.post("/approvals/{approval_id}/approve", response_model=ApproveResponse)
    def approve_endpoint(approval_id: str, decision: ApprovalDecisionRequest,
                         services: Services = Depends(get_services)):
        """Approve, store the payload and acknowledge to the producer."""
        return _approve_response(*services.commands.approve_and_store(approval_id, decision.actor))

    @app.post("/approvals/{approval_id}/store", response_model=ApproveResponse)
    def retry_store_endpoint(approval_id: str, services: Services = Depends(get_services)):
        """Store an approved payload whose first write failed."""
        return _approve_response(*services.commands.retry_store(approval_id))

    @app.post("/approvals/{approval_id}/deny", response_model=DenyResponse)
    def deny_endpoint(approval_id: str, decision: ApprovalDecisionRequest,
                      services: Services = Depends(get_services)):
        denied = services.commands.deny_and_notify(approval_id, decision.actor, decision.reason)
        return DenyResponse(
            approval_id=denied.approval_id,
            request_id=denied.request_id,
            denied_by=denied.decided_by,
            reason=denied.denial_reason,
        )

    # Stored payloads
    @app.get("/payloads", response_model=StoredPayloadListResponse)
    def list_payloads_endpoint(provider: Optional[str] = None, data_type: Optional[str] = None,
                               request_id: Optional[str] = None, since: Optional[datetime] = None,
                               until: Optional[datetime] = None,
                               services: Services = Depends(get_services)):
        refs = services.payload_store.list(provider=provider, data_type=data_type, request_id=request_id,
                                           since=since, until=until)
        return StoredPayloadListResponse(
            count=len(refs),
            payloads=[StoredPayloadView(**ref.to_dict()) for ref in refs],
        )
