"""
Request and response models for the HTTP front door.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..core.pricing import PLAN_CREDITS
from ..core.schema import AccountStatus, validate_path_segment


def _not_blank(v: str, name: str) -> str:
    if not v or not v.strip():
        raise ValueError(f'{name} cannot be empty')
    return v.strip()


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = {}


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    billing: Dict[str, Any]
    approvals: Dict[str, int]
    heartbeat: Dict[str, Any]


# Accounts and credits
class AccountCreateRequest(BaseModel):
    account_id: str
    email: str
    name: str = ""
    plan: str = "starter"

    @field_validator('account_id')
    @classmethod
    def account_id_must_not_be_empty(cls, v):
        return _not_blank(v, 'account_id')

    @field_validator('email')
    @classmethod
    def email_must_be_valid(cls, v):
        if '@' not in v:
            raise ValueError('email must be a valid address')
        return v.strip()

    @field_validator('plan')
    @classmethod
    def plan_must_be_valid(cls, v):
        if v not in PLAN_CREDITS:
            raise ValueError(f'plan must be one of: {list(PLAN_CREDITS)}')
        return v


class AccountStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        valid_statuses = [s.value for s in AccountStatus]
        if v not in valid_statuses:
            raise ValueError(f'status must be one of: {valid_statuses}')
        return v


class AccountResponse(BaseModel):
    account_id: str
    email: str
    name: str
    plan: str
    balance: int
    status: str
    created_at: datetime
    updated_at: datetime


class BalanceResponse(BaseModel):
    account_id: str
    balance: int
    plan: str
    status: str
    updated_at: Optional[datetime] = None


class FundsCheckRequest(BaseModel):
    operation: Optional[str] = None
    amount: Optional[int] = None

    @field_validator('amount')
    @classmethod
    def amount_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError('amount must be positive')
        return v


class FundsCheckResponse(BaseModel):
    allowed: bool
    required: int
    available: Optional[int] = None
    reason: Optional[str] = None
    degraded: bool = False
    suggestion: Optional[str] = None


class ConsumeRequest(BaseModel):
    operation: str
    amount: Optional[int] = None
    metadata: Dict[str, Any] = {}

    @field_validator('operation')
    @classmethod
    def operation_must_not_be_empty(cls, v):
        return _not_blank(v, 'operation')

    @field_validator('amount')
    @classmethod
    def amount_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError('amount must be positive')
        return v


class ConsumeResponse(BaseModel):
    consumed: int
    remaining_balance: Optional[int] = None
    transaction_id: Optional[int] = None


class CreditRequest(BaseModel):
    """Payment confirmation. Give either `credits` or a `package_usd` to look up."""
    credits: Optional[int] = None
    package_usd: Optional[int] = None
    source: str = "stripe_payment"
    metadata: Dict[str, Any] = {}

    @field_validator('credits')
    @classmethod
    def credits_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError('credits must be positive')
        return v

    @field_validator('source')
    @classmethod
    def source_must_not_be_empty(cls, v):
        return _not_blank(v, 'source')


class CreditResponse(BaseModel):
    added: int
    new_balance: int
    transaction_id: int


class TransactionResponse(BaseModel):
    id: int
    amount: int
    operation: str
    source: Optional[str] = None
    balance_before: int
    balance_after: int
    metadata: Dict[str, Any] = {}
    created_at: datetime


class BillingSummaryResponse(BaseModel):
    account: AccountResponse
    transactions: List[TransactionResponse]
    pricing: Dict[str, Any]


# Approvals
class DatasetEventRequest(BaseModel):
    """Inbound dataset event. Accepts the bridge's camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)

    provider: str
    data_type: str = Field(alias='dataType')
    request_id: str = Field(alias='requestId')
    payload: Any
    source_metadata: Dict[str, Any] = Field(default_factory=dict, alias='sourceMetadata')
    record_count: Optional[int] = Field(default=None, alias='recordCount')

    @field_validator('provider', 'data_type', 'request_id')
    @classmethod
    def must_not_be_empty(cls, v, info):
        return validate_path_segment(info.field_name, _not_blank(v, info.field_name))

    @field_validator('record_count')
    @classmethod
    def record_count_must_not_be_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError('recordCount cannot be negative')
        return v


class EnqueueResponse(BaseModel):
    approval_id: str
    provider: str
    data_type: str
    record_count: int
    byte_size: int
    expires_at: datetime


class ApprovalView(BaseModel):
    approval_id: str
    request_id: str
    provider: str
    data_type: str
    status: str  # pending, approved, denied, expired
    created_at: datetime
    expires_at: datetime
    record_count: int
    byte_size: int
    source_metadata: Dict[str, Any] = {}
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    denial_reason: Optional[str] = None


class ApprovalListResponse(BaseModel):
    count: int
    pending: List[ApprovalView]


class ApprovalDecisionRequest(BaseModel):
    actor: str
    reason: Optional[str] = None

    @field_validator('actor')
    @classmethod
    def actor_must_not_be_empty(cls, v):
        return _not_blank(v, 'actor')


class ApproveResponse(BaseModel):
    approval_id: str
    request_id: str
    status: str = "approved"
    approved_by: str
    approved_at: datetime
    location: str
    checksum: str


class DenyResponse(BaseModel):
    approval_id: str
    request_id: str
    status: str = "denied"
    denied_by: str
    reason: str


class SweepResponse(BaseModel):
    expired: int
    pending: int


class StoredPayloadView(BaseModel):
    location: str
    provider: str
    data_type: str
    request_id: str
    stored_at: datetime
    size_bytes: int


class StoredPayloadListResponse(BaseModel):
    count: int
    payloads: List[StoredPayloadView]
