"""
Typed records for the credit ledger and the approval registry.
"""

import json
import re
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# provider, data type and request id each become one path segment in the payload store
PATH_SEGMENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_path_segment(name: str, value: Any) -> str:
    if not isinstance(value, str) or not PATH_SEGMENT.match(value):
        raise ValueError(
            f"{name} must start with a letter or digit and contain only letters, digits, '.', '_' or '-': {value!r}"
        )
    return value


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"

    @property
    def terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


@dataclass(frozen=True)
class Account:
    account_id: str
    email: str
    name: str
    plan: str
    balance: int
    status: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Transaction:
    id: int
    account_id: str
    amount: int  # signed: negative for debits
    operation: str
    balance_before: int
    balance_after: int
    created_at: datetime
    source: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data


@dataclass(frozen=True)
class BalanceInfo:
    balance: int
    plan: str
    status: str
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class FundsCheck:
    allowed: bool
    required: int
    available: Optional[int] = None
    reason: Optional[str] = None
    degraded: bool = False
    status: Optional[str] = None

    @property
    def suggestion(self) -> Optional[str]:
        if self.reason == "insufficient_credits":
            return "Top up your credits to continue"
        return None


@dataclass(frozen=True)
class ConsumeResult:
    consumed: int
    remaining_balance: Optional[int]
    transaction_id: Optional[int] = None


@dataclass(frozen=True)
class CreditResult:
    added: int
    new_balance: int
    transaction_id: int


@dataclass(frozen=True)
class LowBalanceAlert:
    alert: bool
    balance: int
    threshold: int


@dataclass
class BillingSummary:
    account: Account
    transactions: List[Transaction]
    pricing: Dict[str, Any]


@dataclass(frozen=True)
class DatasetEvent:
    """Inbound dataset-ready event from the notification bridge."""
    provider: str
    data_type: str
    request_id: str
    payload: Any
    source_metadata: Dict[str, Any] = field(default_factory=dict)
    record_count: Optional[int] = None  # declared by the producer when known

    @classmethod
    def from_message(cls, body: Dict[str, Any]) -> 'DatasetEvent':
        """Build from a bridge message body (camelCase keys)."""
        missing = [k for k in ("provider", "dataType", "requestId") if not body.get(k)]
        if missing:
            raise ValueError(f"Dataset event missing fields: {missing}")
        if "payload" not in body:
            raise ValueError("Dataset event missing fields: ['payload']")
        validate_path_segment("provider", body["provider"])
        validate_path_segment("dataType", body["dataType"])
        validate_path_segment("requestId", body["requestId"])

        return cls(
            provider=body["provider"],
            data_type=body["dataType"],
            request_id=body["requestId"],
            payload=body["payload"],
            source_metadata=dict(body.get("sourceMetadata") or {}),
            record_count=body.get("recordCount"),
        )


@dataclass(frozen=True)
class ApprovalMetadata:
    record_count: int
    byte_size: int
    source_metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ApprovalRequest:
    approval_id: str
    request_id: str
    provider: str
    data_type: str
    payload: Any
    status: ApprovalStatus
    created_at: datetime
    expires_at: datetime
    metadata: ApprovalMetadata
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    denial_reason: Optional[str] = None

    def without_payload(self) -> 'ApprovalRequest':
        """Terminal projection kept after the entry leaves the working set."""
        return replace(self, payload=None)

    def to_dict(self, include_payload: bool = True) -> Dict:
        """Convert to dictionary for storage."""
        data = asdict(self)
        data['status'] = self.status.value
        # Convert datetime objects to ISO format strings
        data['created_at'] = self.created_at.isoformat()
        data['expires_at'] = self.expires_at.isoformat()
        data['decided_at'] = self.decided_at.isoformat() if self.decided_at else None
        if not include_payload:
            data.pop('payload')
        return data

    @classmethod
    def from_audit_record(cls, record: Dict[str, Any]) -> 'ApprovalRequest':
        """Payload-free view of an `approvals` audit row."""
        decided_at = record.get('decided_at')
        return cls(
            approval_id=record['approval_id'],
            request_id=record['request_id'],
            provider=record['provider'],
            data_type=record['data_type'],
            payload=None,
            status=ApprovalStatus(record['status']),
            created_at=datetime.fromisoformat(record['created_at']),
            expires_at=datetime.fromisoformat(record['expires_at']),
            metadata=ApprovalMetadata(
                record_count=record.get('record_count') or 0,
                byte_size=record.get('byte_size') or 0,
                source_metadata=dict(record.get('metadata') or {}),
            ),
            decided_by=record.get('decided_by'),
            decided_at=datetime.fromisoformat(decided_at) if decided_at else None,
            denial_reason=record.get('denial_reason'),
        )


@dataclass(frozen=True)
class EnqueueResult:
    approval_id: str
    provider: str
    data_type: str
    record_count: int
    byte_size: int
    expires_at: datetime


@dataclass(frozen=True)
class ApprovedPayload:
    """What approve() hands back for the caller to admit into storage."""
    approval_id: str
    request_id: str
    provider: str
    data_type: str
    payload: Any
    metadata: ApprovalMetadata
    approved_by: str
    approved_at: datetime


@dataclass(frozen=True)
class StoredPayload:
    location: str
    size_bytes: int
    checksum: str


@dataclass(frozen=True)
class StoredPayloadRef:
    """One stored dataset as found by listing the payload store."""
    location: str
    provider: str
    data_type: str
    request_id: str
    stored_at: datetime
    size_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['stored_at'] = self.stored_at.isoformat()
        return data


def dump_json(value: Any) -> str:
    """Compact JSON used for metadata columns and payload sizing."""
    return json.dumps(value, separators=(",", ":"), default=str)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
