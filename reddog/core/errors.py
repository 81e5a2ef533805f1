"""
Error taxonomy shared by the credit ledger and the approval registry.

Business-rule errors are surfaced verbatim to callers; only
TransientStorageError is worth retrying, and the core never retries it itself.
"""

from typing import Any, Dict, Optional


class ReddogError(Exception):
    """Base class for all service errors."""

    error_type = "ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.error_type,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class NotFound(ReddogError):
    error_type = "NOT_FOUND"


class AccountNotFound(NotFound):
    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}", {"account_id": account_id})
        self.account_id = account_id


class ApprovalNotFound(NotFound):
    def __init__(self, approval_id: str):
        super().__init__(f"Approval request not found: {approval_id}", {"approval_id": approval_id})
        self.approval_id = approval_id


class AccountExists(ReddogError):
    error_type = "ACCOUNT_EXISTS"

    def __init__(self, account_id: str):
        super().__init__(f"Account already exists: {account_id}", {"account_id": account_id})
        self.account_id = account_id


class InsufficientCredits(ReddogError):
    error_type = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, Available: {available}",
            {"required": required, "available": available},
        )
        self.required = required
        self.available = available


class AccountInactive(ReddogError):
    error_type = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, status: str):
        super().__init__(
            f"Account {account_id} is {status}",
            {"account_id": account_id, "status": status},
        )
        self.account_id = account_id
        self.status = status


class AlreadyProcessed(ReddogError):
    error_type = "ALREADY_PROCESSED"

    def __init__(self, approval_id: str, status: str):
        super().__init__(
            f"Approval already processed: {status}",
            {"approval_id": approval_id, "status": status},
        )
        self.approval_id = approval_id
        self.status = status


class Expired(ReddogError):
    error_type = "EXPIRED"

    def __init__(self, approval_id: str):
        super().__init__(f"Approval request expired: {approval_id}", {"approval_id": approval_id})
        self.approval_id = approval_id


class TransientStorageError(ReddogError):
    """Storage unreachable or timed out. Callers may retry with backoff."""

    error_type = "STORAGE_UNAVAILABLE"
    retryable = True


class ConfigurationError(ReddogError):
    error_type = "CONFIGURATION_ERROR"


class PayloadStoreError(ReddogError):
    """
    The request is approved but its payload has not been stored yet.

    The approved payload is held for retry_store(); nothing is lost.
    """

    error_type = "PAYLOAD_STORE_FAILED"
    retryable = True

    def __init__(self, approval_id: str, reason: str):
        super().__init__(
            f"Approved {approval_id} but storing its payload failed: {reason}",
            {"approval_id": approval_id, "status": "approved", "stored": False},
        )
        self.approval_id = approval_id
