"""
Structured logging for ledger, approval and scheduler operations.

Every record reads "Operation: <name>, Status: <status>, Details: {...}" so
log lines can be grepped by operation. Dataset payloads never reach the log.
"""

import logging
from typing import Any, Dict, List

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
SENSITIVE_FIELDS = ['payload', 'data', 'credentials', 'secret', 'password', 'token']
MAX_LOGGED_CHARS = 100


class StructuredLogger:
    """Structured logger for credit ledger and approval registry operations."""

    def __init__(self, name: str = "reddog"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            stream = logging.StreamHandler()
            stream.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(stream)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        parts = [f"Operation: {operation}", f"Status: {status}"]
        if details:
            parts.append(f"Details: {details}")
        self.logger.log(level, ", ".join(parts))

    # Credit ledger
    def log_ledger_operation(self, operation: str, account_id: str, amount: int = None,
                             status: str = "success", details: Dict[str, Any] = None):
        """Log a balance mutation or account change. Anything but success is a warning."""
        fields = {"account_id": account_id}
        if amount is not None:
            fields["amount"] = amount
        fields.update(details or {})

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"ledger.{operation}", status, fields, level)

    def log_funds_check(self, account_id: str, required: int, allowed: bool, reason: str = None,
                        degraded: bool = False):
        fields = {"account_id": account_id, "required": required}
        if reason:
            fields["reason"] = reason
        if degraded:
            fields["degraded"] = True

        self.log_operation("ledger.check_funds", "allowed" if allowed else "blocked", fields)

    def log_low_balance(self, account_id: str, balance: int, threshold: int):
        self.log_operation(
            "ledger.low_balance",
            "alert",
            {"account_id": account_id, "balance": balance, "threshold": threshold},
            logging.WARNING,
        )

    # Approval registry
    def log_approval_request(self, approval_id: str, provider: str, data_type: str,
                             details: Dict[str, Any] = None):
        fields = {"approval_id": approval_id, "provider": provider, "data_type": data_type}
        fields.update(sanitize_payload(details or {}))
        self.log_operation("approval.request_created", "pending", fields)

    def log_approval_decision(self, approval_id: str, decision: str, actor: str, reason: str = ""):
        self.log_operation("approval.decision", decision, {
            "approval_id": approval_id,
            "actor": actor,
            "reason": (reason or "")[:MAX_LOGGED_CHARS],
        })

    def log_sweep(self, expired_count: int, remaining: int):
        self.log_operation("approval.sweep", "success", {"expired": expired_count, "pending": remaining})

    # Scheduler and bridge
    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float,
                           status: str = "success", details: Dict[str, Any] = None):
        """Log one heartbeat task run with its duration. Failures log at ERROR."""
        fields = {"duration_ms": round((end_time - start_time) * 1000, 2)}
        fields.update(details or {})

        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation(f"heartbeat.{task_name}", status, fields, level)

    def log_notification(self, direction: str, message_type: str, status: str = "success",
                         details: Dict[str, Any] = None):
        fields = {"message_type": message_type}
        fields.update(sanitize_payload(details or {}))
        self.log_operation(f"bridge.{direction}", status, fields)

    # Plain messages
    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)


logger = StructuredLogger()


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """
    Copy of `payload` that is safe to log.

    Values under sensitive keys become "[REDACTED]" at any depth and long
    strings are cut to MAX_LOGGED_CHARS.
    """
    hidden = () if reveal_sensitive else (sensitive_fields or SENSITIVE_FIELDS)

    if isinstance(payload, dict):
        return {
            key: "[REDACTED]" if key in hidden else sanitize_payload(value, reveal_sensitive, sensitive_fields)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    if isinstance(payload, str) and len(payload) > MAX_LOGGED_CHARS:
        return payload[:MAX_LOGGED_CHARS] + "..."
    return payload
