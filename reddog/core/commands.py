"""
Chat commands for deciding on pending datasets.

    approve <id>
    give lick of approval <id>
    deny <id> [reason]
    list approvals | show approvals | pending approvals
    show approval <id>
    retry approval <id>
"""

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .approval import ApprovalRegistry, DEFAULT_DENIAL_REASON
from .bridge import DATA_APPROVAL_RESULT, NotificationBridge
from .errors import ApprovalNotFound, NotFound, PayloadStoreError, ReddogError
from .schema import ApprovalRequest, ApprovedPayload, StoredPayload, utcnow
from .storage import PayloadStore
from ..util.logging import logger

APPROVE_PATTERN = re.compile(r"^approve\s+([a-z0-9-]+)$", re.IGNORECASE)
LICK_PATTERN = re.compile(r"^give\s+lick\s+of\s+approval\s+([a-z0-9-]+)$", re.IGNORECASE)
DENY_PATTERN = re.compile(r"^deny\s+([a-z0-9-]+)(?:\s+(.+))?$", re.IGNORECASE)
LIST_PATTERN = re.compile(r"^(list|show|pending)\s+approvals?$", re.IGNORECASE)
SHOW_PATTERN = re.compile(r"^show\s+approval\s+([a-z0-9-]+)$", re.IGNORECASE)
RETRY_PATTERN = re.compile(r"^retry\s+approval\s+([a-z0-9-]+)$", re.IGNORECASE)


@dataclass(frozen=True)
class ApprovalCommand:
    action: str  # approve|deny|list|show|retry
    approval_id: Optional[str] = None
    reason: Optional[str] = None
    used_lick: bool = False


@dataclass
class CommandResult:
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def time_until_expiry(expires_at: datetime, now: datetime) -> str:
    remaining = int((expires_at - now).total_seconds())
    if remaining < 0:
        return "Expired"

    hours, rest = divmod(remaining, 3600)
    minutes = rest // 60
    if hours > 24:
        days = hours // 24
        return f"{days} day{'s' if days > 1 else ''}"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def parse_command(text: str) -> Optional[ApprovalCommand]:
    """Parse a chat message into an approval command, or None if it is not one."""
    msg = (text or "").strip()

    match = APPROVE_PATTERN.match(msg) or LICK_PATTERN.match(msg)
    if match:
        return ApprovalCommand("approve", approval_id=match.group(1), used_lick=match.re is LICK_PATTERN)

    match = DENY_PATTERN.match(msg)
    if match:
        return ApprovalCommand("deny", approval_id=match.group(1),
                               reason=match.group(2) or DEFAULT_DENIAL_REASON)

    if LIST_PATTERN.match(msg):
        return ApprovalCommand("list")

    match = SHOW_PATTERN.match(msg)
    if match:
        return ApprovalCommand("show", approval_id=match.group(1))

    match = RETRY_PATTERN.match(msg)
    if match:
        return ApprovalCommand("retry", approval_id=match.group(1))

    return None


class ApprovalCommands:
    """
    Runs approval decisions end to end: registry, payload store, then acknowledgement.

    An approved payload that could not be stored is held until retry_store()
    succeeds, so a failed write never loses the dataset.
    """

    def __init__(self, registry: ApprovalRegistry, payload_store: PayloadStore,
                 bridge: NotificationBridge, clock: Callable[[], datetime] = utcnow):
        self.registry = registry
        self.payload_store = payload_store
        self.bridge = bridge
        self._clock = clock
        self._unstored_lock = threading.Lock()
        self._unstored: Dict[str, ApprovedPayload] = {}

    def approve_and_store(self, approval_id: str, actor: str) -> Tuple[ApprovedPayload, StoredPayload]:
        """Raises PayloadStoreError if the request was approved but its payload is still unstored."""
        approved = self.registry.approve(approval_id, actor)
        return self._store_and_ack(approved)

    def retry_store(self, approval_id: str) -> Tuple[ApprovedPayload, StoredPayload]:
        """Store a held payload whose first write failed."""
        with self._unstored_lock:
            approved = self._unstored.pop(approval_id, None)
        if approved is None:
            raise NotFound(f"No approved payload awaiting storage: {approval_id}", {"approval_id": approval_id})
        return self._store_and_ack(approved)

    def unstored(self) -> List[ApprovedPayload]:
        with self._unstored_lock:
            return sorted(self._unstored.values(), key=lambda a: a.approved_at)

    def _store_and_ack(self, approved: ApprovedPayload) -> Tuple[ApprovedPayload, StoredPayload]:
        try:
            stored = self.payload_store.write(approved)
        except Exception as e:
            with self._unstored_lock:
                self._unstored[approved.approval_id] = approved
            logger.error(f"Storing approved payload {approved.approval_id} failed, held for retry: {e}")
            raise PayloadStoreError(approved.approval_id, str(e)) from e

        self.bridge.publish(DATA_APPROVAL_RESULT, {
            "approvalId": approved.approval_id,
            "requestId": approved.request_id,
            "status": "approved",
            "location": stored.location,
            "approvedBy": approved.approved_by,
        })
        return approved, stored

    def deny_and_notify(self, approval_id: str, actor: str,
                        reason: str = DEFAULT_DENIAL_REASON) -> ApprovalRequest:
        denied = self.registry.deny(approval_id, actor, reason)
        self.bridge.publish(DATA_APPROVAL_RESULT, {
            "approvalId": approval_id,
            "requestId": denied.request_id,
            "status": "denied",
            "deniedBy": actor,
            "reason": denied.denial_reason,
        })
        return denied

    def handle(self, text: str, actor: str = "system") -> Optional[CommandResult]:
        """Parse and execute a chat message. Returns None for non-commands."""
        command = parse_command(text)
        if command is None:
            return None
        return self.execute(command, actor)

    def execute(self, command: ApprovalCommand, actor: str = "system") -> CommandResult:
        if command.action == "approve":
            return self._approve(command.approval_id, actor, command.used_lick)
        if command.action == "deny":
            return self._deny(command.approval_id, actor, command.reason)
        if command.action == "list":
            return self._list()
        if command.action == "show":
            return self._show(command.approval_id)
        if command.action == "retry":
            return self._retry(command.approval_id, actor)
        return CommandResult(False, f"Unknown approval command: {command.action}")

    def _approve(self, approval_id: str, actor: str, used_lick: bool) -> CommandResult:
        try:
            approved, stored = self.approve_and_store(approval_id, actor)
        except PayloadStoreError as e:
            return self._unstored_result(e)
        except ReddogError as e:
            logger.warning(f"Approve command failed for {approval_id}: {e.message}")
            return CommandResult(False, f"❌ Failed to approve: {e.message}", {"error": e.to_dict()})
        except Exception as e:
            logger.error(f"Approve command crashed for {approval_id}: {e}")
            return CommandResult(False, f"❌ Failed to approve: {e}")

        if used_lick:
            header = "🐕👅 Red Dog gives the Lick of Approval! Data stored, mate!"
        else:
            header = "✅ Approved and stored provider data"
        return self._stored_result(header, approved, stored)

    def _retry(self, approval_id: str, actor: str) -> CommandResult:
        try:
            approved, stored = self.retry_store(approval_id)
        except PayloadStoreError as e:
            return self._unstored_result(e)
        except ReddogError as e:
            return CommandResult(False, f"❌ Failed to store: {e.message}", {"error": e.to_dict()})
        except Exception as e:
            logger.error(f"Retry command crashed for {approval_id} ({actor}): {e}")
            return CommandResult(False, f"❌ Failed to store: {e}")
        return self._stored_result("✅ Stored approved provider data", approved, stored)

    @staticmethod
    def _stored_result(header: str, approved: ApprovedPayload, stored: StoredPayload) -> CommandResult:
        message = (
            f"{header}\n\n"
            f"**Provider:** {approved.provider}\n"
            f"**Data Type:** {approved.data_type}\n"
            f"**Location:** {stored.location}\n"
            f"**Approved by:** {approved.approved_by}"
        )
        return CommandResult(True, message, {"location": stored.location, "checksum": stored.checksum})

    @staticmethod
    def _unstored_result(error: PayloadStoreError) -> CommandResult:
        message = (
            f"⚠️ {error.message}\n"
            f"The data is held; run `retry approval {error.approval_id}` to store it."
        )
        return CommandResult(False, message, {"error": error.to_dict()})

    def _deny(self, approval_id: str, actor: str, reason: str) -> CommandResult:
        try:
            denied = self.deny_and_notify(approval_id, actor, reason)
        except ReddogError as e:
            logger.warning(f"Deny command failed for {approval_id}: {e.message}")
            return CommandResult(False, f"❌ Failed to deny: {e.message}", {"error": e.to_dict()})
        except Exception as e:
            logger.error(f"Deny command crashed for {approval_id}: {e}")
            return CommandResult(False, f"❌ Failed to deny: {e}")

        message = (
            "❌ Denied provider data\n\n"
            f"**Approval ID:** {approval_id}\n"
            f"**Denied by:** {actor}\n"
            f"**Reason:** {denied.denial_reason}"
        )
        return CommandResult(True, message, {"request_id": denied.request_id})

    def _list(self) -> CommandResult:
        pending = self.registry.list_pending()
        if not pending:
            return CommandResult(True, "No pending approvals", {"pending": []})

        now = self._clock()
        lines = [f"📋 **Pending Approvals ({len(pending)})**", ""]
        for approval in pending:
            lines.extend([
                f"**{approval.approval_id}**",
                f"  Provider: {approval.provider}",
                f"  Data Type: {approval.data_type}",
                f"  Records: {approval.metadata.record_count}",
                f"  Size: {format_bytes(approval.metadata.byte_size)}",
                f"  Expires: {time_until_expiry(approval.expires_at, now)}",
                f"  Commands: `give lick of approval {approval.approval_id}` or `deny {approval.approval_id}`",
                "",
            ])
        return CommandResult(True, "\n".join(lines),
                             {"pending": [a.to_dict(include_payload=False) for a in pending]})

    def _show(self, approval_id: str) -> CommandResult:
        approval = self.registry.get(approval_id)
        if approval is None:
            error = ApprovalNotFound(approval_id)
            return CommandResult(False, error.message, {"error": error.to_dict()})

        lines = [
            "📄 **Approval Details**",
            "",
            f"**ID:** {approval.approval_id}",
            f"**Request ID:** {approval.request_id}",
            f"**Provider:** {approval.provider}",
            f"**Data Type:** {approval.data_type}",
            f"**Status:** {approval.status.value}",
            f"**Records:** {approval.metadata.record_count}",
            f"**Size:** {format_bytes(approval.metadata.byte_size)}",
            f"**Received:** {approval.created_at.isoformat()}",
            f"**Expires:** {time_until_expiry(approval.expires_at, self._clock())}",
        ]
        user = approval.metadata.source_metadata.get("authenticatedUser")
        if user:
            lines.append(f"**Authenticated User:** {user}")
        if approval.status.value == "pending":
            lines.extend([
                "",
                "**Commands:**",
                f"- `give lick of approval {approval.approval_id}` - Red Dog approves! 🐕👅",
                f"- `deny {approval.approval_id} <reason>` - Reject this data",
            ])
        return CommandResult(True, "\n".join(lines), {"approval": approval.to_dict(include_payload=False)})
