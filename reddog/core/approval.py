"""
Approval registry - human sign-off for externally sourced datasets.

Each request moves pending -> approved | denied | expired exactly once.
The audit row is written before an in-memory transition is committed, so
an abandoned or failed call leaves the request pending.
"""

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .config import get_approval_timeout
from .dao import ApprovalAuditStore
from .errors import AlreadyProcessed, ApprovalNotFound, Expired, ReddogError
from .schema import (
    ApprovalMetadata, ApprovalRequest, ApprovalStatus, ApprovedPayload, DatasetEvent, EnqueueResult,
    dump_json, utcnow
)
from ..util.logging import logger

DEFAULT_DENIAL_REASON = "No reason provided"


def estimate_record_count(event: DatasetEvent) -> int:
    """
    Number of records in a dataset.

    A count declared by the producer wins. Otherwise fall back to the shape
    of the payload: a list, a `data`/`records` list, or a single record.
    """
    declared = event.record_count
    if declared is None:
        declared = event.source_metadata.get("recordCount")
    if isinstance(declared, int) and not isinstance(declared, bool) and declared >= 0:
        return declared

    payload = event.payload
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict):
        for key in ("data", "records"):
            if isinstance(payload.get(key), list):
                return len(payload[key])
    return 1


def payload_size(payload: Any) -> int:
    """UTF-8 byte length of the compact JSON serialization."""
    return len(dump_json(payload).encode("utf-8"))


class ApprovalRegistry:
    """
    Owned working set of pending approvals.

    The table lock guards membership; each entry's own lock serializes its
    status compare-and-swap, so decisions on different ids run in parallel.
    Decided entries leave the working set; a payload-free copy stays in
    `history` so repeat decisions report AlreadyProcessed.
    """

    def __init__(self, audit: ApprovalAuditStore, timeout_sec: Optional[int] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.audit = audit
        self.timeout_sec = get_approval_timeout() if timeout_sec is None else timeout_sec
        if self.timeout_sec < 1:
            raise ValueError(f"Approval timeout must be >= 1 second: {self.timeout_sec}")
        self._clock = clock
        self._table_lock = threading.Lock()
        self._entries: Dict[str, ApprovalRequest] = {}
        self._entry_locks: Dict[str, threading.Lock] = {}
        self._history: Dict[str, ApprovalRequest] = {}

    def enqueue(self, event: DatasetEvent) -> EnqueueResult:
        """Register a dataset for approval. Audit storage failures propagate."""
        created_at = self._clock()
        request = ApprovalRequest(
            approval_id=f"approval-{uuid.uuid4().hex}",
            request_id=event.request_id,
            provider=event.provider,
            data_type=event.data_type,
            payload=event.payload,
            status=ApprovalStatus.PENDING,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=self.timeout_sec),
            metadata=ApprovalMetadata(
                record_count=estimate_record_count(event),
                byte_size=payload_size(event.payload),
                source_metadata=dict(event.source_metadata),
            ),
        )

        self.audit.record_created(request)
        with self._table_lock:
            self._entries[request.approval_id] = request
            self._entry_locks[request.approval_id] = threading.Lock()

        logger.log_approval_request(request.approval_id, request.provider, request.data_type, {
            "request_id": request.request_id,
            "record_count": request.metadata.record_count,
            "byte_size": request.metadata.byte_size,
        })

        return EnqueueResult(
            approval_id=request.approval_id,
            provider=request.provider,
            data_type=request.data_type,
            record_count=request.metadata.record_count,
            byte_size=request.metadata.byte_size,
            expires_at=request.expires_at,
        )

    def approve(self, approval_id: str, actor: str) -> ApprovedPayload:
        """
        Approve a pending request and hand back its payload.

        Raises ApprovalNotFound, AlreadyProcessed, or Expired (after moving
        an overdue request to expired). Persisting the payload is the
        caller's job.
        """
        request = self._decide(approval_id, ApprovalStatus.APPROVED, actor)
        return ApprovedPayload(
            approval_id=request.approval_id,
            request_id=request.request_id,
            provider=request.provider,
            data_type=request.data_type,
            payload=request.payload,
            metadata=request.metadata,
            approved_by=actor,
            approved_at=request.decided_at,
        )

    def deny(self, approval_id: str, actor: str, reason: str = DEFAULT_DENIAL_REASON) -> ApprovalRequest:
        """Deny a pending request. The payload is dropped; the audit row remains."""
        request = self._decide(approval_id, ApprovalStatus.DENIED, actor, reason or DEFAULT_DENIAL_REASON)
        return request.without_payload()

    def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        """
        Snapshot of a request, or None if it was never enqueued.

        Requests this process does not hold (enqueued before a restart or by
        another process) come back from the audit trail without a payload.
        """
        with self._table_lock:
            request = self._entries.get(approval_id) or self._history.get(approval_id)
            if request is not None:
                return replace(request)

        record = self.audit.get(approval_id)
        return ApprovalRequest.from_audit_record(record) if record else None

    def list_pending(self, provider: Optional[str] = None,
                     data_type: Optional[str] = None) -> List[ApprovalRequest]:
        """Pending requests, oldest first. Both filters must match when given."""
        with self._table_lock:
            pending = [
                replace(r) for r in self._entries.values()
                if (provider is None or r.provider == provider)
                and (data_type is None or r.data_type == data_type)
            ]
        return sorted(pending, key=lambda r: r.created_at)

    def sweep_expired(self) -> int:
        """
        Expire every pending request past its deadline. Returns how many expired.

        A failure on one entry is logged and leaves that entry for the next
        sweep. Overdue audit rows this process does not hold are expired too,
        so the audit trail never keeps a stale pending row.
        """
        now = self._clock()
        with self._table_lock:
            overdue = [
                (approval_id, self._entry_locks[approval_id])
                for approval_id, r in self._entries.items()
                if now >= r.expires_at
            ]

        expired = 0
        for approval_id, lock in overdue:
            with lock:
                with self._table_lock:
                    request = self._entries.get(approval_id)
                if request is None:
                    continue  # decided concurrently
                try:
                    self._commit(request, ApprovalStatus.EXPIRED, None, now)
                except ReddogError as e:
                    logger.error(f"Sweep could not expire {approval_id}: {e.message}")
                    continue
                expired += 1

        expired += self._expire_unheld(now)
        logger.log_sweep(expired, self.pending_count())
        return expired

    def _expire_unheld(self, now: datetime) -> int:
        with self._table_lock:
            held = list(self._entries)
        try:
            approval_ids = self.audit.expire_overdue(now, exclude=held)
        except ReddogError as e:
            logger.error(f"Sweep could not expire unheld audit rows: {e.message}")
            return 0

        for approval_id in approval_ids:
            logger.log_approval_decision(approval_id, ApprovalStatus.EXPIRED.value, "system",
                                         "deadline passed, not held in memory")
        return len(approval_ids)

    def pending_count(self) -> int:
        with self._table_lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, int]:
        """Counts per status across the working set and decided history."""
        stats = {status.value: 0 for status in ApprovalStatus}
        with self._table_lock:
            for request in list(self._entries.values()) + list(self._history.values()):
                stats[request.status.value] += 1
        stats["total"] = sum(stats.values())
        return stats

    def _entry_lock(self, approval_id: str) -> threading.Lock:
        with self._table_lock:
            lock = self._entry_locks.get(approval_id)
            decided = self._history.get(approval_id)
        if lock is not None:
            return lock
        if decided is not None:
            raise AlreadyProcessed(approval_id, decided.status.value)

        record = self.audit.get(approval_id)
        if record is not None and ApprovalStatus(record["status"]).terminal:
            raise AlreadyProcessed(approval_id, record["status"])
        raise ApprovalNotFound(approval_id)

    def _decide(self, approval_id: str, status: ApprovalStatus, actor: str,
                reason: Optional[str] = None) -> ApprovalRequest:
        if not actor:
            raise ValueError("actor is required")

        with self._entry_lock(approval_id):
            with self._table_lock:
                request = self._entries.get(approval_id)
                decided = self._history.get(approval_id)
            if request is None:
                raise AlreadyProcessed(approval_id, decided.status.value if decided else "unknown")

            now = self._clock()
            if now >= request.expires_at:
                self._commit(request, ApprovalStatus.EXPIRED, None, now)
                raise Expired(approval_id)

            decided = self._commit(request, status, actor, now, reason)

        logger.log_approval_decision(approval_id, status.value, actor, reason or "")
        return decided

    def _commit(self, request: ApprovalRequest, status: ApprovalStatus, actor: Optional[str],
                at: datetime, reason: Optional[str] = None) -> ApprovalRequest:
        """Audit first, then swap in the decided copy. Caller holds the entry lock."""
        if not self.audit.record_transition(request.approval_id, status.value, actor, at, reason):
            record = self.audit.get(request.approval_id)
            if record is None:
                raise AlreadyProcessed(request.approval_id, "unknown")
            # decided elsewhere; stop holding it
            if ApprovalStatus(record["status"]).terminal:
                with self._table_lock:
                    self._entries.pop(request.approval_id, None)
                    self._entry_locks.pop(request.approval_id, None)
                    self._history[request.approval_id] = ApprovalRequest.from_audit_record(record)
            raise AlreadyProcessed(request.approval_id, record["status"])

        decided = replace(
            request,
            status=status,
            decided_by=actor,
            decided_at=at,
            denial_reason=reason if status is ApprovalStatus.DENIED else None,
        )
        with self._table_lock:
            self._entries.pop(request.approval_id, None)
            self._entry_locks.pop(request.approval_id, None)
            self._history[request.approval_id] = decided.without_payload()

        if status is ApprovalStatus.EXPIRED:
            logger.log_approval_decision(request.approval_id, status.value, "system", "deadline passed")
        return decided
