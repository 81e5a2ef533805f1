"""
Data access for the ledger store and the approval audit store.

All SQL lives here. Balance mutations are single conditional statements
inside one write transaction, paired with their transaction row.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .db import get_db, write_transaction
from .errors import AccountExists, AccountNotFound, AccountInactive, InsufficientCredits
from .schema import Account, ApprovalRequest, Transaction, AccountStatus, dump_json, utcnow

ACCOUNT_COLUMNS = "account_id, email, name, plan, balance, status, created_at, updated_at"
TRANSACTION_COLUMNS = "id, account_id, amount, operation, source, balance_before, balance_after, metadata, created_at"


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_metadata(value: Optional[str]) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, ValueError):
        return {"raw_data": value}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        account_id=row["account_id"],
        email=row["email"],
        name=row["name"],
        plan=row["plan"],
        balance=row["balance"],
        status=row["status"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        account_id=row["account_id"],
        amount=row["amount"],
        operation=row["operation"],
        source=row["source"],
        balance_before=row["balance_before"],
        balance_after=row["balance_after"],
        metadata=_parse_metadata(row["metadata"]),
        created_at=_parse_ts(row["created_at"]),
    )


class LedgerStore:
    """Durable account balances and the append-only transaction log."""

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.db_path = db_path
        self.timeout = timeout
        self._clock = clock

    def _connect(self):
        return get_db(self.db_path, self.timeout)

    def create_account(self, account_id: str, email: str, name: str, plan: str,
                       initial_credits: int) -> Account:
        """Insert a new active account, recording the plan grant as its first transaction."""
        now = self._clock().isoformat()
        try:
            with self._connect() as conn, write_transaction(conn):
                conn.execute(
                    f"INSERT INTO accounts ({ACCOUNT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (account_id, email, name, plan, initial_credits, AccountStatus.ACTIVE.value, now, now)
                )
                if initial_credits > 0:
                    self._insert_transaction(
                        conn, account_id, initial_credits, "credit_added", "plan_grant",
                        0, initial_credits, {"plan": plan}, now
                    )
        except sqlite3.IntegrityError as e:
            raise AccountExists(account_id) from e

        return self.get_account(account_id)

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE account_id = ?",
                (account_id,)
            ).fetchone()
        return _row_to_account(row) if row else None

    def set_status(self, account_id: str, status: str) -> Account:
        now = self._clock().isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE accounts SET status = ?, updated_at = ? WHERE account_id = ?",
                (status, now, account_id)
            )
            if cursor.rowcount != 1:
                raise AccountNotFound(account_id)
        return self.get_account(account_id)

    def debit(self, account_id: str, amount: int, operation: str,
              metadata: Optional[Dict[str, Any]] = None) -> Transaction:
        """
        Atomically debit an active account.

        The guard `balance >= amount` lives in the UPDATE itself; an affected
        row count other than 1 means nothing changed and we only work out why.
        """
        now = self._clock().isoformat()
        with self._connect() as conn, write_transaction(conn):
            cursor = conn.execute(
                """
                UPDATE accounts
                SET balance = balance - ?, updated_at = ?
                WHERE account_id = ? AND status = 'active' AND balance >= ?
                """,
                (amount, now, account_id, amount)
            )
            if cursor.rowcount != 1:
                row = conn.execute(
                    "SELECT balance, status FROM accounts WHERE account_id = ?",
                    (account_id,)
                ).fetchone()
                if row is None:
                    raise AccountNotFound(account_id)
                if row["status"] != AccountStatus.ACTIVE.value:
                    raise AccountInactive(account_id, row["status"])
                raise InsufficientCredits(required=amount, available=row["balance"])

            balance_after = self._current_balance(conn, account_id)
            return self._insert_transaction(
                conn, account_id, -amount, operation, None,
                balance_after + amount, balance_after, metadata, now
            )

    def credit(self, account_id: str, amount: int, source: str,
               metadata: Optional[Dict[str, Any]] = None) -> Transaction:
        """Atomically add credits to an existing account."""
        now = self._clock().isoformat()
        with self._connect() as conn, write_transaction(conn):
            cursor = conn.execute(
                "UPDATE accounts SET balance = balance + ?, updated_at = ? WHERE account_id = ?",
                (amount, now, account_id)
            )
            if cursor.rowcount != 1:
                raise AccountNotFound(account_id)

            balance_after = self._current_balance(conn, account_id)
            return self._insert_transaction(
                conn, account_id, amount, "credit_added", source,
                balance_after - amount, balance_after, metadata, now
            )

    def list_transactions(self, account_id: str, limit: int = 20) -> List[Transaction]:
        """Most recent transactions first."""
        if limit <= 0:
            return []
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE account_id = ? ORDER BY id DESC LIMIT ?",
                (account_id, limit)
            ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    @staticmethod
    def _current_balance(conn: sqlite3.Connection, account_id: str) -> int:
        return conn.execute(
            "SELECT balance FROM accounts WHERE account_id = ?", (account_id,)
        ).fetchone()["balance"]

    @staticmethod
    def _insert_transaction(conn: sqlite3.Connection, account_id: str, amount: int, operation: str,
                            source: Optional[str], balance_before: int, balance_after: int,
                            metadata: Optional[Dict[str, Any]], created_at: str) -> Transaction:
        cursor = conn.execute(
            """
            INSERT INTO transactions
            (account_id, amount, operation, source, balance_before, balance_after, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (account_id, amount, operation, source, balance_before, balance_after,
             dump_json(metadata or {}), created_at)
        )
        return Transaction(
            id=cursor.lastrowid,
            account_id=account_id,
            amount=amount,
            operation=operation,
            source=source,
            balance_before=balance_before,
            balance_after=balance_after,
            metadata=dict(metadata or {}),
            created_at=datetime.fromisoformat(created_at),
        )


class ApprovalAuditStore:
    """Durable audit trail of approval requests, one row per request."""

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        self.db_path = db_path
        self.timeout = timeout

    def _connect(self):
        return get_db(self.db_path, self.timeout)

    def record_created(self, request: ApprovalRequest):
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO approvals
                (approval_id, request_id, provider, data_type, status, record_count, byte_size,
                 metadata, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request.approval_id,
                    request.request_id,
                    request.provider,
                    request.data_type,
                    request.status.value,
                    request.metadata.record_count,
                    request.metadata.byte_size,
                    dump_json(request.metadata.source_metadata),
                    request.created_at.isoformat(),
                    request.expires_at.isoformat(),
                )
            )

    def record_transition(self, approval_id: str, status: str, decided_by: Optional[str],
                          decided_at: datetime, denial_reason: Optional[str] = None) -> bool:
        """Move a pending row to a terminal status. Returns False if no pending row matched."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE approvals
                SET status = ?, decided_by = ?, decided_at = ?, denial_reason = ?
                WHERE approval_id = ? AND status = 'pending'
                """,
                (status, decided_by, decided_at.isoformat(), denial_reason, approval_id)
            )
            return cursor.rowcount == 1

    def expire_overdue(self, now: datetime, exclude: Iterable[str] = ()) -> List[str]:
        """
        Move pending rows whose deadline has passed to expired.

        Rows in `exclude` are skipped; the registry expires those itself.
        Returns the approval ids that were expired.
        """
        skip = set(exclude)
        expired = []
        with self._connect() as conn, write_transaction(conn):
            rows = conn.execute(
                "SELECT approval_id, expires_at FROM approvals WHERE status = 'pending'"
            ).fetchall()
            for row in rows:
                if row["approval_id"] in skip or datetime.fromisoformat(row["expires_at"]) > now:
                    continue
                cursor = conn.execute(
                    """
                    UPDATE approvals SET status = 'expired', decided_at = ?
                    WHERE approval_id = ? AND status = 'pending'
                    """,
                    (now.isoformat(), row["approval_id"])
                )
                if cursor.rowcount == 1:
                    expired.append(row["approval_id"])
        return expired

    def get(self, approval_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM approvals WHERE approval_id = ?", (approval_id,)).fetchone()
        if row is None:
            return None
        record = dict(row)
        record["metadata"] = _parse_metadata(record["metadata"])
        return record

    def list(self, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            if status:
                rows = conn.execute(
                    "SELECT * FROM approvals WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                    (status, limit)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM approvals ORDER BY created_at DESC LIMIT ?", (limit,)
                ).fetchall()
        records = []
        for row in rows:
            record = dict(row)
            record["metadata"] = _parse_metadata(record["metadata"])
            records.append(record)
        return records
