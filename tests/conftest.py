"""
Shared fixtures: temporary databases, controllable clocks and wired services.
"""

import pytest
from datetime import datetime, timedelta, timezone

from reddog.core.approval import ApprovalRegistry
from reddog.core.bridge import InMemoryBridge
from reddog.core.cache import BalanceCache
from reddog.core.dao import ApprovalAuditStore, LedgerStore
from reddog.core.db import init_db
from reddog.core.ledger import CreditLedger
from reddog.core.service import build_services
from reddog.core.storage import LocalPayloadStore

STORAGE_TIMEOUT = 30.0


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep tests independent of the developer's environment."""
    for key in ("ENVIRONMENT", "BILLING_FAIL_POLICY", "BILLING_ENABLED", "APPROVAL_SWEEP_ENABLED",
                "APPROVAL_TIMEOUT_SEC", "APPROVAL_SWEEP_INTERVAL_SEC", "CREDIT_CACHE_TTL_SEC"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "reddog-test.db")
    init_db(path)
    return path


@pytest.fixture
def ledger_store(db_path):
    return LedgerStore(db_path, STORAGE_TIMEOUT)


@pytest.fixture
def ledger(ledger_store):
    return CreditLedger(ledger_store, BalanceCache(300), fail_policy="closed", billing_enabled=True)


@pytest.fixture
def audit_store(db_path):
    return ApprovalAuditStore(db_path, STORAGE_TIMEOUT)


@pytest.fixture
def registry(audit_store, clock):
    return ApprovalRegistry(audit_store, timeout_sec=86400, clock=clock)


@pytest.fixture
def payload_store(tmp_path, clock):
    return LocalPayloadStore(tmp_path / "provider-data", clock=clock)


@pytest.fixture
def services(db_path, payload_store, clock):
    return build_services(
        db_path,
        bridge=InMemoryBridge(),
        payload_store=payload_store,
        fail_policy="closed",
        billing_enabled=True,
        approval_timeout=86400,
        clock=clock,
    )


def dataset_body(payload=None, **overrides):
    """A provider-data-ready message body."""
    body = {
        "provider": "john-deere",
        "dataType": "field-boundaries",
        "requestId": "req-001",
        "payload": payload if payload is not None else [{"field": "north"}, {"field": "south"}, {"field": "east"}],
        "sourceMetadata": {"authenticatedUser": "farmer@example.com"},
    }
    body.update(overrides)
    return body
