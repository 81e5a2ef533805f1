"""
Service wiring - builds and owns every stateful component.

Nothing in the core keeps module-level instances; the HTTP app and the
scripts each hold one Services object for their lifetime.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .approval import ApprovalRegistry
from .bridge import InMemoryBridge, NotificationBridge, PAYMENT_CONFIRMED, PROVIDER_DATA_READY
from .cache import BalanceCache
from .commands import ApprovalCommands
from .config import (
    get_cache_ttl, get_db_path, get_payload_store_dir, get_storage_timeout,
    validate_approval_config, validate_billing_config
)
from .dao import ApprovalAuditStore, LedgerStore
from .db import init_db
from .errors import ConfigurationError
from .heartbeat import Heartbeat, register_sweep
from .ledger import CreditLedger
from .schema import CreditResult, DatasetEvent, EnqueueResult, utcnow
from .storage import LocalPayloadStore, PayloadStore

DEFAULT_PAYMENT_SOURCE = "stripe_payment"


@dataclass
class Services:
    db_path: str
    ledger: CreditLedger
    registry: ApprovalRegistry
    commands: ApprovalCommands
    bridge: NotificationBridge
    payload_store: PayloadStore
    heartbeat: Heartbeat

    def handle_dataset_ready(self, body: Dict[str, Any]) -> EnqueueResult:
        return self.registry.enqueue(DatasetEvent.from_message(body))

    def handle_payment_confirmed(self, body: Dict[str, Any]) -> CreditResult:
        """Apply an opaque payment confirmation: {accountId, credits, source}."""
        account_id = body.get("accountId")
        if not account_id:
            raise ValueError("Payment confirmation missing accountId")
        return self.ledger.credit(
            account_id,
            body.get("credits"),
            body.get("source") or DEFAULT_PAYMENT_SOURCE,
            {k: v for k, v in body.items() if k not in ("accountId", "credits", "source")},
        )


def build_services(db_path: Optional[str] = None, bridge: Optional[NotificationBridge] = None,
                   payload_store: Optional[PayloadStore] = None, fail_policy: Optional[str] = None,
                   billing_enabled: Optional[bool] = None, cache_ttl: Optional[float] = None,
                   approval_timeout: Optional[int] = None, clock: Callable[[], datetime] = utcnow,
                   schedule_sweep: bool = True) -> Services:
    """Create the database, stores and components, and wire bridge handlers."""
    issues = validate_billing_config() + validate_approval_config()
    if issues:
        raise ConfigurationError(f"Invalid configuration: {issues}", {"issues": issues})

    path = db_path or get_db_path()
    init_db(path)

    timeout = get_storage_timeout()
    ledger = CreditLedger(
        LedgerStore(path, timeout, clock=clock),
        BalanceCache(get_cache_ttl() if cache_ttl is None else cache_ttl),
        fail_policy=fail_policy,
        billing_enabled=billing_enabled,
    )
    registry = ApprovalRegistry(ApprovalAuditStore(path, timeout), approval_timeout, clock=clock)
    bridge = bridge or InMemoryBridge()
    payload_store = payload_store or LocalPayloadStore(get_payload_store_dir(), clock=clock)

    services = Services(
        db_path=path,
        ledger=ledger,
        registry=registry,
        commands=ApprovalCommands(registry, payload_store, bridge, clock=clock),
        bridge=bridge,
        payload_store=payload_store,
        heartbeat=Heartbeat(),
    )

    bridge.subscribe(PROVIDER_DATA_READY, services.handle_dataset_ready)
    bridge.subscribe(PAYMENT_CONFIRMED, services.handle_payment_confirmed)

    if schedule_sweep:
        register_sweep(services.heartbeat, registry)

    return services
