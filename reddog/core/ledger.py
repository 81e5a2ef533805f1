"""
Credit ledger - prepaid balances that meter access to the data service.

Reads go through a TTL cache; every mutation is one atomic conditional
statement in the store followed by a synchronous cache invalidation.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from .cache import BalanceCache
from .config import (
    FAIL_POLICIES, get_cache_ttl, get_fail_policy, get_low_balance_threshold, is_billing_enabled
)
from .dao import LedgerStore
from .errors import (
    AccountInactive, AccountNotFound, ConfigurationError, InsufficientCredits, TransientStorageError
)
from .pricing import (
    OPERATION_PRICES, PLAN_CREDITS, CREDIT_PACKAGES,
    credits_for_package, plan_credits, price_for, pricing_table, require_positive_amount
)
from .schema import (
    AccountStatus, BalanceInfo, BillingSummary, ConsumeResult, CreditResult, FundsCheck, LowBalanceAlert
)
from ..util.logging import logger

# FundsCheck reasons
INSUFFICIENT_CREDITS = "insufficient_credits"
ACCOUNT_INACTIVE = "account_inactive"
ACCOUNT_NOT_FOUND = "account_not_found"
STORAGE_UNAVAILABLE = "storage_unavailable"
BILLING_DISABLED = "billing_disabled"


class MeteredCall:
    """Handle yielded by CreditLedger.metered(); `result` is set once the charge lands."""

    def __init__(self, check: FundsCheck):
        self.check = check
        self.result: Optional[ConsumeResult] = None


class CreditLedger:
    """Balance reads, funds checks and atomic debits/credits for accounts."""

    def __init__(self, store: LedgerStore, cache: Optional[BalanceCache] = None,
                 fail_policy: Optional[str] = None, billing_enabled: Optional[bool] = None,
                 low_balance_threshold: Optional[int] = None):
        self.store = store
        self.cache = cache if cache is not None else BalanceCache(get_cache_ttl())
        self.fail_policy = (fail_policy or get_fail_policy()).lower()
        if self.fail_policy not in FAIL_POLICIES:
            raise ConfigurationError(
                f"Invalid fail policy: {self.fail_policy}. Must be one of: {FAIL_POLICIES}"
            )
        self.billing_enabled = is_billing_enabled() if billing_enabled is None else billing_enabled
        self.low_balance_threshold = (
            get_low_balance_threshold() if low_balance_threshold is None else low_balance_threshold
        )

    # Reads

    def get_balance(self, account_id: str) -> BalanceInfo:
        """Current balance, plan and status. Raises AccountNotFound or TransientStorageError."""
        cached = self.cache.get(account_id)
        if cached is not None:
            return cached

        generation = self.cache.generation()
        account = self.store.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)

        info = BalanceInfo(
            balance=account.balance,
            plan=account.plan,
            status=account.status,
            updated_at=account.updated_at,
        )
        self.cache.put(account_id, info, generation)
        return info

    def check_funds(self, account_id: str, amount: Optional[int] = None,
                    operation: Optional[str] = None) -> FundsCheck:
        """
        Advisory check that an operation could be paid for.

        Never mutates. A missing account or unreachable storage is decided
        by the fail policy: "open" allows with degraded=True, "closed" denies.
        Only consume() is authoritative.
        """
        if amount is None and operation is None:
            raise ValueError("check_funds needs an operation or an explicit amount")
        required = price_for(operation, amount)

        if not self.billing_enabled:
            return FundsCheck(allowed=True, required=required, reason=BILLING_DISABLED, degraded=True)

        try:
            info = self.get_balance(account_id)
        except AccountNotFound:
            check = self._apply_fail_policy(required, ACCOUNT_NOT_FOUND)
            logger.log_funds_check(account_id, required, check.allowed, check.reason, degraded=True)
            return check
        except TransientStorageError:
            check = self._apply_fail_policy(required, STORAGE_UNAVAILABLE)
            logger.log_funds_check(account_id, required, check.allowed, check.reason, degraded=True)
            return check

        if info.status != AccountStatus.ACTIVE.value:
            check = FundsCheck(allowed=False, required=required, available=info.balance,
                               reason=ACCOUNT_INACTIVE, status=info.status)
        elif info.balance < required:
            check = FundsCheck(allowed=False, required=required, available=info.balance,
                               reason=INSUFFICIENT_CREDITS, status=info.status)
        else:
            check = FundsCheck(allowed=True, required=required, available=info.balance, status=info.status)

        logger.log_funds_check(account_id, required, check.allowed, check.reason)
        return check

    def _apply_fail_policy(self, required: int, reason: str) -> FundsCheck:
        return FundsCheck(
            allowed=self.fail_policy == "open",
            required=required,
            reason=reason,
            degraded=True,
        )

    # Mutations

    def consume(self, account_id: str, operation: str, amount: Optional[int] = None,
                metadata: Optional[Dict[str, Any]] = None) -> ConsumeResult:
        """
        Atomically debit credits for a billable operation.

        Raises InsufficientCredits, AccountInactive, AccountNotFound or
        TransientStorageError; on any of them the balance is unchanged.
        """
        required = price_for(operation, amount)

        if not self.billing_enabled:
            logger.log_ledger_operation("consume", account_id, 0, "bypassed",
                                        {"operation": operation, "reason": BILLING_DISABLED})
            return ConsumeResult(consumed=0, remaining_balance=None)

        try:
            transaction = self.store.debit(account_id, required, operation, metadata)
        except (InsufficientCredits, AccountInactive, AccountNotFound) as e:
            logger.log_ledger_operation("consume", account_id, required, "rejected",
                                        {"operation": operation, "error": e.error_type})
            raise
        finally:
            self.cache.invalidate(account_id)

        logger.log_ledger_operation("consume", account_id, required, details={
            "operation": operation,
            "balance_after": transaction.balance_after,
            "transaction_id": transaction.id,
        })
        return ConsumeResult(
            consumed=required,
            remaining_balance=transaction.balance_after,
            transaction_id=transaction.id,
        )

    def credit(self, account_id: str, amount: int, source: str,
               metadata: Optional[Dict[str, Any]] = None) -> CreditResult:
        """Add credits from a payment, subscription renewal or admin grant."""
        require_positive_amount(amount)
        if not source:
            raise ValueError("Credit source is required")

        try:
            transaction = self.store.credit(account_id, amount, source, metadata)
        finally:
            self.cache.invalidate(account_id)

        logger.log_ledger_operation("credit", account_id, amount, details={
            "source": source,
            "balance_after": transaction.balance_after,
            "transaction_id": transaction.id,
        })
        return CreditResult(added=amount, new_balance=transaction.balance_after,
                            transaction_id=transaction.id)

    def summary(self, account_id: str, limit: int = 20) -> BillingSummary:
        account = self.store.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)

        return BillingSummary(
            account=account,
            transactions=self.store.list_transactions(account_id, limit),
            pricing=pricing_table(),
        )

    # Account lifecycle

    def create_account(self, account_id: str, email: str, name: str = "", plan: str = "starter"):
        """Provision an active account with its plan's initial credits."""
        if not account_id:
            raise ValueError("account_id is required")
        if not email:
            raise ValueError("email is required")
        credits = plan_credits(plan)

        try:
            account = self.store.create_account(account_id, email, name, plan, credits)
        finally:
            self.cache.invalidate(account_id)

        logger.log_ledger_operation("create_account", account_id, credits, details={"plan": plan})
        return account

    def set_status(self, account_id: str, status: str):
        """Deactivate, suspend or reactivate an account. Accounts are never deleted."""
        valid = [s.value for s in AccountStatus]
        if status not in valid:
            raise ValueError(f"Invalid status: {status}. Must be one of: {valid}")

        try:
            account = self.store.set_status(account_id, status)
        finally:
            self.cache.invalidate(account_id)

        logger.log_ledger_operation("set_status", account_id, details={"status": status})
        return account

    def renew_subscription(self, account_id: str) -> CreditResult:
        """Grant the account's monthly plan credits."""
        account = self.store.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return self.credit(account_id, plan_credits(account.plan), "subscription", {"plan": account.plan})

    def credits_for_package(self, usd: int) -> int:
        return credits_for_package(usd)

    def check_low_balance(self, account_id: str) -> LowBalanceAlert:
        info = self.get_balance(account_id)
        alert = info.status == AccountStatus.ACTIVE.value and info.balance < self.low_balance_threshold
        if alert:
            logger.log_low_balance(account_id, info.balance, self.low_balance_threshold)
        return LowBalanceAlert(alert=alert, balance=info.balance, threshold=self.low_balance_threshold)

    # Front door

    @contextmanager
    def metered(self, account_id: str, operation: str, amount: Optional[int] = None,
                metadata: Optional[Dict[str, Any]] = None) -> Iterator[MeteredCall]:
        """
        Gate a block on available credits and charge for it once it succeeds.

            with ledger.metered(account_id, "farm_query") as call:
                rows = run_query()
            call.result.remaining_balance

        A denied check raises before the block runs. If the block raises,
        nothing is charged.
        """
        check = self.check_funds(account_id, amount=amount, operation=operation)
        if not check.allowed:
            self._raise_for_denied(account_id, check)

        call = MeteredCall(check)
        yield call

        try:
            call.result = self.consume(account_id, operation, amount, metadata)
        except (AccountNotFound, TransientStorageError) as e:
            if not check.degraded:
                raise
            # The check already let this through under the open policy
            logger.log_ledger_operation("consume", account_id, check.required, "unbilled",
                                        {"operation": operation, "error": e.error_type})

    @staticmethod
    def _raise_for_denied(account_id: str, check: FundsCheck):
        if check.reason == INSUFFICIENT_CREDITS:
            raise InsufficientCredits(required=check.required, available=check.available)
        if check.reason == ACCOUNT_INACTIVE:
            raise AccountInactive(account_id, check.status or AccountStatus.INACTIVE.value)
        if check.reason == ACCOUNT_NOT_FOUND:
            raise AccountNotFound(account_id)
        raise TransientStorageError("Ledger storage unavailable", {"account_id": account_id})

    def get_status(self) -> Dict[str, Any]:
        """Billing feature status for health endpoints."""
        return {
            "enabled": self.billing_enabled,
            "fail_policy": self.fail_policy,
            "cache": self.cache.stats(),
            "low_balance_threshold": self.low_balance_threshold,
            "supported_operations": list(OPERATION_PRICES),
            "plans": list(PLAN_CREDITS),
            "credit_packages": sorted(CREDIT_PACKAGES),
        }
