"""
Service configuration - environment driven, read once at import.

Getter functions re-read the environment so tests and scripts can flip
settings without reloading the module.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/reddog.db")
STORAGE_TIMEOUT_SEC = float(os.getenv("STORAGE_TIMEOUT_SEC", "5.0"))

DEBUG = os.getenv("DEBUG", "true").lower() == "true"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")  # development|production

# Credit ledger
BILLING_ENABLED = os.getenv("BILLING_ENABLED", "true").lower() == "true"
CREDIT_CACHE_TTL_SEC = int(os.getenv("CREDIT_CACHE_TTL_SEC", "300"))  # 5 minutes
LOW_BALANCE_THRESHOLD = int(os.getenv("LOW_BALANCE_THRESHOLD", "100"))

# Approval registry
APPROVAL_TIMEOUT_SEC = int(os.getenv("APPROVAL_TIMEOUT_SEC", "86400"))  # 24 hours
APPROVAL_SWEEP_ENABLED = os.getenv("APPROVAL_SWEEP_ENABLED", "true").lower() == "true"
APPROVAL_SWEEP_INTERVAL_SEC = int(os.getenv("APPROVAL_SWEEP_INTERVAL_SEC", "3600"))
PAYLOAD_STORE_DIR = os.getenv("PAYLOAD_STORE_DIR", "./data/provider-data")

# HTTP front door
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "3001"))

VERSION = "1.0.0"

FAIL_POLICIES = ["open", "closed"]


def get_db_path() -> str:
    """Current database path."""
    return os.getenv("DB_PATH", DB_PATH)


def get_storage_timeout() -> float:
    return float(os.getenv("STORAGE_TIMEOUT_SEC", str(STORAGE_TIMEOUT_SEC)))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def is_production():
    return os.getenv("ENVIRONMENT", ENVIRONMENT).lower() == "production"


def is_billing_enabled():
    return os.getenv("BILLING_ENABLED", "true" if BILLING_ENABLED else "false").lower() == "true"


def get_fail_policy() -> str:
    """
    Policy for check_funds when the account is missing or storage is down.

    An explicit BILLING_FAIL_POLICY always wins; otherwise production
    fails closed and everything else fails open.
    """
    explicit = os.getenv("BILLING_FAIL_POLICY")
    if explicit:
        return explicit.lower()
    return "closed" if is_production() else "open"


def get_cache_ttl() -> int:
    return int(os.getenv("CREDIT_CACHE_TTL_SEC", str(CREDIT_CACHE_TTL_SEC)))


def get_low_balance_threshold() -> int:
    return int(os.getenv("LOW_BALANCE_THRESHOLD", str(LOW_BALANCE_THRESHOLD)))


def get_approval_timeout() -> int:
    return int(os.getenv("APPROVAL_TIMEOUT_SEC", str(APPROVAL_TIMEOUT_SEC)))


def is_sweep_enabled():
    return os.getenv("APPROVAL_SWEEP_ENABLED", "true" if APPROVAL_SWEEP_ENABLED else "false").lower() == "true"


def get_sweep_interval() -> int:
    return int(os.getenv("APPROVAL_SWEEP_INTERVAL_SEC", str(APPROVAL_SWEEP_INTERVAL_SEC)))


def get_payload_store_dir() -> str:
    return os.getenv("PAYLOAD_STORE_DIR", PAYLOAD_STORE_DIR)


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_billing_config():
    """Validate billing configuration and return any issues."""
    issues = []

    if get_fail_policy() not in FAIL_POLICIES:
        issues.append(f"Invalid BILLING_FAIL_POLICY: {get_fail_policy()}")

    if get_cache_ttl() < 0:
        issues.append("CREDIT_CACHE_TTL_SEC must be >= 0")

    if get_storage_timeout() <= 0:
        issues.append("STORAGE_TIMEOUT_SEC must be > 0")

    if is_production() and get_fail_policy() == "open":
        issues.append("BILLING_FAIL_POLICY=open is not allowed when ENVIRONMENT=production")

    return issues


def validate_approval_config():
    """Validate approval registry configuration and return any issues."""
    issues = []

    if get_approval_timeout() < 1:
        issues.append("APPROVAL_TIMEOUT_SEC must be >= 1")

    if get_sweep_interval() < 1:
        issues.append("APPROVAL_SWEEP_INTERVAL_SEC must be >= 1")

    return issues
