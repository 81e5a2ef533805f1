"""
Static pricing table for farm data services.

Prices are configuration, not derived state. One credit is the smallest
billable unit.
"""

from typing import Any, Dict, Optional

# Credits per operation
OPERATION_PRICES: Dict[str, int] = {
    "farm_query": 2,       # Farm data query operation
    "api_call": 1,         # API call per request
    "schema_request": 1,   # Database schema request
    "export_data": 5,      # Data export operation
    "chat_message": 1,     # Chat completion turn
}

# Credits granted per month by plan
PLAN_CREDITS: Dict[str, int] = {
    "starter": 1000,        # $10/month - Basic farm data access
    "professional": 5000,   # $50/month - Advanced analytics
    "enterprise": 20000,    # $200/month - Full enterprise access
}

# USD package -> credits
CREDIT_PACKAGES: Dict[int, int] = {
    100: 120,
    500: 650,
    1000: 1400,
    5000: 8000,
}


def require_positive_amount(amount: Any, name: str = "amount") -> int:
    """Credits are whole, positive numbers."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{name} must be an integer number of credits: {amount!r}")
    if amount <= 0:
        raise ValueError(f"{name} must be positive: {amount}")
    return amount


def price_for(operation: str, amount: Optional[int] = None) -> int:
    """Resolve the credits to charge for an operation."""
    if amount is not None:
        return require_positive_amount(amount)

    if operation not in OPERATION_PRICES:
        raise ValueError(f"Unknown billable operation: {operation}")
    return OPERATION_PRICES[operation]


def plan_credits(plan: str) -> int:
    if plan not in PLAN_CREDITS:
        raise ValueError(f"Invalid plan: {plan}. Must be one of: {list(PLAN_CREDITS)}")
    return PLAN_CREDITS[plan]


def credits_for_package(usd: int) -> int:
    if usd not in CREDIT_PACKAGES:
        raise ValueError(f"Unknown credit package: ${usd}")
    return CREDIT_PACKAGES[usd]


def pricing_table() -> Dict[str, Any]:
    return {
        "operations": dict(OPERATION_PRICES),
        "plans": dict(PLAN_CREDITS),
        "packages": {str(k): v for k, v in CREDIT_PACKAGES.items()},
    }
