# backend/rigaby/core/metrics.py

from prometheus_client import Counter, Histogram
import logging

logger = logging.getLogger(__name__)

# Ledger Metrics
LEDGER_OPERATIONS = Counter(
    "rigaby_ledger_operations_total",
    "Total number of wallet ledger operations",
    ["operation", "outcome"]  # outcome: success, or the error class name
)

LEDGER_OPERATION_DURATION = Histogram(
    "rigaby_ledger_operation_duration_seconds",
    "Wallet ledger operation duration in seconds",
    ["operation"]
)

# Referral Metrics
REFERRAL_BONUSES = Counter(
    "rigaby_referral_bonuses_total",
    "Referral bonus levels processed",
    ["type", "level", "outcome"]  # outcome: paid, failed, duplicate
)

REFERRAL_BONUS_AMOUNT = Counter(
    "rigaby_referral_bonus_amount_total",
    "Sum of referral bonus amounts credited",
    ["type"]
)

def record_ledger_operation(operation: str, outcome: str, duration: float):
    """
    Record the outcome and latency of one ledger operation.
    """
    try:
        LEDGER_OPERATIONS.labels(operation=operation, outcome=outcome).inc()
        LEDGER_OPERATION_DURATION.labels(operation=operation).observe(duration)
    except Exception as e:
        logger.error(f"Failed to record ledger metrics for {operation}: {e}")

def record_referral_bonus(bonus_type: str, level: int, outcome: str, amount=None):
    """
    Record one processed referral bonus level.
    """
    try:
        REFERRAL_BONUSES.labels(type=bonus_type, level=str(level), outcome=outcome).inc()
        if amount is not None and outcome == "paid":
            REFERRAL_BONUS_AMOUNT.labels(type=bonus_type).inc(float(amount))
    except Exception as e:
        logger.error(f"Failed to record referral metrics for level {level}: {e}")
