"""Application-wide constants for the settlement engine."""

from __future__ import annotations

from decimal import Decimal

BRAND_NAME = "TutorBridge"

# Monetary precision used for every stored amount (NUMERIC(10, 2))
MONEY_QUANTUM = Decimal("0.01")

# Documented fallback fee schedule when no FeePolicy row is active
DEFAULT_FEE_PERCENTAGE = Decimal("2.00")
DEFAULT_MINIMUM_FEE = Decimal("0.50")
DEFAULT_TEACHER_PAYOUT_WAIT_HOURS = 24

# Cancellation / refund timing
CANCELLATION_WINDOW_HOURS = 6
REFUND_SETTLEMENT_DELAY_HOURS = 48
PAYOUT_COMPLETION_DELAY_MINUTES = 1

DEFAULT_CLASS_DURATION_MINUTES = 60
DEFAULT_CURRENCY = "INR"

# Ledger read cache key prefix (Redis)
LEDGER_CACHE_PREFIX = "ledger"
