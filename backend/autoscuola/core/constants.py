# backend/autoscuola/core/constants.py
"""
Domain constants for the autoscuola engine.

Times are in minutes unless the name says otherwise; money is in cents.
"""

BRAND_NAME = "Autoscuola"

# Scheduling grid
SLOT_MINUTES = 30
MINUTES_PER_DAY = 24 * 60
DEFAULT_TIMEZONE = "Europe/Rome"
DEFAULT_BOOKING_SLOT_DURATIONS = [30, 60]
ALLOWED_BOOKING_SLOT_DURATIONS = [30, 60, 90, 120]

# Repositioning
REPOSITION_HORIZON_DAYS = 14
RETRY_DELAY_MINUTES = 1
REPOSITION_SWEEP_DEFAULT_LIMIT = 50
REPOSITION_SWEEP_MAX_LIMIT = 200
CONFLICT_SCAN_PADDING_DAYS = 1

# Payments
MAX_PAYMENT_ATTEMPTS = 3
PAYMENT_RETRY_DELAYS_MINUTES = [240, 480]
STALE_PROCESSING_MINUTES = 15
PAYMENT_RETRY_SWEEP_LIMIT = 200
DEFAULT_CURRENCY = "EUR"

PENALTY_CUTOFF_HOURS_PRESETS = [1, 2, 4, 6, 12, 24, 48]
DEFAULT_PENALTY_CUTOFF_HOURS = 24
PENALTY_PERCENT_PRESETS = [25, 50, 75, 100]
DEFAULT_PENALTY_PERCENT = 50

DEFAULT_LESSON_PRICE_30_CENTS = 2500
DEFAULT_LESSON_PRICE_60_CENTS = 5000
# Lessons of this length or longer are priced on the hourly rate
HOURLY_PRICE_THRESHOLD_MINUTES = 60

PAYMENT_IDEMPOTENCY_PREFIX = "autoscuola"

# Invoicing
INVOICE_SWEEP_DEFAULT_LIMIT = 100
