"""Application-wide constants for the CareBridge platform."""

from __future__ import annotations

BRAND_NAME = "CareBridge"

DEFAULT_CURRENCY = "INR"

# Query limits
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Resources a provider may touch while assigned to a booking
PROVIDER_BOOKING_RESOURCES = ("HEALTH_RECORD", "HEALTH_METRIC", "DOCTOR_NOTE")
PROVIDER_BOOKING_ACCESS_LEVEL = "READ_WRITE"

AUTO_REJECT_NOTE = "Auto-rejected: all positions filled"

MAX_REVIEW_COMMENT_LENGTH = 1000
