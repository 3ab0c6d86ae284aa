"""
Conference Registration Payments

Drives a registration's payment from unpaid, through a pending gateway
round-trip, to a confirmed or failed state:
1. Ledger store with three lookup paths and gateway-reference uniqueness
2. Payment orchestrator with idempotent gateway confirmations
3. Lazy 24-hour eviction of stalled pending confirmations
4. Append-only audit trail with mandatory card-data redaction
"""

__version__ = "1.0.0"
