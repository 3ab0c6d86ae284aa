"""Ledger-level exceptions. The orchestrator converts these into result kinds."""


class LedgerError(Exception):
    """Base exception for ledger storage failures."""

    code = "ledger_error"


class InvalidRecord(LedgerError):
    """Raised when a record is missing its identifier."""

    code = "invalid_record"


class DuplicateGatewayReference(LedgerError):
    """
    Raised when a payment record reuses an indexed gateway reference.

    This is the final backstop of the idempotency guarantee: even if two
    callers race past every status check, only one of them can create a
    transaction for a given reference.
    """

    code = "duplicate_gateway_reference"

    def __init__(self, gateway_reference: str):
        self.gateway_reference = gateway_reference
        super().__init__(f"Duplicate gateway reference: {gateway_reference}")
