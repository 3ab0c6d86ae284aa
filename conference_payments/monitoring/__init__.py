"""Monitoring and observability package."""
from .logging import redact_sensitive_fields, setup_logging

__all__ = ["redact_sensitive_fields", "setup_logging"]
