"""PII detection and redaction."""

from .redaction import DataSanitizer, PII_PATTERNS

__all__ = ["DataSanitizer", "PII_PATTERNS"]
