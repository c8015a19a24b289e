"""redaction.py

Purpose: Detect and redact PII in request snapshots and plan content

Key Components:
  class DataSanitizer: sanitize(data) -> data, detect(text) -> entity types
  PII_PATTERNS: Dict[str, re.Pattern]

Technology Stack:
  presidio-analyzer, regex
"""

import logging
import re
from typing import Any, Dict, List, Optional

from presidio_analyzer import AnalyzerEngine

from decisioncore.models.interfaces import ISanitizer


# Contact-level PII that may appear in CRM action arguments
PII_PATTERNS: Dict[str, re.Pattern] = {
    "US_SSN": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "CREDIT_CARD": re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
    "EMAIL_ADDRESS": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "PHONE_NUMBER": re.compile(r"\(\d{3}\)\s?\d{3}-\d{4}\b"),
    "STREET_ADDRESS": re.compile(
        r"\b\d{1,5}\s+\w+\s+(Street|St|Avenue|Ave|Road|Rd|Drive|Dr|Lane|Ln|Boulevard|Blvd)\b"
    ),
}

PRESIDIO_ENTITIES = ["US_SSN", "CREDIT_CARD", "EMAIL_ADDRESS", "PHONE_NUMBER", "IBAN_CODE", "PERSON"]
PRESIDIO_SCORE_THRESHOLD = 0.6


class DataSanitizer(ISanitizer):
    """Sanitizes PII from text and nested data

    Regex patterns always run. Presidio runs on top of them when enabled
    and its analyzer initializes; otherwise sanitization is regex-only.
    """

    def __init__(self, use_presidio: bool = True, language: str = "en"):
        self.logger = logging.getLogger(__name__)
        self.language = language
        self.analyzer: Optional[AnalyzerEngine] = None

        if use_presidio:
            try:
                self.analyzer = AnalyzerEngine()
            except Exception as e:
                # NLP model missing or not loadable
                self.logger.warning(f"Failed to initialize Presidio, using regex-only PII detection: {e}")
                self.analyzer = None

    def detect(self, text: str) -> List[str]:
        """Return the sorted PII entity types present in text."""
        if not text:
            return []
        found = {name for name, pattern in PII_PATTERNS.items() if pattern.search(text)}
        if self.analyzer is not None:
            for result in self._analyze(text):
                found.add(result.entity_type)
        return sorted(found)

    def is_sensitive(self, text: str) -> bool:
        return bool(self.detect(text))

    def sanitize(self, data: Any) -> Any:
        """Redact PII from strings inside dicts, lists and tuples.

        Non-string scalars are returned unchanged.
        """
        if isinstance(data, str):
            return self._sanitize_text(data)
        if isinstance(data, dict):
            return {key: self.sanitize(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self.sanitize(item) for item in data]
        if isinstance(data, tuple):
            return tuple(self.sanitize(item) for item in data)
        return data

    def _sanitize_text(self, text: str) -> str:
        if not text:
            return text
        sanitized = text
        for name, pattern in PII_PATTERNS.items():
            sanitized = pattern.sub(f"[{name}_REDACTED]", sanitized)
        if self.analyzer is not None:
            sanitized = self._apply_presidio(sanitized)
        return sanitized

    def _analyze(self, text: str) -> list:
        try:
            results = self.analyzer.analyze(text=text, entities=PRESIDIO_ENTITIES, language=self.language)
        except Exception as e:
            self.logger.warning(f"Presidio analysis failed, regex results only: {e}")
            return []
        return [r for r in results if r.score >= PRESIDIO_SCORE_THRESHOLD]

    def _apply_presidio(self, text: str) -> str:
        results = self._analyze(text)
        # replace from the end so earlier offsets stay valid; skip overlaps
        cutoff = len(text)
        for result in sorted(results, key=lambda r: r.start, reverse=True):
            if result.end > cutoff:
                continue
            text = text[:result.start] + f"[{result.entity_type}_REDACTED]" + text[result.end:]
            cutoff = result.start
        return text
