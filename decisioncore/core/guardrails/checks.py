"""Individual guardrail checks.

Each function inspects one aspect of a candidate plan and returns a
``GuardrailCheck``. Messages are PII-free: they describe what was found,
never the content that matched.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from decisioncore.models.context import ParamKind, ParamValue
from decisioncore.models.interfaces import IContentSafetyAnalyzer, ISanitizer
from decisioncore.models.validation import (
    GuardrailAction,
    GuardrailCheck,
    GuardrailSeverity,
    HarmAnalysis,
    RiskClass,
    action_for,
)

logger = logging.getLogger(__name__)


INJECTION_PATTERNS: List[re.Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore\s+(previous|above|all)\s+(instructions?|prompts?|rules?)",
        r"(forget|disregard)\s+(everything|all|instructions?)",
        r"act\s+as\s+(if\s+you\s+are\s+)?(?:a\s+)?(different|new|another)",
        r"pretend\s+(to\s+be|you\s+are)",
        r"(system|admin|root)\s*(prompt|mode|override)",
        r"jailbreak|break\s+out|escape\s+mode",
    )
]

COMPLIANCE_PATTERNS: Dict[str, List[re.Pattern]] = {
    # fair housing
    "realestate": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(discriminat|bias|prefer|avoid)\w*\b.*\b(race|color|religion|sex|familial|national origin|disability)\b",
            r"\b(no\s+)?(kids|children|families|pregnant)\b",
            r"\b(adults?\s+only|mature\s+adults?)\b",
        )
    ],
    "finance": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(guaranteed\s+returns?|risk-free|no\s+risk)\b",
            r"\b(insider\s+information|sure\s+thing)\b",
            r"\b(get\s+rich\s+quick|easy\s+money)\b",
        )
    ],
    "healthcare": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(cure|guaranteed\s+treatment|miracle)\b",
            r"\b(diagnos|prescrib|treat)\w*\b.*\b(without\s+doctor|self-medicate)\b",
        )
    ],
}


def normalize_industry(industry: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", (industry or "").casefold())


class PatternHarmAnalyzer(IContentSafetyAnalyzer):
    """Lexicon-based harm analyzer used when no external content safety service is wired."""

    CATEGORIES: Dict[str, List[tuple]] = {
        "violence": [
            (re.compile(r"\b(kill|murder|shoot|stab|hurt)\s+(you|him|her|them)\b", re.IGNORECASE),
             GuardrailSeverity.CRITICAL),
        ],
        "self_harm": [
            (re.compile(r"\b(kill\s+yourself|end\s+your\s+life)\b", re.IGNORECASE),
             GuardrailSeverity.CRITICAL),
        ],
        "hate": [
            (re.compile(r"\b(inferior\s+(race|people)|ethnic\s+cleansing)\b", re.IGNORECASE),
             GuardrailSeverity.HIGH),
        ],
        "harassment": [
            (re.compile(r"\b(worthless|pathetic|idiot)\b", re.IGNORECASE), GuardrailSeverity.MEDIUM),
        ],
        "unprofessional": [
            (re.compile(r"\b(damn|hell|crap)\b|!!!", re.IGNORECASE), GuardrailSeverity.LOW),
        ],
    }

    def analyze(self, text: str) -> HarmAnalysis:
        severity = GuardrailSeverity.NONE
        categories: List[str] = []
        for category, patterns in self.CATEGORIES.items():
            for pattern, level in patterns:
                if pattern.search(text):
                    categories.append(category)
                    severity = max(severity, level)
                    break
        return HarmAnalysis(
            severity=severity,
            categories=categories,
            confidence=0.95 if categories else 1.0,
        )


def check_content_safety(text: str, analyzer: IContentSafetyAnalyzer) -> GuardrailCheck:
    """Harm category analysis. An analyzer failure fails safe to Critical."""
    if not text:
        return GuardrailCheck(name="content_safety", passed=True, message="No content to analyze", confidence=1.0)
    try:
        analysis = analyzer.analyze(text)
    except Exception as e:
        logger.error(f"Content safety analysis failed, blocking: {type(e).__name__}")
        return GuardrailCheck(
            name="content_safety",
            passed=False,
            severity=GuardrailSeverity.CRITICAL,
            action=GuardrailAction.BLOCK,
            risk_class=RiskClass.HARMFUL_CONTENT,
            message="Content safety analysis unavailable",
        )
    if analysis.severity == GuardrailSeverity.NONE:
        return GuardrailCheck(
            name="content_safety", passed=True, message="No harmful content detected",
            confidence=analysis.confidence,
        )
    return GuardrailCheck(
        name="content_safety",
        passed=False,
        severity=analysis.severity,
        action=action_for(analysis.severity),
        risk_class=RiskClass.HARMFUL_CONTENT,
        requires_override=analysis.severity == GuardrailSeverity.HIGH,
        message=f"Harmful content detected ({', '.join(analysis.categories)})",
        confidence=analysis.confidence,
    )


def check_industry_compliance(text: str, industry: Optional[str]) -> Optional[GuardrailCheck]:
    """Industry-specific compliance wording. None when the industry has no rules."""
    patterns = COMPLIANCE_PATTERNS.get(normalize_industry(industry))
    if patterns is None:
        return None
    violations = sum(1 for p in patterns if p.search(text or ""))
    if not violations:
        return GuardrailCheck(
            name="industry_compliance", passed=True, message="No compliance violations detected",
            confidence=0.85,
        )
    return GuardrailCheck(
        name="industry_compliance",
        passed=False,
        severity=GuardrailSeverity.HIGH,
        action=GuardrailAction.BLOCK,
        risk_class=RiskClass.INDUSTRY_COMPLIANCE,
        requires_override=True,
        message=f"Industry compliance violations: {violations}",
        confidence=0.85,
    )


def check_pii(text: str, sanitizer: ISanitizer) -> GuardrailCheck:
    entities = sanitizer.detect(text or "")
    if not entities:
        return GuardrailCheck(name="pii", passed=True, message="No PII detected", confidence=0.9)
    return GuardrailCheck(
        name="pii",
        passed=False,
        severity=GuardrailSeverity.MEDIUM,
        action=GuardrailAction.REDACT,
        risk_class=RiskClass.PII,
        message=f"PII detected ({', '.join(entities)})",
        confidence=0.9,
    )


def check_prompt_injection(text: str) -> GuardrailCheck:
    matches = sum(1 for p in INJECTION_PATTERNS if p.search(text or ""))
    if not matches:
        return GuardrailCheck(name="prompt_injection", passed=True, message="No injection attempt detected", confidence=1.0)
    return GuardrailCheck(
        name="prompt_injection",
        passed=False,
        severity=GuardrailSeverity.HIGH,
        action=GuardrailAction.BLOCK,
        risk_class=RiskClass.PROMPT_INJECTION,
        requires_override=True,
        message=f"Prompt injection patterns detected: {matches}",
        confidence=min(matches * 0.3, 1.0),
    )


def groundedness_score(text: str, source_documents: Iterable[str]) -> float:
    """Share of content words that also appear in the source documents."""
    content_words = (text or "").casefold().split()
    if not content_words:
        return 0.0
    source_words = {word for doc in source_documents for word in doc.casefold().split()}
    grounded = sum(1 for word in content_words if word in source_words)
    return grounded / len(content_words)


def check_groundedness(text: str, source_documents: Sequence[str], threshold: float) -> Optional[GuardrailCheck]:
    """Only applies to content derived from retrieved documents."""
    if not source_documents:
        return None
    score = groundedness_score(text, source_documents)
    if score >= threshold:
        return GuardrailCheck(
            name="groundedness", passed=True, message=f"Groundedness score: {score:.2f}", confidence=score,
        )
    return GuardrailCheck(
        name="groundedness",
        passed=False,
        severity=GuardrailSeverity.MEDIUM,
        action=GuardrailAction.REDACT,
        risk_class=RiskClass.GROUNDEDNESS,
        message=f"Content is not grounded in its sources (score {score:.2f})",
        confidence=score,
    )


def parse_occurred_at(value: Optional[ParamValue], now: datetime) -> datetime:
    """Occurrence timestamp in UTC; missing or malformed values fall back to now."""
    if value is None or value.kind != ParamKind.STRING:
        return now
    raw = str(value.value).strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        logger.debug("Unparseable occurrence timestamp, using current time")
        return now


def in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """Whether an hour falls in [start, end), wrapping past midnight when start > end."""
    if start_hour == end_hour:
        return False
    if start_hour > end_hour:
        return hour >= start_hour or hour < end_hour
    return start_hour <= hour < end_hour


def check_after_hours(
    channel: str,
    occurred_at: datetime,
    channels: Sequence[str],
    start_hour: int,
    end_hour: int,
) -> Optional[GuardrailCheck]:
    if (channel or "").strip().casefold() not in channels:
        return None
    window = f"{start_hour:02d}:00-{end_hour:02d}:00 UTC"
    if not in_window(occurred_at.hour, start_hour, end_hour):
        return GuardrailCheck(
            name="after_hours", passed=True, message=f"Outside after-hours window {window}", confidence=1.0,
        )
    return GuardrailCheck(
        name="after_hours",
        passed=False,
        severity=GuardrailSeverity.LOW,
        action=GuardrailAction.FLAG,
        risk_class=RiskClass.AFTER_HOURS,
        requires_override=True,
        message=f"{channel.strip().upper()} action falls in the after-hours window {window}",
        confidence=1.0,
    )


def check_confidence(confidence: Optional[float], threshold: float) -> Optional[GuardrailCheck]:
    if confidence is None:
        return None
    if confidence >= threshold:
        return GuardrailCheck(
            name="planner_confidence", passed=True, message=f"Confidence {confidence:.2f}", confidence=confidence,
        )
    return GuardrailCheck(
        name="planner_confidence",
        passed=False,
        severity=GuardrailSeverity.LOW,
        action=GuardrailAction.FLAG,
        risk_class=RiskClass.LOW_CONFIDENCE,
        requires_override=True,
        message=f"Plan confidence {confidence:.2f} is below the {threshold:.2f} threshold",
        confidence=confidence,
    )
