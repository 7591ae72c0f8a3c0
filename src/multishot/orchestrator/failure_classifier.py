"""Deterministic classification of terminal engine errors."""

from __future__ import annotations

from dataclasses import dataclass

from multishot.orchestrator.models import FailureClass

ENGINE_FAILURE_CLASSIFIER_VERSION = 1

_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timed out after",
    "timeout",
)
_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "insufficient",
    "billing",
    "payment",
    "credit balance",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "http 401",
    "http 403",
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "invalid x-api-key",
    "api key not configured",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "model_not_found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "does not exist",
    "not_found_error",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "http 429",
    "too many requests",
    "rate limit",
    "rate_limit",
    "overloaded",
)
_TRANSPORT_PATTERNS: tuple[str, ...] = (
    "connection refused",
    "connecterror",
    "connection reset",
    "could not resolve host",
    "name or service not known",
    "network error",
    "remoteprotocolerror",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "http 500",
    "http 502",
    "http 503",
    "http 504",
    "temporarily unavailable",
    "temporary failure",
    "try again later",
    "please retry",
)


@dataclass(slots=True)
class EngineFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_details(self, *, engine: str, model: str) -> dict[str, object]:
        """Serialize classifier diagnostics for reports."""

        return {
            "classifier_version": ENGINE_FAILURE_CLASSIFIER_VERSION,
            "engine": engine,
            "model": model,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


_RULES: tuple[tuple[str, FailureClass, tuple[str, ...]], ...] = (
    ("timeout", FailureClass.TIMEOUT, _TIMEOUT_PATTERNS),
    ("billing_or_quota", FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
    ("access_or_auth", FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
    ("model_not_available", FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
    ("rate_limited", FailureClass.RATE_LIMITED, _RATE_LIMIT_PATTERNS),
    ("transport_error", FailureClass.TRANSPORT_ERROR, _TRANSPORT_PATTERNS),
    ("transient", FailureClass.TRANSIENT, _TRANSIENT_PATTERNS),
)


def classify_engine_failure(*, engine: str, error: str) -> EngineFailureClassification:
    """Classify terminal engine error text into a failure class.

    Rules are checked in order; the first matching pattern wins and anything
    unmatched is a generic engine error.
    """

    haystack = error.lower()
    for rule, failure_class, patterns in _RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return EngineFailureClassification(
                failure_class=failure_class,
                reason_code=f"{engine}_{rule}",
                matched_rule=rule,
                matched_pattern=pattern,
            )

    return EngineFailureClassification(
        failure_class=FailureClass.ENGINE_ERROR,
        reason_code=f"{engine}_engine_error",
        matched_rule="fallback_engine_error",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
