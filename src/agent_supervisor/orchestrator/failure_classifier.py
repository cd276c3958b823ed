"""Deterministic classification of provider errors reported by the agent CLI."""

from __future__ import annotations

from dataclasses import dataclass

from agent_supervisor.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_AUTH_ERROR_NAMES: frozenset[str] = frozenset(
    {"ProviderAuthError", "AuthenticationError", "UnauthorizedError"},
)
_AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "invalid x-api-key",
    "api key not valid",
    "authentication",
    "expired token",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
    "not available in your region",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "overloaded",
    "temporarily unavailable",
    "connection reset",
    "network error",
    "timed out",
)
_TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504, 529})


@dataclass(slots=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None

    @property
    def is_auth_error(self) -> bool:
        return self.failure_class is FailureClass.ACCESS_OR_AUTH

    def to_event_details(self, *, provider_id: str | None) -> dict[str, object]:
        """Serialize classifier diagnostics for debug events."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "provider_id": provider_id,
            "failure_class": self.failure_class.value,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_provider_error(
    *,
    error_name: str | None,
    message: str,
    status_code: int | None = None,
) -> ProviderFailureClassification:
    """Classify one provider error; auth wins over every other class."""

    if error_name in _AUTH_ERROR_NAMES:
        return ProviderFailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            matched_rule="auth_error_name",
            matched_pattern=error_name,
        )
    if status_code in _AUTH_STATUS_CODES:
        return ProviderFailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            matched_rule="auth_status_code",
            matched_pattern=str(status_code),
        )

    haystack = f"{error_name or ''}\n{message}".lower()

    pattern = _first_match(haystack, _ACCESS_OR_AUTH_PATTERNS)
    if pattern is not None:
        return ProviderFailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            matched_rule="access_or_auth",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
    if pattern is not None:
        return ProviderFailureClassification(
            failure_class=FailureClass.BILLING_OR_QUOTA,
            matched_rule="billing_or_quota",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _MODEL_NOT_AVAILABLE_PATTERNS)
    if pattern is not None:
        return ProviderFailureClassification(
            failure_class=FailureClass.MODEL_NOT_AVAILABLE,
            matched_rule="model_not_available",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None or status_code in _TRANSIENT_STATUS_CODES:
        return ProviderFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            matched_rule=(
                "transient_status_code" if pattern is None else "transient_pattern"
            ),
            matched_pattern=pattern if pattern is not None else str(status_code),
        )

    return ProviderFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
