from __future__ import annotations

import allure
import pytest

from multishot.orchestrator.failure_classifier import (
    ENGINE_FAILURE_CLASSIFIER_VERSION,
    classify_engine_failure,
)
from multishot.orchestrator.models import FailureClass

pytestmark = [
    allure.epic("Run Metrics"),
    allure.feature("Failure Classification"),
]


def test_classifier_version_is_stable() -> None:
    assert ENGINE_FAILURE_CLASSIFIER_VERSION == 1


def test_classifier_maps_runner_timeout_message() -> None:
    classified = classify_engine_failure(
        engine="gpt-4o",
        error="Engine gpt-4o timed out after 30000ms",
    )
    assert classified.failure_class == FailureClass.TIMEOUT
    assert classified.reason_code == "gpt-4o_timeout"
    assert classified.matched_pattern == "timed out after"


def test_classifier_prefers_billing_over_transient_status() -> None:
    classified = classify_engine_failure(
        engine="claude-sonnet",
        error="HTTP 503: Your credit balance is too low",
    )
    assert classified.failure_class == FailureClass.BILLING_OR_QUOTA
    assert classified.matched_rule == "billing_or_quota"
    assert classified.matched_pattern == "credit balance"


@pytest.mark.parametrize(
    ("error", "failure_class"),
    [
        ("HTTP 401: Incorrect API key provided", FailureClass.ACCESS_OR_AUTH),
        ("OpenAI API key not configured (set OPENAI_API_KEY).", FailureClass.ACCESS_OR_AUTH),
        ("HTTP 404: The model `gpt-9` does not exist", FailureClass.MODEL_NOT_AVAILABLE),
        ("HTTP 429: Rate limit reached for requests", FailureClass.RATE_LIMITED),
        ("ConnectError: [Errno 111] Connection refused", FailureClass.TRANSPORT_ERROR),
        ("HTTP 502: Bad gateway", FailureClass.TRANSIENT),
    ],
)
def test_classifier_maps_engine_errors(error: str, failure_class: FailureClass) -> None:
    assert classify_engine_failure(engine="any", error=error).failure_class == failure_class


def test_classifier_falls_back_to_engine_error() -> None:
    classified = classify_engine_failure(
        engine="ollama:llama3",
        error="Malformed response from ollama:llama3: KeyError('response')",
    )
    assert classified.failure_class == FailureClass.ENGINE_ERROR
    assert classified.reason_code == "ollama:llama3_engine_error"
    assert classified.matched_pattern is None
    details = classified.to_details(engine="ollama:llama3", model="llama3")
    assert details["classifier_version"] == ENGINE_FAILURE_CLASSIFIER_VERSION
    assert details["matched_rule"] == "fallback_engine_error"
