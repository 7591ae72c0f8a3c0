from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from multishot.orchestrator.models import EngineResponse
from multishot.orchestrator.scoring import (
    estimate_quality_score,
    estimate_task_complexity,
    estimate_tokens,
)

pytestmark = [
    allure.epic("Run Metrics"),
    allure.feature("Quality and Complexity Heuristics"),
]


def _response(content: str, *, execution_time_ms: int = 0, error: str | None = None):
    return EngineResponse(
        content=content,
        model="m",
        engine="e",
        timestamp=datetime(2026, 10, 16, tzinfo=UTC),
        execution_time_ms=execution_time_ms,
        error=error,
    )


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_error_response_has_no_quality_score() -> None:
    assert estimate_quality_score("gpt-4o", _response("", error="HTTP 500")) is None


def test_quality_score_rewards_structure_and_engine_prior() -> None:
    content = "Overview\n- point one\n```python\nprint(1)\n```\n" + "x" * 600
    score = estimate_quality_score("gpt-4o", _response(content, execution_time_ms=2_000))

    # base 5, length +1, time +1, prior +2, fence/list/long +1.5
    assert score == 10.0


def test_quality_score_penalizes_short_slow_answers_and_is_clamped() -> None:
    score = estimate_quality_score("tinyllama", _response("ok", execution_time_ms=90_000))

    assert score == 2.0


def test_simple_prompt_has_base_complexity() -> None:
    assert estimate_task_complexity("What is the capital of France?") == 3


def test_complex_prompt_accumulates_signals() -> None:
    prompt = (
        "First, design the system architecture. Then implement the algorithm? "
        "Why? How? What about security?"
    )

    # base 3, keywords capped at +3, questions +1, multi-part +2
    assert estimate_task_complexity(prompt) == 9


def test_complexity_is_clamped_to_ten() -> None:
    prompt = "first " + "design system algorithm security ??? " * 40

    assert estimate_task_complexity(prompt) == 10


@pytest.mark.parametrize(
    ("prompt", "expected"),
    [
        ("Summarize the novel (see Kafka)", 3),
        ("Compare 2.1) and 3.1) in the report", 3),
        ("Answer a) the plot b) the themes", 5),
        ("1) list the facts 2) rank them", 5),
    ],
)
def test_multi_part_markers_must_start_a_word(prompt: str, expected: int) -> None:
    assert estimate_task_complexity(prompt) == expected
