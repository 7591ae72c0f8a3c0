from __future__ import annotations

import csv
import io
import json
from datetime import UTC, datetime, timedelta

import allure
import pytest

from multishot.orchestrator.metrics import (
    analyze_cost_efficiency,
    build_performance_record,
    compute_trend,
    export_records,
    quality_insights,
    render_cost_lines,
    render_summary_lines,
    summarize_performance,
)
from multishot.orchestrator.models import (
    EngineResponse,
    FailureClass,
    PromptRequest,
    TokenUsage,
)

pytestmark = [
    allure.epic("Run Metrics"),
    allure.feature("Performance Records & Reports"),
]

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)


def _response(
    engine: str,
    *,
    content: str = "answer",
    usage: TokenUsage | None = None,
    error: str | None = None,
    execution_time_ms: int = 1_500,
) -> EngineResponse:
    return EngineResponse(
        content=content,
        model=engine,
        engine=engine,
        timestamp=NOW,
        execution_time_ms=execution_time_ms,
        token_usage=usage,
        error=error,
    )


def _record(*, run_id: str, timestamp: datetime, cost_tokens: int = 1_000, ok: bool = True):
    results = {
        "gpt-4o": _response(
            "gpt-4o",
            usage=TokenUsage(
                prompt_tokens=cost_tokens,
                completion_tokens=cost_tokens,
                total_tokens=cost_tokens * 2,
            ),
            error=None if ok else "HTTP 429: rate limit",
        ),
        "ollama:llama3": _response("ollama:llama3", content="local answer " * 20),
    }
    return build_performance_record(
        run_id=run_id,
        timestamp=timestamp,
        request=PromptRequest(prompt="Design a caching strategy"),
        results=results,
        total_time_ms=2_000,
        engine_kinds={"gpt-4o": "openai", "ollama:llama3": "local"},
    )


def test_record_derivation_is_deterministic() -> None:
    first = _record(run_id="run-1", timestamp=NOW)
    second = _record(run_id="run-1", timestamp=NOW)

    assert first == second


def test_record_prices_reported_usage_and_frees_local_engines() -> None:
    record = _record(run_id="run-1", timestamp=NOW, cost_tokens=1_000_000)

    by_engine = {item.engine: item for item in record.per_engine}
    assert by_engine["gpt-4o"].cost_usd == pytest.approx(20.0)
    assert by_engine["ollama:llama3"].cost_usd == 0.0
    assert by_engine["ollama:llama3"].cost_estimated is True
    assert record.total_cost_usd == pytest.approx(20.0)
    assert record.success_rate == 1.0


def test_failed_response_without_usage_costs_nothing_and_is_classified() -> None:
    record = build_performance_record(
        run_id="run-2",
        timestamp=NOW,
        request=PromptRequest(prompt="hi"),
        results={"gpt-4o": _response("gpt-4o", content="", error="HTTP 401: unauthorized")},
        total_time_ms=10,
    )

    item = record.per_engine[0]
    assert item.cost_usd == 0.0
    assert item.token_usage is None
    assert item.quality_score is None
    assert item.failure_class == FailureClass.ACCESS_OR_AUTH
    assert record.success_rate == 0.0
    assert record.avg_quality_score is None


def test_estimated_usage_includes_system_prompt() -> None:
    request = PromptRequest(prompt="abcd", system_prompt="efgh")
    record = build_performance_record(
        run_id="run-3",
        timestamp=NOW,
        request=request,
        results={"custom": _response("custom", content="12345678")},
        total_time_ms=10,
    )

    usage = record.per_engine[0].token_usage
    assert usage is not None
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (3, 2, 5)


def test_summary_aggregates_runs_and_failure_classes() -> None:
    records = [
        _record(run_id="a", timestamp=NOW - timedelta(hours=2)),
        _record(run_id="b", timestamp=NOW - timedelta(hours=1), ok=False),
    ]

    summary = summarize_performance(records)

    assert summary.total_runs == 2
    assert summary.success_rate == 1.0
    assert summary.failure_class_counts == {"rate_limited": 1}
    assert {item.model for item in summary.top_models} == {
        "gpt-4o (gpt-4o)",
        "ollama:llama3 (ollama:llama3)",
    }
    lines = render_summary_lines(summary=summary, hours=24)
    assert lines[0] == "Multishot run statistics (window=24h)"
    assert "Failure-class distribution: rate_limited=1" in lines


def test_empty_window_has_neutral_reports() -> None:
    assert summarize_performance([]).total_runs == 0
    analysis = analyze_cost_efficiency([])
    assert analysis.recommendations == ["No data available for analysis"]


def test_cost_analysis_projects_monthly_spend() -> None:
    records = [
        _record(run_id="a", timestamp=NOW - timedelta(days=2), cost_tokens=500_000),
        _record(run_id="b", timestamp=NOW - timedelta(days=1), cost_tokens=500_000),
    ]

    analysis = analyze_cost_efficiency(records, now=NOW)

    assert analysis.total_spent_usd == pytest.approx(20.0)
    assert analysis.avg_cost_per_request_usd == pytest.approx(10.0)
    assert analysis.projected_monthly_cost_usd == pytest.approx(300.0)
    assert analysis.savings_vs_baseline_usd == 0.0
    assert analysis.cost_by_model["ollama:llama3 (ollama:llama3)"] == 0.0
    assert any("local models" in item for item in analysis.recommendations)
    assert "Projected monthly cost: $300.00" in render_cost_lines(analysis=analysis, hours=72)


def test_rising_cost_trend_is_declining() -> None:
    records = [
        _record(run_id="a", timestamp=NOW - timedelta(hours=5), cost_tokens=1_000),
        _record(run_id="b", timestamp=NOW - timedelta(hours=1), cost_tokens=2_000),
        _record(run_id="old", timestamp=NOW - timedelta(days=3), cost_tokens=1),
    ]

    trend = compute_trend(records, metric="cost", period="day", now=NOW)

    assert len(trend.data_points) == 2
    assert trend.change_percentage == pytest.approx(100.0)
    assert trend.direction == "declining"


def test_small_changes_are_stable() -> None:
    records = [
        _record(run_id="a", timestamp=NOW - timedelta(hours=3)),
        _record(run_id="b", timestamp=NOW - timedelta(hours=2)),
    ]

    trend = compute_trend(records, metric="success_rate", period="week", now=NOW)

    assert trend.direction == "stable"


def test_trend_rejects_unknown_metric_and_period() -> None:
    with pytest.raises(ValueError, match="metric"):
        compute_trend([], metric="latency")
    with pytest.raises(ValueError, match="period"):
        compute_trend([], metric="cost", period="month")


def test_quality_insights_rank_models() -> None:
    insights = quality_insights([_record(run_id="a", timestamp=NOW)])

    # base 5, short answer -1, time +1, prior +2
    assert insights.avg_quality_by_model["gpt-4o (gpt-4o)"] == 7.0
    assert insights.avg_quality_by_model["ollama:llama3 (ollama:llama3)"] == 7.0
    assert insights.recommendations == []


def test_export_json_and_csv() -> None:
    records = [_record(run_id="a", timestamp=NOW)]

    exported = json.loads(export_records(records, output_format="json"))
    assert exported[0]["run_id"] == "a"
    assert exported[0]["per_engine"][0]["engine"] == "gpt-4o"

    rows = list(csv.DictReader(io.StringIO(export_records(records, output_format="csv"))))
    assert rows[0]["run_id"] == "a"
    assert rows[0]["engine_count"] == "2"

    with pytest.raises(ValueError, match="export format"):
        export_records(records, output_format="xml")
