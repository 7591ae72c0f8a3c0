"""Run metrics: derive a `PerformanceRecord` from a run and report over stored records."""

from __future__ import annotations

import csv
import io
import json
from collections import Counter, defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from multishot.orchestrator.failure_classifier import classify_engine_failure
from multishot.orchestrator.models import (
    EngineResponse,
    ModelPerformance,
    PerformanceRecord,
    PromptRequest,
    TokenUsage,
)
from multishot.orchestrator.pricing import estimate_cost_usd
from multishot.orchestrator.scoring import (
    estimate_quality_score,
    estimate_task_complexity,
    estimate_tokens,
)
from multishot.storage.common import as_utc, utc_now

BASELINE_COST_PER_REQUEST_USD = 0.008
HIGH_AVG_COST_USD = 0.01
TREND_STABLE_PERCENT = 5.0
TREND_METRICS: tuple[str, ...] = ("cost", "response_time", "quality_score", "success_rate")
TREND_PERIODS: dict[str, timedelta] = {"day": timedelta(days=1), "week": timedelta(days=7)}
EXPORT_FORMATS: tuple[str, ...] = ("json", "csv")
_LOCAL_MARKERS: tuple[str, ...] = ("local", "tinyllama", "ollama", "echo")


@dataclass(slots=True)
class ModelUsage:
    """How often one model ran in a window and how it scored."""

    model: str
    usage: int
    avg_quality_score: float


@dataclass(slots=True)
class PerformanceSummary:
    """Window-level aggregate over stored run records."""

    total_runs: int
    total_cost_usd: float
    avg_response_time_ms: float
    avg_quality_score: float
    success_rate: float
    top_models: list[ModelUsage]
    failure_class_counts: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class CostAnalysis:
    total_spent_usd: float
    cost_by_model: dict[str, float]
    avg_cost_per_request_usd: float
    savings_vs_baseline_usd: float
    projected_monthly_cost_usd: float
    recommendations: list[str]


@dataclass(slots=True)
class TrendPoint:
    timestamp: datetime
    value: float


@dataclass(slots=True)
class PerformanceTrend:
    """Direction of one metric over a period; cost going up counts as declining."""

    metric: str
    period: str
    direction: str
    change_percentage: float
    data_points: list[TrendPoint]


@dataclass(slots=True)
class QualityInsights:
    avg_quality_by_model: dict[str, float]
    recommendations: list[str]


def build_performance_record(  # noqa: PLR0913
    *,
    run_id: str,
    timestamp: datetime,
    request: PromptRequest,
    results: Mapping[str, EngineResponse],
    total_time_ms: int,
    engine_kinds: Mapping[str, str] | None = None,
    context: dict[str, Any] | None = None,
) -> PerformanceRecord:
    """Derive run metrics from terminal responses.

    Pure function of its inputs: the same run always yields the same record.
    """

    kinds = engine_kinds or {}
    prompt_text = request.prompt if not request.system_prompt else (
        f"{request.system_prompt}\n{request.prompt}"
    )
    per_engine: list[ModelPerformance] = []
    for engine_name, response in results.items():
        token_usage, cost, cost_estimated = _derive_cost(
            engine_name=engine_name,
            response=response,
            kind=kinds.get(engine_name),
            prompt_text=prompt_text,
        )
        failure_class = None
        if response.error is not None:
            failure_class = classify_engine_failure(
                engine=engine_name,
                error=response.error,
            ).failure_class
        per_engine.append(
            ModelPerformance(
                engine=engine_name,
                model=response.model,
                execution_time_ms=response.execution_time_ms,
                cost_usd=cost,
                success=response.ok,
                timestamp=response.timestamp,
                token_usage=token_usage,
                cost_estimated=cost_estimated,
                quality_score=estimate_quality_score(engine_name, response),
                error=response.error,
                failure_class=failure_class,
            ),
        )

    scores = [item.quality_score for item in per_engine if item.quality_score is not None]
    succeeded = sum(1 for item in per_engine if item.success)
    return PerformanceRecord(
        run_id=run_id,
        timestamp=timestamp,
        prompt=request.prompt,
        per_engine=per_engine,
        total_cost_usd=sum(item.cost_usd for item in per_engine),
        total_time_ms=max(0, total_time_ms),
        success_rate=succeeded / len(per_engine) if per_engine else 0.0,
        avg_quality_score=sum(scores) / len(scores) if scores else None,
        task_complexity=estimate_task_complexity(request.prompt),
        context=dict(context or {}),
    )


def _derive_cost(
    *,
    engine_name: str,
    response: EngineResponse,
    kind: str | None,
    prompt_text: str,
) -> tuple[TokenUsage | None, float, bool]:
    usage = response.token_usage
    estimated = False
    if usage is None:
        if not response.ok:
            return None, 0.0, False
        prompt_tokens = estimate_tokens(prompt_text)
        completion_tokens = estimate_tokens(response.content)
        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
        estimated = True

    cost = estimate_cost_usd(
        engine=engine_name,
        model=response.model,
        kind=kind,
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
    )
    return usage, cost, estimated


def summarize_performance(records: list[PerformanceRecord]) -> PerformanceSummary:
    """Aggregate a window of run records."""

    if not records:
        return PerformanceSummary(
            total_runs=0,
            total_cost_usd=0.0,
            avg_response_time_ms=0.0,
            avg_quality_score=0.0,
            success_rate=0.0,
            top_models=[],
        )

    scored = [record.avg_quality_score for record in records if record.avg_quality_score]
    usage = Counter[str]()
    quality_totals: dict[str, list[float]] = defaultdict(list)
    failure_class_counts = Counter[str]()
    for record in records:
        for item in record.per_engine:
            key = _model_key(item)
            usage[key] += 1
            if item.quality_score is not None:
                quality_totals[key].append(item.quality_score)
            if item.failure_class is not None:
                failure_class_counts[item.failure_class.value] += 1

    top_models = [
        ModelUsage(
            model=key,
            usage=count,
            avg_quality_score=_mean(quality_totals.get(key, [])),
        )
        for key, count in usage.most_common(5)
    ]
    return PerformanceSummary(
        total_runs=len(records),
        total_cost_usd=sum(record.total_cost_usd for record in records),
        avg_response_time_ms=_mean([float(record.total_time_ms) for record in records]),
        avg_quality_score=_mean(scored),
        success_rate=sum(1 for record in records if record.success_rate > 0) / len(records),
        top_models=top_models,
        failure_class_counts=dict(sorted(failure_class_counts.items())),
    )


def analyze_cost_efficiency(
    records: list[PerformanceRecord],
    *,
    now: datetime | None = None,
) -> CostAnalysis:
    """Cost breakdown by model plus savings against an all-gpt-4o baseline."""

    if not records:
        return CostAnalysis(
            total_spent_usd=0.0,
            cost_by_model={},
            avg_cost_per_request_usd=0.0,
            savings_vs_baseline_usd=0.0,
            projected_monthly_cost_usd=0.0,
            recommendations=["No data available for analysis"],
        )

    total_spent = sum(record.total_cost_usd for record in records)
    cost_by_model: dict[str, float] = defaultdict(float)
    for record in records:
        for item in record.per_engine:
            cost_by_model[_model_key(item)] += item.cost_usd

    avg_cost = total_spent / len(records)
    savings = max(0.0, len(records) * BASELINE_COST_PER_REQUEST_USD - total_spent)

    reference = as_utc(now or utc_now())
    earliest = min(as_utc(record.timestamp) for record in records)
    days_of_data = max(1.0, (reference - earliest).total_seconds() / 86_400)
    projected_monthly = total_spent / days_of_data * 30

    local_cost = sum(
        cost
        for key, cost in cost_by_model.items()
        if any(marker in key.lower() for marker in _LOCAL_MARKERS)
    )
    cloud_cost = total_spent - local_cost
    recommendations: list[str] = []
    if cloud_cost > local_cost * 5:
        recommendations.append("Consider using local models more frequently for simple tasks")
    if avg_cost > HIGH_AVG_COST_USD:
        recommendations.append(
            "Average cost per request is high - review model selection strategy",
        )
    if savings > 0:
        recommendations.append(f"Saving ${savings:.4f} vs baseline gpt-4o usage")

    return CostAnalysis(
        total_spent_usd=total_spent,
        cost_by_model=dict(sorted(cost_by_model.items())),
        avg_cost_per_request_usd=avg_cost,
        savings_vs_baseline_usd=savings,
        projected_monthly_cost_usd=projected_monthly,
        recommendations=recommendations,
    )


def compute_trend(
    records: list[PerformanceRecord],
    *,
    metric: str,
    period: str = "day",
    now: datetime | None = None,
) -> PerformanceTrend:
    """Compare the first and last data point of `metric` inside the period window."""

    if metric not in TREND_METRICS:
        raise ValueError(
            f"Unsupported trend metric: {metric!r}. Expected one of: {', '.join(TREND_METRICS)}.",
        )
    if period not in TREND_PERIODS:
        raise ValueError(f"Unsupported trend period: {period!r}. Expected day or week.")

    since = as_utc(now or utc_now()) - TREND_PERIODS[period]
    points: list[TrendPoint] = []
    for record in records:
        timestamp = as_utc(record.timestamp)
        if timestamp < since:
            continue
        value = _trend_value(record, metric)
        if value is not None:
            points.append(TrendPoint(timestamp=timestamp, value=value))
    points.sort(key=lambda point: point.timestamp)

    change = 0.0
    if len(points) >= 2:
        first, last = points[0].value, points[-1].value
        if first != 0:
            change = (last - first) / first * 100
        elif last != 0:
            change = 100.0

    if abs(change) < TREND_STABLE_PERCENT:
        direction = "stable"
    elif (change > 0) != (metric in {"cost", "response_time"}):
        direction = "improving"
    else:
        direction = "declining"

    return PerformanceTrend(
        metric=metric,
        period=period,
        direction=direction,
        change_percentage=change,
        data_points=points,
    )


def quality_insights(records: list[PerformanceRecord]) -> QualityInsights:
    scores: dict[str, list[float]] = defaultdict(list)
    for record in records:
        for item in record.per_engine:
            if item.quality_score is not None:
                scores[_model_key(item)].append(item.quality_score)

    averages = {key: _mean(values) for key, values in scores.items()}
    ranked = sorted(averages.items(), key=lambda pair: pair[1], reverse=True)
    recommendations: list[str] = []
    if ranked:
        best_model, best_score = ranked[0]
        worst_model, worst_score = ranked[-1]
        if best_score - worst_score > 2:
            recommendations.append(
                f"Consider using {best_model} more often (avg quality: {best_score:.1f})",
            )
        if worst_score < 6:
            recommendations.append(
                f"{worst_model} shows low quality scores (avg: {worst_score:.1f}) "
                "- review its usage",
            )
    return QualityInsights(avg_quality_by_model=dict(ranked), recommendations=recommendations)


def export_records(records: list[PerformanceRecord], *, output_format: str = "json") -> str:
    """Serialize run records for external analytics tooling."""

    if output_format == "json":
        return json.dumps([record_to_dict(record) for record in records], indent=2)
    if output_format == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(
            [
                "run_id",
                "timestamp",
                "total_cost_usd",
                "total_time_ms",
                "success_rate",
                "avg_quality_score",
                "task_complexity",
                "engine_count",
            ],
        )
        for record in records:
            writer.writerow(
                [
                    record.run_id,
                    as_utc(record.timestamp).isoformat(),
                    f"{record.total_cost_usd:.6f}",
                    record.total_time_ms,
                    f"{record.success_rate:.4f}",
                    "" if record.avg_quality_score is None else f"{record.avg_quality_score:.2f}",
                    record.task_complexity,
                    len(record.per_engine),
                ],
            )
        return buffer.getvalue()
    raise ValueError(
        f"Unsupported export format: {output_format!r}. "
        f"Expected one of: {', '.join(EXPORT_FORMATS)}.",
    )


def record_to_dict(record: PerformanceRecord) -> dict[str, Any]:
    return {
        "run_id": record.run_id,
        "timestamp": as_utc(record.timestamp).isoformat(),
        "prompt": record.prompt,
        "total_cost_usd": record.total_cost_usd,
        "total_time_ms": record.total_time_ms,
        "success_rate": record.success_rate,
        "avg_quality_score": record.avg_quality_score,
        "task_complexity": record.task_complexity,
        "context": record.context,
        "per_engine": [
            {
                "engine": item.engine,
                "model": item.model,
                "execution_time_ms": item.execution_time_ms,
                "prompt_tokens": item.token_usage.prompt_tokens if item.token_usage else None,
                "completion_tokens": (
                    item.token_usage.completion_tokens if item.token_usage else None
                ),
                "cost_usd": item.cost_usd,
                "cost_estimated": item.cost_estimated,
                "quality_score": item.quality_score,
                "success": item.success,
                "error": item.error,
                "failure_class": item.failure_class.value if item.failure_class else None,
            }
            for item in record.per_engine
        ],
    }


def render_summary_lines(*, summary: PerformanceSummary, hours: int) -> list[str]:
    """Render operator-facing run statistics for CLI output."""

    lines = [
        f"Multishot run statistics (window={hours}h)",
        f"Runs: {summary.total_runs}",
        f"Total cost: ${summary.total_cost_usd:.4f}",
        f"Avg response time: {summary.avg_response_time_ms:.0f}ms",
        f"Avg quality score: {summary.avg_quality_score:.1f}/10",
        f"Runs with at least one success: {_fmt_ratio(summary.success_rate)}",
    ]
    if summary.top_models:
        lines.append("Top models:")
        for item in summary.top_models:
            lines.append(
                f"  {item.model} runs={item.usage} avg_quality={item.avg_quality_score:.1f}",
            )
    else:
        lines.append("Top models: none")
    lines.append(
        "Failure-class distribution: " + (_fmt_key_value(summary.failure_class_counts) or "none"),
    )
    return lines


def render_cost_lines(*, analysis: CostAnalysis, hours: int) -> list[str]:
    lines = [
        f"Multishot cost analysis (window={hours}h)",
        f"Total spent: ${analysis.total_spent_usd:.4f}",
        f"Avg cost per run: ${analysis.avg_cost_per_request_usd:.4f}",
        f"Savings vs gpt-4o baseline: ${analysis.savings_vs_baseline_usd:.4f}",
        f"Projected monthly cost: ${analysis.projected_monthly_cost_usd:.2f}",
    ]
    if analysis.cost_by_model:
        lines.append("Cost by model:")
        for key, cost in analysis.cost_by_model.items():
            lines.append(f"  {key}: ${cost:.4f}")
    lines.extend(f"Recommendation: {item}" for item in analysis.recommendations)
    return lines


def render_trend_lines(trends: list[PerformanceTrend]) -> list[str]:
    return [
        f"Trend {trend.metric} ({trend.period}): {trend.direction} "
        f"change={trend.change_percentage:+.1f}% points={len(trend.data_points)}"
        for trend in trends
    ]


def _trend_value(record: PerformanceRecord, metric: str) -> float | None:
    if metric == "cost":
        return record.total_cost_usd
    if metric == "response_time":
        return float(record.total_time_ms)
    if metric == "quality_score":
        return record.avg_quality_score
    return record.success_rate


def _model_key(item: ModelPerformance) -> str:
    return f"{item.model} ({item.engine})"


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def _fmt_ratio(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value * 100:.1f}%"


def _fmt_key_value(values: dict[str, int]) -> str:
    return " ".join(f"{key}={value}" for key, value in values.items())
