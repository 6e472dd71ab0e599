"""
Request-scoped usage telemetry.

An ingestion turns telemetry on by attaching a CostCollector through
contextvars. Providers look up the active collector and the current
pipeline stage label and record one CostUsageRecord per call.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from memory_kg.config.pricing import PRICING_VERSION
from memory_kg.types.results import (
    CostBreakdown,
    CostDebugReport,
    CostUsageRecord,
    StageCostBreakdown,
)

_ACTIVE_COLLECTOR: ContextVar[CostCollector | None] = ContextVar(
    "memory_kg_cost_collector",
    default=None,
)
_ACTIVE_STAGE: ContextVar[str] = ContextVar("memory_kg_cost_stage", default="unknown")


class CostCollector:
    """Collects provider usage records for a single ingestion."""

    def __init__(self, *, warn_threshold_usd: float | None = None) -> None:
        self._records: list[CostUsageRecord] = []
        self._warn_threshold_usd = warn_threshold_usd

    @property
    def records(self) -> list[CostUsageRecord]:
        return list(self._records)

    def add(self, record: CostUsageRecord) -> None:
        self._records.append(record)

    def summary(self) -> CostDebugReport:
        """Aggregate the collected records, per stage and overall."""
        stages: dict[str, StageCostBreakdown] = {}
        unpriced: set[tuple[str, str]] = set()
        totals = CostBreakdown()

        for record in self._records:
            totals.total_calls += 1
            totals.total_input_tokens += record.input_tokens
            totals.total_output_tokens += record.output_tokens
            totals.total_tokens += record.total_tokens
            totals.total_estimated_cost_usd += record.estimated_cost_usd
            totals.total_latency_ms += record.latency_ms

            stage = stages.get(record.stage)
            if stage is None:
                stage = stages[record.stage] = StageCostBreakdown(stage=record.stage)
            stage.calls += 1
            stage.input_tokens += record.input_tokens
            stage.output_tokens += record.output_tokens
            stage.total_tokens += record.total_tokens
            stage.estimated_cost_usd += record.estimated_cost_usd
            stage.total_latency_ms += record.latency_ms

            if record.metadata.get("pricing_found") is False:
                unpriced.add((record.model, record.stage))

        warnings = [
            f"No pricing for model '{model}' in stage '{stage_name}'; its cost is reported as 0.0."
            for model, stage_name in sorted(unpriced)
        ]
        total_cost = totals.total_estimated_cost_usd
        if self._warn_threshold_usd is not None and total_cost >= self._warn_threshold_usd:
            warnings.append(
                f"Estimated ingestion cost ${total_cost:.6f} exceeded threshold "
                f"${self._warn_threshold_usd:.6f}."
            )

        totals.by_stage = sorted(
            stages.values(), key=lambda s: s.estimated_cost_usd, reverse=True
        )
        return CostDebugReport(
            enabled=True,
            pricing_version=PRICING_VERSION,
            breakdown=totals,
            warnings=warnings,
        )


@contextmanager
def telemetry_collector(collector: CostCollector | None) -> Iterator[CostCollector | None]:
    """Make collector the active one for the enclosed block."""
    token = _ACTIVE_COLLECTOR.set(collector)
    try:
        yield collector
    finally:
        _ACTIVE_COLLECTOR.reset(token)


@contextmanager
def telemetry_stage(stage: str) -> Iterator[str]:
    """Label provider calls in the enclosed block with a pipeline stage."""
    token = _ACTIVE_STAGE.set(stage)
    try:
        yield stage
    finally:
        _ACTIVE_STAGE.reset(token)


def current_stage() -> str:
    return _ACTIVE_STAGE.get()


def record_usage(record: CostUsageRecord) -> None:
    """Add record to the active collector; no-op when telemetry is off."""
    collector = _ACTIVE_COLLECTOR.get()
    if collector is not None:
        collector.add(record)
