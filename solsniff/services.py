"""Shared business logic for the SolSniff API and CLI.

Owns the single in-process analysis state (published result and run gate),
persistence of results, and the read-side views the API serves.
"""
from __future__ import annotations

import json
import logging
import math
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from solsniff.db import session_scope
from solsniff.models import (
    AnalysisPipelineResult,
    AnalysisReportRow,
    BuildIdea,
    BuildIdeaRow,
    Narrative,
    NarrativeRow,
    PipelineMetadata,
    Signal,
)
from solsniff.pipeline import AnalysisPipeline
from solsniff.utils import json_parse

log = logging.getLogger(__name__)

PipelineFactory = Callable[[], AnalysisPipeline]

# ---------------------------------------------------------------------------
# Analysis state
# ---------------------------------------------------------------------------


class AnalysisState:
    """The published result plus a one-run-at-a-time gate.

    ``result`` is only ever replaced whole, after a run has fully assembled.
    """

    def __init__(self) -> None:
        self.result: AnalysisPipelineResult | None = None
        self.last_analyzed_at: datetime | None = None
        self.last_error: str | None = None
        self._running = False

    @property
    def is_analyzing(self) -> bool:
        return self._running

    def try_begin(self) -> bool:
        if self._running:
            return False
        self._running = True
        return True

    def end(self) -> None:
        self._running = False

    def publish(self, result: AnalysisPipelineResult) -> None:
        self.result = result
        self.last_analyzed_at = result.metadata.completed_at
        self.last_error = None


async def execute_analysis(
    state: AnalysisState,
    pipeline_factory: PipelineFactory = AnalysisPipeline,
    *,
    persist: bool = True,
) -> AnalysisPipelineResult | None:
    """Run one analysis with the gate already held, and release it afterwards.

    A run that fails outright (e.g. a misconfigured provider) is logged and
    recorded as ``state.last_error``; the previous result stays published.
    """
    try:
        try:
            result = await pipeline_factory().run()
        except Exception as exc:
            log.exception("Analysis run failed")
            state.last_error = str(exc) or type(exc).__name__
            return None

        state.publish(result)
        if persist:
            try:
                with session_scope() as session:
                    save_result(session, result)
                    session.commit()
            except Exception:
                log.exception("Failed to persist analysis result")
        return result
    finally:
        state.end()


async def run_analysis(
    state: AnalysisState,
    pipeline_factory: PipelineFactory = AnalysisPipeline,
    *,
    persist: bool = True,
) -> AnalysisPipelineResult | None:
    """Run an analysis unless one is already in progress (then return ``None``)."""
    if not state.try_begin():
        log.info("Analysis already in progress, skipping")
        return None
    return await execute_analysis(state, pipeline_factory, persist=persist)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _dump_signals(signals: list[Signal]) -> str:
    return json.dumps([s.model_dump(mode="json") for s in signals])


def _load_signals(value: str | None) -> list[Signal]:
    return [Signal.model_validate(item) for item in json_parse(value, [])]


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def summarize(result: AnalysisPipelineResult) -> str:
    meta = result.metadata
    return (
        f"{meta.narrative_count} narratives and {meta.idea_count} build ideas "
        f"from {meta.signal_count} signals"
    )


def save_result(session: Session, result: AnalysisPipelineResult) -> AnalysisReportRow:
    """Add one report row (with its narratives and ideas) to *session*."""
    meta = result.metadata
    breakdown = Counter(s.source for s in result.all_signals)
    report = AnalysisReportRow(
        period=f"{meta.started_at.date().isoformat()}_{meta.completed_at.date().isoformat()}",
        started_at=meta.started_at,
        completed_at=meta.completed_at,
        duration_ms=meta.duration_ms,
        summary=summarize(result),
        total_signals=meta.signal_count,
        signal_breakdown_json=json.dumps(dict(breakdown)),
        signals_json=_dump_signals(result.all_signals),
        errors_json=json.dumps(result.errors),
    )
    for position, narrative in enumerate(result.narratives):
        row = NarrativeRow(
            id=narrative.id,
            position=position,
            title=narrative.title,
            slug=narrative.slug,
            description=narrative.description,
            explanation=narrative.explanation,
            status=narrative.status,
            confidence_score=narrative.confidence_score,
            trend_direction=narrative.trend_direction,
            tags_json=json.dumps(narrative.tags),
            signals_json=_dump_signals(narrative.signals),
            fortnight_period=narrative.fortnight_period,
            detected_at=narrative.detected_at,
            updated_at=narrative.updated_at,
        )
        for idea_position, idea in enumerate(narrative.ideas):
            row.ideas.append(BuildIdeaRow(
                id=idea.id,
                position=idea_position,
                title=idea.title,
                slug=idea.slug,
                description=idea.description,
                problem=idea.problem,
                solution=idea.solution,
                target_audience=idea.target_audience,
                feasibility=idea.feasibility,
                category=idea.category,
                technical_requirements_json=json.dumps(idea.technical_requirements),
                potential_challenges_json=json.dumps(idea.potential_challenges),
                score=idea.score,
                created_at=idea.created_at,
            ))
        report.narratives.append(row)
    session.add(report)
    session.flush()
    return report


def _idea_from_row(row: BuildIdeaRow) -> BuildIdea:
    return BuildIdea(
        id=row.id,
        title=row.title,
        slug=row.slug,
        description=row.description,
        problem=row.problem,
        solution=row.solution,
        target_audience=row.target_audience,
        feasibility=row.feasibility,
        category=row.category,
        technical_requirements=json_parse(row.technical_requirements_json, []),
        potential_challenges=json_parse(row.potential_challenges_json, []),
        narrative_id=row.narrative_id,
        score=row.score,
        created_at=_aware(row.created_at),
    )


def _narrative_from_row(row: NarrativeRow) -> Narrative:
    return Narrative(
        id=row.id,
        title=row.title,
        slug=row.slug,
        description=row.description,
        explanation=row.explanation,
        status=row.status,
        confidence_score=row.confidence_score,
        trend_direction=row.trend_direction,
        signals=_load_signals(row.signals_json),
        ideas=[_idea_from_row(i) for i in row.ideas],
        tags=json_parse(row.tags_json, []),
        detected_at=_aware(row.detected_at),
        updated_at=_aware(row.updated_at),
        fortnight_period=row.fortnight_period,
    )


def load_latest_result(session: Session) -> AnalysisPipelineResult | None:
    """Rebuild the most recently saved result, or ``None`` when nothing is stored."""
    report = session.execute(
        select(AnalysisReportRow).order_by(AnalysisReportRow.id.desc()).limit(1)
    ).scalars().first()
    if report is None:
        return None

    narratives = [_narrative_from_row(row) for row in report.narratives]
    signals = _load_signals(report.signals_json)
    return AnalysisPipelineResult(
        narratives=narratives,
        all_signals=signals,
        errors=json_parse(report.errors_json, []),
        metadata=PipelineMetadata(
            started_at=_aware(report.started_at),
            completed_at=_aware(report.completed_at),
            duration_ms=report.duration_ms,
            signal_count=report.total_signals,
            narrative_count=len(narratives),
            idea_count=sum(len(n.ideas) for n in narratives),
        ),
    )


def restore_latest(state: AnalysisState) -> bool:
    """Publish the latest stored result into *state*; ``True`` if one existed."""
    try:
        with session_scope() as session:
            result = load_latest_result(session)
    except Exception:
        log.exception("Failed to load stored analysis")
        return False
    if result is None:
        return False
    state.publish(result)
    log.info("Restored analysis from %s", result.metadata.completed_at.isoformat())
    return True


# ---------------------------------------------------------------------------
# Read-side views
# ---------------------------------------------------------------------------


def narrative_summary(narrative: Narrative) -> dict[str, Any]:
    data = narrative.model_dump(exclude={"signals", "ideas", "explanation", "updated_at"})
    data["signal_count"] = len(narrative.signals)
    data["idea_count"] = len(narrative.ideas)
    return data


def narrative_detail(narrative: Narrative) -> dict[str, Any]:
    data = narrative.model_dump()
    data["signal_count"] = len(narrative.signals)
    data["idea_count"] = len(narrative.ideas)
    return data


def find_narrative(result: AnalysisPipelineResult | None, key: str) -> Narrative | None:
    """Look a narrative up by slug, falling back to id."""
    if result is None:
        return None
    for narrative in result.narratives:
        if narrative.slug == key:
            return narrative
    return next((n for n in result.narratives if n.id == key), None)


def list_ideas(result: AnalysisPipelineResult | None, category: str | None = None) -> list[dict[str, Any]]:
    if result is None:
        return []
    ideas = [
        {**idea.model_dump(), "narrative_title": narrative.title, "narrative_slug": narrative.slug}
        for narrative in result.narratives
        for idea in narrative.ideas
        if category is None or idea.category == category
    ]
    ideas.sort(key=lambda i: i["score"], reverse=True)
    return ideas


def page_signals(
    result: AnalysisPipelineResult | None,
    source: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict[str, Any]:
    signals = result.all_signals if result is not None else []
    if source:
        signals = [s for s in signals if s.source == source]
    start = (page - 1) * page_size
    return {
        "items": signals[start:start + page_size],
        "total": len(signals),
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(len(signals) / page_size) if signals else 0,
    }
