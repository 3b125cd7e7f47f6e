"""End-to-end analysis run: collect, detect, generate ideas, assemble."""
from __future__ import annotations

import enum
import logging
import math
from datetime import UTC, datetime
from typing import Any

from solsniff.agents import IdeaGenerator, IdeaRequest, NarrativeDetector
from solsniff.collector_manager import CollectorManager
from solsniff.config import Settings, get_settings
from solsniff.models import (
    DETECTED_STATUSES,
    FEASIBILITY_LEVELS,
    IDEA_CATEGORIES,
    TREND_DIRECTIONS,
    AnalysisPipelineResult,
    BuildIdea,
    Narrative,
    PipelineMetadata,
    Signal,
)
from solsniff.providers import LLMProvider, create_llm_provider
from solsniff.utils import new_id, slugify

log = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 70
DEFAULT_IDEA_SCORE = 50


class PipelineStage(str, enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    DETECTING = "detecting"
    GENERATING_IDEAS = "generating_ideas"
    ASSEMBLING = "assembling"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _score(value: Any, default: int) -> int:
    if not _is_number(value) or not math.isfinite(value):
        return default
    return max(0, min(100, round(value)))


def _choice(value: Any, allowed: tuple[str, ...], default: str) -> str:
    return value if value in allowed else default


def _text(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def resolve_signals(indices: Any, signals: list[Signal], created_at: datetime) -> list[Signal]:
    """Owned copies of ``signals[i]`` for each valid index; others are dropped."""
    if not isinstance(indices, list):
        return []
    resolved = []
    for index in indices:
        if isinstance(index, bool) or not isinstance(index, int):
            continue
        if 0 <= index < len(signals):
            resolved.append(signals[index].model_copy(update={"id": new_id(), "created_at": created_at}))
    return resolved


def build_idea(raw: dict[str, Any], narrative_id: str, created_at: datetime) -> BuildIdea:
    title = _text(raw.get("title")) or "Untitled Idea"
    return BuildIdea(
        id=new_id(),
        title=title,
        slug=slugify(title),
        description=_text(raw.get("description")),
        problem=_text(raw.get("problem")),
        solution=_text(raw.get("solution")),
        target_audience=_text(raw.get("targetAudience")),
        feasibility=_choice(raw.get("feasibility"), FEASIBILITY_LEVELS, "medium"),
        category=_choice(raw.get("category"), IDEA_CATEGORIES, "other"),
        technical_requirements=_str_list(raw.get("technicalRequirements")),
        potential_challenges=_str_list(raw.get("potentialChallenges")),
        narrative_id=narrative_id,
        score=_score(raw.get("score"), DEFAULT_IDEA_SCORE),
        created_at=created_at,
    )


def assemble_narratives(
    detected: list[dict[str, Any]],
    ideas_by_title: dict[str, list[dict[str, Any]]],
    signals: list[Signal],
    started_at: datetime,
    completed_at: datetime,
) -> list[Narrative]:
    """Turn raw model output into narratives, applying per-field defaults.

    Signal indices refer to *signals* as collected, before any digest
    truncation.
    """
    period = f"{started_at.date().isoformat()}_{completed_at.date().isoformat()}"
    narratives = []
    for raw in detected:
        title = _text(raw.get("title")) or "Untitled Narrative"
        narrative_id = new_id()
        tags = raw.get("tags")
        narratives.append(Narrative(
            id=narrative_id,
            title=title,
            slug=slugify(title),
            description=_text(raw.get("description")),
            explanation=_text(raw.get("explanation")),
            status=_choice(raw.get("status"), DETECTED_STATUSES, "emerging"),
            confidence_score=_score(raw.get("confidenceScore"), DEFAULT_CONFIDENCE),
            trend_direction=_choice(raw.get("trendDirection"), TREND_DIRECTIONS, "up"),
            signals=resolve_signals(raw.get("relatedSignalIndices"), signals, completed_at),
            ideas=[
                build_idea(idea, narrative_id, completed_at)
                for idea in ideas_by_title.get(title, [])
                if isinstance(idea, dict)
            ],
            tags=_str_list(tags) if isinstance(tags, list) else [],
            detected_at=completed_at,
            updated_at=completed_at,
            fortnight_period=period,
        ))
    return narratives


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class AnalysisPipeline:
    """One analysis run per :meth:`run` call.

    The LLM provider is resolved once here and shared by both agents, so a
    misconfigured provider fails at construction.  Not safe for overlapping
    runs; callers gate that.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider: LLMProvider | None = None,
        collector_manager: CollectorManager | None = None,
        narrative_detector: NarrativeDetector | None = None,
        idea_generator: IdeaGenerator | None = None,
    ):
        self.settings = settings or get_settings()
        self.provider = provider or create_llm_provider(self.settings)
        self.collector_manager = collector_manager or CollectorManager(self.settings)
        self.narrative_detector = narrative_detector or NarrativeDetector(self.provider, self.settings)
        self.idea_generator = idea_generator or IdeaGenerator(self.provider, self.settings)
        self.stage = PipelineStage.IDLE

    async def run(self) -> AnalysisPipelineResult:
        started_at = datetime.now(UTC)
        errors: list[str] = []

        self.stage = PipelineStage.COLLECTING
        log.info("Collecting signals")
        try:
            outcome = await self.collector_manager.collect_all()
            signals = outcome.signals
            errors.extend(outcome.errors)
        except Exception as exc:
            log.exception("Signal collection failed")
            errors.append(f"Collection failed: {exc}")
            signals = []
        log.info("Collected %d signals (%d collector errors)", len(signals), len(errors))

        self.stage = PipelineStage.DETECTING
        log.info("Detecting narratives")
        try:
            detected = (await self.narrative_detector.detect_narratives(signals))["narratives"]
        except Exception as exc:
            log.warning("Narrative detection failed: %s", exc)
            errors.append(f"Narrative detection failed: {exc}")
            detected = []
        log.info("Detected %d narratives", len(detected))

        self.stage = PipelineStage.GENERATING_IDEAS
        ideas_by_title = await self.idea_generator.generate_batch_ideas([
            IdeaRequest(
                narrative_title=_text(n.get("title")) or "Untitled Narrative",
                narrative_description=_text(n.get("description")),
                narrative_explanation=_text(n.get("explanation")),
            )
            for n in detected
        ])

        self.stage = PipelineStage.ASSEMBLING
        completed_at = datetime.now(UTC)
        narratives = assemble_narratives(detected, ideas_by_title, signals, started_at, completed_at)

        result = AnalysisPipelineResult(
            narratives=narratives,
            all_signals=signals,
            errors=errors,
            metadata=PipelineMetadata(
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                signal_count=len(signals),
                narrative_count=len(narratives),
                idea_count=sum(len(n.ideas) for n in narratives),
            ),
        )
        self.stage = PipelineStage.COMPLETE
        log.info(
            "Analysis complete: %d narratives, %d ideas in %dms",
            result.metadata.narrative_count, result.metadata.idea_count, result.metadata.duration_ms,
        )
        return result
