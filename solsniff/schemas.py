"""Pydantic response schemas for the SolSniff API."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from solsniff.models import BuildIdea, PipelineMetadata, Signal


class HealthOut(BaseModel):
    status: str
    version: str
    last_analyzed_at: datetime | None = None
    cached_narratives: int = 0
    is_analyzing: bool = False


class NarrativeSummary(BaseModel):
    id: str
    title: str
    slug: str
    description: str
    status: str
    confidence_score: int
    trend_direction: str
    tags: list[str] = []
    fortnight_period: str
    detected_at: datetime
    signal_count: int = 0
    idea_count: int = 0


class NarrativeDetail(NarrativeSummary):
    explanation: str
    updated_at: datetime
    signals: list[Signal] = []
    ideas: list[BuildIdea] = []


class IdeaOut(BuildIdea):
    narrative_title: str
    narrative_slug: str


class SignalPage(BaseModel):
    items: list[Signal]
    total: int
    page: int
    page_size: int
    pages: int


class AnalysisStatusOut(BaseModel):
    is_analyzing: bool
    last_analyzed_at: datetime | None = None
    last_error: str | None = None
    errors: list[str] = []
    metadata: PipelineMetadata | None = None


class AnalyzeAccepted(BaseModel):
    status: str = "started"
    message: str = "Analysis started"
