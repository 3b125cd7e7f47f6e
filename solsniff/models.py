from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

SignalSource = Literal["onchain", "github", "social", "news", "report"]
SignalStrength = Literal["weak", "moderate", "strong", "very_strong"]
NarrativeStatus = Literal["emerging", "accelerating", "established", "fading"]
TrendDirection = Literal["up", "down", "stable"]
Feasibility = Literal["low", "medium", "high"]
IdeaCategory = Literal[
    "defi", "nft", "infrastructure", "tooling", "social",
    "gaming", "payments", "dao", "ai", "other",
]

DETECTED_STATUSES = ("emerging", "accelerating", "established")
TREND_DIRECTIONS = ("up", "down", "stable")
FEASIBILITY_LEVELS = ("low", "medium", "high")
IDEA_CATEGORIES = (
    "defi", "nft", "infrastructure", "tooling", "social",
    "gaming", "payments", "dao", "ai", "other",
)


def signal_strength(score: int) -> SignalStrength:
    """Map a 0-100 score to its strength tier."""
    if score >= 80:
        return "very_strong"
    if score >= 60:
        return "strong"
    if score >= 40:
        return "moderate"
    return "weak"


# ---------------------------------------------------------------------------
# Domain models
# ---------------------------------------------------------------------------


class Signal(BaseModel):
    """A single normalized observation from one upstream source.

    ``id`` and ``created_at`` stay empty on collected signals and are filled in
    when a narrative takes its own copy during assembly.
    """
    model_config = ConfigDict(frozen=True)

    source: SignalSource
    title: str
    description: str
    url: str | None = None
    score: int = Field(ge=0, le=100)
    metadata: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime
    id: str | None = None
    created_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def strength(self) -> SignalStrength:
        return signal_strength(self.score)


class BuildIdea(BaseModel):
    id: str
    title: str
    slug: str
    description: str = ""
    problem: str = ""
    solution: str = ""
    target_audience: str = ""
    feasibility: Feasibility = "medium"
    category: IdeaCategory = "other"
    technical_requirements: list[str] = Field(default_factory=list)
    potential_challenges: list[str] = Field(default_factory=list)
    narrative_id: str
    score: int = Field(ge=0, le=100)
    created_at: datetime


class Narrative(BaseModel):
    id: str
    title: str
    slug: str
    description: str = ""
    explanation: str = ""
    status: NarrativeStatus = "emerging"
    confidence_score: int = Field(ge=0, le=100)
    trend_direction: TrendDirection = "up"
    signals: list[Signal] = Field(default_factory=list)
    ideas: list[BuildIdea] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    detected_at: datetime
    updated_at: datetime
    fortnight_period: str


class PipelineMetadata(BaseModel):
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    signal_count: int
    narrative_count: int
    idea_count: int


class AnalysisPipelineResult(BaseModel):
    narratives: list[Narrative] = Field(default_factory=list)
    all_signals: list[Signal] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    metadata: PipelineMetadata


# ---------------------------------------------------------------------------
# ORM rows (persisted results)
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


class AnalysisReportRow(Base):
    __tablename__ = "analysis_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period: Mapped[str] = mapped_column(String(30), default="")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    summary: Mapped[str] = mapped_column(Text, default="")
    total_signals: Mapped[int] = mapped_column(Integer, default=0)
    signal_breakdown_json: Mapped[str] = mapped_column(Text, default="{}")
    signals_json: Mapped[str] = mapped_column(Text, default="[]")
    errors_json: Mapped[str] = mapped_column(Text, default="[]")
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    narratives: Mapped[list[NarrativeRow]] = relationship(
        "NarrativeRow", back_populates="report", cascade="all, delete-orphan",
        order_by="NarrativeRow.position",
    )


class NarrativeRow(Base):
    __tablename__ = "narratives"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    report_id: Mapped[int] = mapped_column(Integer, ForeignKey("analysis_reports.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    slug: Mapped[str] = mapped_column(String(60), default="", index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    explanation: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="emerging")  # emerging | accelerating | established | fading
    confidence_score: Mapped[int] = mapped_column(Integer, default=70)
    trend_direction: Mapped[str] = mapped_column(String(10), default="up")  # up | down | stable
    tags_json: Mapped[str] = mapped_column(Text, default="[]")
    signals_json: Mapped[str] = mapped_column(Text, default="[]")
    fortnight_period: Mapped[str] = mapped_column(String(30), default="")
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    report: Mapped[AnalysisReportRow] = relationship("AnalysisReportRow", back_populates="narratives")
    ideas: Mapped[list[BuildIdeaRow]] = relationship(
        "BuildIdeaRow", back_populates="narrative", cascade="all, delete-orphan",
        order_by="BuildIdeaRow.position",
    )


class BuildIdeaRow(Base):
    __tablename__ = "build_ideas"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    narrative_id: Mapped[str] = mapped_column(String(32), ForeignKey("narratives.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    slug: Mapped[str] = mapped_column(String(60), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    problem: Mapped[str] = mapped_column(Text, default="")
    solution: Mapped[str] = mapped_column(Text, default="")
    target_audience: Mapped[str] = mapped_column(Text, default="")
    feasibility: Mapped[str] = mapped_column(String(10), default="medium")
    category: Mapped[str] = mapped_column(String(20), default="other")
    technical_requirements_json: Mapped[str] = mapped_column(Text, default="[]")
    potential_challenges_json: Mapped[str] = mapped_column(Text, default="[]")
    score: Mapped[int] = mapped_column(Integer, default=50)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    narrative: Mapped[NarrativeRow] = relationship("NarrativeRow", back_populates="ideas")
