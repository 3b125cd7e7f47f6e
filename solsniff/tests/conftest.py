from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from solsniff.models import (
    AnalysisPipelineResult,
    Base,
    BuildIdea,
    Narrative,
    PipelineMetadata,
    Signal,
)


@pytest.fixture()
def make_signal():
    def _make(score: int = 50, source: str = "news", title: str | None = None) -> Signal:
        return Signal(
            source=source,
            title=title or f"{source} signal {score}",
            description=f"score {score}",
            score=score,
            detected_at=datetime.now(UTC),
        )
    return _make


@pytest.fixture()
def session():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def sample_result(make_signal) -> AnalysisPipelineResult:
    completed = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)
    started = completed - timedelta(seconds=42)
    signals = [
        make_signal(85, "onchain", "Jupiter TVL Surge"),
        make_signal(70, "github", "Trending: coral-xyz/anchor"),
        make_signal(55, "social", "SOL Market Overview"),
        make_signal(30, "news", "Solana Ecosystem News Monitoring"),
    ]

    def idea(narrative_id: str, n: int, score: int, category: str) -> BuildIdea:
        return BuildIdea(
            id=f"idea-{narrative_id}-{n}", title=f"Idea {narrative_id} {n}", slug=f"idea-{narrative_id}-{n}",
            description="pitch", category=category, narrative_id=narrative_id,
            score=score, created_at=completed,
        )

    narratives = [
        Narrative(
            id="n1", title="Solana DeFi Renaissance", slug="solana-defi-renaissance",
            description="DeFi is back", explanation="Long analysis", status="accelerating",
            confidence_score=82, trend_direction="up",
            signals=[signals[0].model_copy(update={"id": "s1", "created_at": completed})],
            ideas=[idea("n1", 1, 60, "defi"), idea("n1", 2, 90, "tooling")],
            tags=["defi", "tvl"], detected_at=completed, updated_at=completed,
            fortnight_period="2026-03-14_2026-03-14",
        ),
        Narrative(
            id="n2", title="Developer Migration", slug="developer-migration",
            description="Builders arrive", explanation="More analysis",
            confidence_score=64, trend_direction="stable",
            signals=[signals[1].model_copy(update={"id": "s2", "created_at": completed})],
            ideas=[idea("n2", 1, 75, "defi")],
            tags=["devs"], detected_at=completed, updated_at=completed,
            fortnight_period="2026-03-14_2026-03-14",
        ),
    ]
    return AnalysisPipelineResult(
        narratives=narratives,
        all_signals=signals,
        errors=["GitHub rate limited"],
        metadata=PipelineMetadata(
            started_at=started, completed_at=completed, duration_ms=42000,
            signal_count=len(signals), narrative_count=2, idea_count=3,
        ),
    )
