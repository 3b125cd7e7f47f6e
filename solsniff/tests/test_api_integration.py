"""Integration tests for the FastAPI endpoints.

Uses TestClient against a temporary SQLite file and a pre-published result.
"""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from solsniff import services
from solsniff.config import get_settings


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SOLSNIFF_DATABASE_PATH", str(tmp_path / "solsniff.db"))
    monkeypatch.setenv("SOLSNIFF_RUN_ON_STARTUP", "false")
    get_settings.cache_clear()
    from solsniff.app import app

    monkeypatch.setattr(app.state, "analysis", services.AnalysisState())
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, app
    get_settings.cache_clear()


@pytest.fixture()
def seeded_client(client, sample_result):
    c, app = client
    app.state.analysis.publish(sample_result)
    return c, app


class TestReadEndpoints:
    def test_health_empty(self, client):
        c, _ = client
        data = c.get("/api/health").json()
        assert data["status"] == "ok"
        assert data["cached_narratives"] == 0
        assert data["is_analyzing"] is False
        assert data["last_analyzed_at"] is None

    def test_health_seeded(self, seeded_client):
        c, _ = seeded_client
        data = c.get("/api/health").json()
        assert data["cached_narratives"] == 2
        assert data["last_analyzed_at"].startswith("2026-03-14T12:00:00")

    def test_list_narratives(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/api/narratives")
        assert resp.status_code == 200
        data = resp.json()
        assert [n["slug"] for n in data] == ["solana-defi-renaissance", "developer-migration"]
        assert "signals" not in data[0]
        assert data[0]["signal_count"] == 1
        assert data[0]["idea_count"] == 2

    def test_narrative_detail_by_slug_and_id(self, seeded_client):
        c, _ = seeded_client
        by_slug = c.get("/api/narratives/solana-defi-renaissance").json()
        assert by_slug["explanation"] == "Long analysis"
        assert by_slug["signals"][0]["strength"] == "very_strong"
        assert len(by_slug["ideas"]) == 2

        by_id = c.get("/api/narratives/n2").json()
        assert by_id["slug"] == "developer-migration"

    def test_narrative_404(self, seeded_client):
        c, _ = seeded_client
        assert c.get("/api/narratives/nope").status_code == 404

    def test_ideas(self, seeded_client):
        c, _ = seeded_client
        ideas = c.get("/api/ideas").json()
        assert [i["score"] for i in ideas] == [90, 75, 60]
        assert ideas[0]["narrative_title"] == "Solana DeFi Renaissance"

        defi = c.get("/api/ideas", params={"category": "defi"}).json()
        assert len(defi) == 2
        assert c.get("/api/ideas", params={"category": "memes"}).status_code == 422

    def test_signals_pagination(self, seeded_client):
        c, _ = seeded_client
        page = c.get("/api/signals", params={"page": 1, "page_size": 2}).json()
        assert page["total"] == 4
        assert page["pages"] == 2
        assert [s["score"] for s in page["items"]] == [85, 70]

        github = c.get("/api/signals", params={"source": "github"}).json()
        assert [s["source"] for s in github["items"]] == ["github"]

    def test_status(self, seeded_client):
        c, _ = seeded_client
        data = c.get("/api/analysis/status").json()
        assert data["is_analyzing"] is False
        assert data["errors"] == ["GitHub rate limited"]
        assert data["metadata"]["duration_ms"] == 42000


class TestAnalyze:
    def test_analyze_runs_in_background(self, client, sample_result, monkeypatch):
        c, app = client
        pipeline = SimpleNamespace(run=AsyncMock(return_value=sample_result))
        monkeypatch.setattr(app.state, "pipeline_factory", lambda: pipeline)

        resp = c.post("/api/analyze")

        assert resp.status_code == 202
        assert resp.json()["status"] == "started"
        pipeline.run.assert_awaited_once()
        assert app.state.analysis.result is sample_result
        assert not app.state.analysis.is_analyzing
        assert c.get("/api/narratives").json()[0]["slug"] == "solana-defi-renaissance"

    def test_analyze_conflict_while_running(self, client):
        c, app = client
        state = app.state.analysis
        assert state.try_begin()
        try:
            resp = c.post("/api/analyze")
            assert resp.status_code == 409
        finally:
            state.end()

    def test_stored_result_restored_on_startup(self, client, sample_result, monkeypatch):
        c, app = client
        pipeline = SimpleNamespace(run=AsyncMock(return_value=sample_result))
        monkeypatch.setattr(app.state, "pipeline_factory", lambda: pipeline)
        c.post("/api/analyze")

        fresh = services.AnalysisState()
        assert services.restore_latest(fresh)
        assert [n.id for n in fresh.result.narratives] == ["n1", "n2"]
