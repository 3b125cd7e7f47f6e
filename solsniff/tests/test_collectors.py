"""Tests for collectors, the HTTP retry helper and the collector manager."""
from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from solsniff.collector_manager import CollectorManager
from solsniff.collectors import (
    Collector,
    CollectorResult,
    GithubCollector,
    NewsCollector,
    calculate_news_score,
    fetch_with_retry,
    matching_terms,
    parse_feed_items,
)
from solsniff.config import Settings
from solsniff.models import signal_strength


def _settings(**overrides) -> Settings:
    return Settings(helius_api_key="", github_token="", lunarcrush_api_key="", **overrides)


# ---------------------------------------------------------------------------
# Signal helpers
# ---------------------------------------------------------------------------


class TestSignalStrength:
    @pytest.mark.parametrize("score,expected", [
        (0, "weak"), (39, "weak"), (40, "moderate"), (59, "moderate"),
        (60, "strong"), (79, "strong"), (80, "very_strong"), (100, "very_strong"),
    ])
    def test_tiers(self, score, expected):
        assert signal_strength(score) == expected

    def test_create_signal_stamps_source_and_clamps(self):
        collector = GithubCollector(_settings())
        signal = collector.create_signal("Big repo", "desc", 250.4, {"stars": 9000})
        assert signal.source == "github"
        assert signal.score == 100
        assert signal.strength == "very_strong"
        assert signal.url is None
        assert signal.detected_at.tzinfo is not None

    def test_signal_is_immutable(self, make_signal):
        signal = make_signal(50)
        with pytest.raises(Exception):
            signal.score = 10


# ---------------------------------------------------------------------------
# fetch_with_retry
# ---------------------------------------------------------------------------


class TestFetchWithRetry:
    @pytest.mark.asyncio
    async def test_retries_429_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429 if len(calls) < 3 else 200, json={"ok": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await fetch_with_retry(client, "GET", "https://example.com", base_delay=0)

        assert response.status_code == 200
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_returns_final_429(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await fetch_with_retry(client, "GET", "https://example.com", base_delay=0)

        assert response.status_code == 429
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await fetch_with_retry(client, "GET", "https://example.com", base_delay=0)

        assert response.status_code == 500
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_network_error_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await fetch_with_retry(client, "GET", "https://example.com", base_delay=0)

        assert response.status_code == 200
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_persistent_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await fetch_with_retry(client, "GET", "https://example.com", base_delay=0)


# ---------------------------------------------------------------------------
# Section isolation
# ---------------------------------------------------------------------------


class _TwoSectionCollector(Collector):
    source = "report"
    name = "Two Section Collector"

    def sections(self):
        return {"good": self._good, "bad": self._bad}

    async def _good(self, client):
        return [self.create_signal("Good", "fine", 60)], {"rows": 1}

    async def _bad(self, client):
        raise RuntimeError("upstream exploded")


class TestCollectorSections:
    @pytest.mark.asyncio
    async def test_failing_section_is_isolated(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
            result = await _TwoSectionCollector(_settings(), client=client).collect()

        assert [s.title for s in result.signals] == ["Good"]
        assert result.raw_data == {"good": {"rows": 1}}

    @pytest.mark.asyncio
    async def test_cancelled_section_is_isolated(self):
        class _CancellingCollector(_TwoSectionCollector):
            async def _bad(self, client):
                raise asyncio.CancelledError()

        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
            result = await _CancellingCollector(_settings(), client=client).collect()

        assert [s.title for s in result.signals] == ["Good"]
        assert result.raw_data == {"good": {"rows": 1}}

    @pytest.mark.asyncio
    async def test_github_sections(self):
        now = datetime.now(UTC)

        def handler(request):
            path = request.url.path
            if path == "/search/repositories":
                if request.url.params["q"].startswith("topic:"):
                    return httpx.Response(200, json={"items": []})
                return httpx.Response(200, json={
                    "total_count": 120,
                    "items": [{
                        "full_name": "acme/sol-kit", "description": "Kit",
                        "stargazers_count": 10, "forks_count": 2, "language": "Rust",
                        "html_url": "https://github.com/acme/sol-kit",
                    }],
                })
            if path == "/orgs/solana-labs/repos":
                return httpx.Response(200, json=[
                    {"name": "agave", "pushed_at": now.isoformat(), "stargazers_count": 5},
                    {"name": "old", "pushed_at": (now - timedelta(days=30)).isoformat()},
                ])
            raise httpx.ConnectError("down", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            collector = GithubCollector(_settings(), client=client)
            collector.retry_base_delay = 0
            collector.org_pause = 0
            collector.topic_pause = 0
            result = await collector.collect()

        by_title = {s.title: s for s in result.signals}
        assert by_title["Trending: acme/sol-kit"].score == 56
        assert by_title["New Solana Repositories Created"].score == 70
        assert by_title["solana-labs Active Development"].score == 50
        assert "Solana Topic Activity on GitHub" not in by_title
        assert set(result.raw_data) == {"trending_repos", "org_activity", "new_projects"}


# ---------------------------------------------------------------------------
# News
# ---------------------------------------------------------------------------


class TestNews:
    def test_news_score(self):
        now = datetime(2026, 1, 1, 12, tzinfo=UTC)
        post = {
            "votes": {"positive": 5, "negative": 1},
            "published_at": (now - timedelta(hours=1)).isoformat(),
            "source": {"title": "CoinDesk"},
        }
        assert calculate_news_score(post, now) == 30 + 15 - 2 + 20 + 10

    def test_news_score_clamped(self):
        now = datetime(2026, 1, 1, 12, tzinfo=UTC)
        assert calculate_news_score({"votes": {"positive": 50}}, now) == 95
        assert calculate_news_score({"votes": {"negative": 50}}, now) == 0

    def test_matching_terms(self):
        assert matching_terms("Solana hits new high as SOL rallies", ("solana", "SOL")) == ["solana", "SOL"]
        assert matching_terms("A novel solution for payments", ("SOL", "solana")) == []

    def test_parse_rss(self):
        feed = b"""<?xml version="1.0"?>
        <rss version="2.0"><channel>
          <item>
            <title>Solana validators upgrade</title>
            <link>https://example.com/a</link>
            <description>&lt;p&gt;The &lt;b&gt;upgrade&lt;/b&gt; shipped&lt;/p&gt;</description>
            <pubDate>Mon, 02 Mar 2026 10:00:00 GMT</pubDate>
          </item>
          <item><title>Bitcoin news</title><link>https://example.com/b</link></item>
        </channel></rss>"""
        items = parse_feed_items(feed)
        assert len(items) == 2
        assert items[0]["title"] == "Solana validators upgrade"
        assert items[0]["link"] == "https://example.com/a"
        assert items[0]["description"] == "The upgrade shipped"

    def test_parse_garbage(self):
        assert parse_feed_items(b"") == []

    @pytest.mark.asyncio
    async def test_news_failure_emits_monitoring_signal(self):
        def handler(request):
            if request.url.host == "cryptopanic.com":
                raise httpx.ConnectError("down", request=request)
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            collector = NewsCollector(_settings(), client=client)
            collector.retry_base_delay = 0
            result = await collector.collect()

        assert [s.title for s in result.signals] == ["Solana Ecosystem News Monitoring"]
        assert result.signals[0].score == 30


# ---------------------------------------------------------------------------
# CollectorManager
# ---------------------------------------------------------------------------


def _fake_collector(name, source, result=None, error=None):
    collect = AsyncMock(return_value=result, side_effect=error)
    return SimpleNamespace(name=name, source=source, collect=collect)


class TestCollectorManager:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, make_signal):
        collectors = [
            _fake_collector("Onchain", "onchain", CollectorResult([make_signal(40, "onchain")], {"tvl": 1})),
            _fake_collector("GitHub", "github", error=RuntimeError("GitHub API rate limit")),
            _fake_collector("Social", "social", CollectorResult([make_signal(90, "social")], {})),
            _fake_collector("News", "news", CollectorResult([make_signal(65, "news")], {})),
        ]
        outcome = await CollectorManager(collectors=collectors).collect_all()

        assert [s.score for s in outcome.signals] == [90, 65, 40]
        assert outcome.errors == ["GitHub API rate limit"]
        assert set(outcome.raw_data) == {"onchain", "social", "news"}
        for c in collectors:
            c.collect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_message_becomes_unknown_error(self):
        outcome = await CollectorManager(
            collectors=[_fake_collector("News", "news", error=RuntimeError())],
        ).collect_all()
        assert outcome.errors == ["Unknown error"]
        assert outcome.signals == []

    @pytest.mark.asyncio
    async def test_cancelled_collector_keeps_other_signals(self, make_signal):
        collectors = [
            _fake_collector("Social", "social", CollectorResult([make_signal(70, "social")], {})),
            _fake_collector("News", "news", error=asyncio.CancelledError()),
        ]
        outcome = await CollectorManager(collectors=collectors).collect_all()

        assert [s.score for s in outcome.signals] == [70]
        assert outcome.errors == ["Unknown error"]
        assert set(outcome.raw_data) == {"social"}

    @pytest.mark.asyncio
    async def test_sort_is_stable_for_equal_scores(self, make_signal):
        first = make_signal(50, "onchain", "first")
        second = make_signal(50, "github", "second")
        collectors = [
            _fake_collector("Onchain", "onchain", CollectorResult([first], {})),
            _fake_collector("GitHub", "github", CollectorResult([second], {})),
        ]
        outcome = await CollectorManager(collectors=collectors).collect_all()
        assert [s.title for s in outcome.signals] == ["first", "second"]
