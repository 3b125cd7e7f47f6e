from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from solsniff.agents import IdeaGenerator, IdeaRequest, NarrativeDetector, build_signal_digest
from solsniff.config import Settings
from solsniff.providers import JSONExtractionError


def _provider(**kwargs) -> MagicMock:
    provider = MagicMock()
    provider.structured_output = AsyncMock(**kwargs)
    return provider


class TestSignalDigest:
    def test_truncates_and_formats(self, make_signal):
        signals = [make_signal(90 - i, "onchain", f"Signal {i}") for i in range(45)]
        lines = build_signal_digest(signals, limit=40).splitlines()

        assert len(lines) == 40
        assert lines[0] == "[0] [onchain] (Score: 90) Signal 0: score 90"
        assert lines[-1].startswith("[39] ")


class TestNarrativeDetector:
    @pytest.mark.asyncio
    async def test_returns_raw_narratives(self, make_signal):
        raw = {"title": "DeFi Renaissance", "status": "booming", "relatedSignalIndices": [0, 41]}
        provider = _provider(return_value={"narratives": [raw]})
        signals = [make_signal(50) for _ in range(45)]

        result = await NarrativeDetector(provider, Settings()).detect_narratives(signals)

        assert result == {"narratives": [raw]}
        messages = provider.structured_output.await_args.args[0]
        assert [m.role for m in messages] == ["system", "user"]
        assert "Today's date: " in messages[0].content
        assert "Analyze these 45 signals" in messages[1].content
        assert "[39] " in messages[1].content
        assert "[40] " not in messages[1].content

    @pytest.mark.asyncio
    async def test_missing_narratives_raises(self, make_signal):
        provider = _provider(return_value={"themes": []})
        with pytest.raises(JSONExtractionError):
            await NarrativeDetector(provider, Settings()).detect_narratives([make_signal(50)])

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self, make_signal):
        provider = _provider(side_effect=RuntimeError("LLM down"))
        with pytest.raises(RuntimeError, match="LLM down"):
            await NarrativeDetector(provider, Settings()).detect_narratives([make_signal(50)])


class TestIdeaGenerator:
    @pytest.mark.asyncio
    async def test_generate_ideas_prompt(self):
        provider = _provider(return_value={"ideas": [{"title": "Jito Dashboard"}]})
        request = IdeaRequest("MEV Wars", "Searchers compete", "Long analysis")

        ideas = await IdeaGenerator(provider, Settings()).generate_ideas(request)

        assert ideas == [{"title": "Jito Dashboard"}]
        user = provider.structured_output.await_args.args[0][1].content
        assert "**Narrative: MEV Wars**" in user
        assert "Long analysis" in user

    @pytest.mark.asyncio
    async def test_batch_isolates_failures_and_paces_calls(self):
        provider = _provider(side_effect=[
            {"ideas": [{"title": "A"}]},
            RuntimeError("429 again"),
            {"ideas": [{"title": "C"}, {"title": "D"}]},
        ])
        generator = IdeaGenerator(provider, Settings(), delay=2.0)
        requests = [IdeaRequest("One"), IdeaRequest("Two"), IdeaRequest("Three")]

        with patch("solsniff.agents.asyncio.sleep", new_callable=AsyncMock) as sleep:
            results = await generator.generate_batch_ideas(requests)

        assert results == {
            "One": [{"title": "A"}],
            "Two": [],
            "Three": [{"title": "C"}, {"title": "D"}],
        }
        assert provider.structured_output.await_count == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(2.0)

    @pytest.mark.asyncio
    async def test_batch_waits_between_calls(self):
        four = [{"title": f"Idea {i}"} for i in range(4)]
        provider = _provider(side_effect=[
            {"ideas": four},
            RuntimeError("upstream 500"),
            {"ideas": four},
        ])
        delay = 0.05
        generator = IdeaGenerator(provider, Settings(), delay=delay)

        started = time.perf_counter()
        results = await generator.generate_batch_ideas(
            [IdeaRequest("One"), IdeaRequest("Two"), IdeaRequest("Three")],
        )
        elapsed = time.perf_counter() - started

        assert len(results["One"]) == 4
        assert results["Two"] == []
        assert len(results["Three"]) == 4
        assert elapsed >= 2 * delay

    @pytest.mark.asyncio
    async def test_missing_ideas_array_recorded_empty(self):
        provider = _provider(return_value={"something": "else"})
        with patch("solsniff.agents.asyncio.sleep", new_callable=AsyncMock):
            results = await IdeaGenerator(provider, Settings()).generate_batch_ideas([IdeaRequest("One")])
        assert results == {"One": []}
