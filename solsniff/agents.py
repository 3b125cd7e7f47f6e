"""LLM agents: narrative detection over signals, build-idea generation per narrative."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from solsniff.config import Settings, get_settings
from solsniff.models import Signal
from solsniff.providers import JSONExtractionError, LLMMessage, LLMProvider, create_llm_provider

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

NARRATIVE_SYSTEM_PROMPT = """\
You are an expert crypto analyst specializing in the Solana ecosystem. You \
analyze signals from many data sources and identify emerging narratives: \
coherent themes or trends that show where the ecosystem is heading.

A narrative is a unifying theme that connects multiple signals. For example:
- "Solana DeFi Renaissance" (several DeFi protocols growing TVL at once)
- "Institutional Adoption Wave" (institutional players entering Solana)
- "Developer Migration to Solana" (GitHub activity surge, new projects)
- "AI x Crypto Convergence" (AI-related projects launching on Solana)

Identify 4-7 distinct narratives. Each one MUST include all of these fields:
1. "title" - a clear, catchy title
2. "description" - a 1-2 sentence summary
3. "explanation" - a 2-4 paragraph detailed analysis
4. "status" - one of "emerging", "accelerating", "established"
5. "confidenceScore" - integer 0-100, your confidence in the narrative
6. "trendDirection" - one of "up", "down", "stable"
7. "tags" - array of 3-6 keyword strings
8. "relatedSignalIndices" - array of integer indices of the supporting signals

Prefer narratives that are emerging, actionable, and supported by more than \
one type of signal.

Today's date: {today}"""

NARRATIVE_USER_PROMPT = """\
Analyze these {count} signals from the Solana ecosystem and identify emerging narratives:

{digest}

Respond with a JSON object matching this exact schema:
{{
  "narratives": [
    {{
      "title": "string",
      "description": "string",
      "explanation": "string",
      "status": "emerging" | "accelerating" | "established",
      "confidenceScore": 75,
      "trendDirection": "up" | "down" | "stable",
      "tags": ["tag1", "tag2", "tag3"],
      "relatedSignalIndices": [0, 1, 5]
    }}
  ]
}}

Every field is required. Return 4-7 narratives."""

IDEA_SYSTEM_PROMPT = """\
You are a product strategist with deep expertise in the Solana ecosystem, \
blockchain engineering, and building startups. Given a narrative in the Solana \
ecosystem, you propose concrete, buildable product ideas.

Every idea must be:
- SPECIFIC: a concrete product with a clear scope, not a vague concept
- FEASIBLE: buildable by a small team in 3-6 months
- NOVEL: not a copy of an existing product
- SOLANA-NATIVE: uses Solana's strengths (speed, low cost, composability)
- MARKET-READY: serves a real need of a clear target audience

For each idea provide:
- title: product name
- description: 2-3 sentence elevator pitch
- problem: the specific problem it solves
- solution: how it solves it, the core mechanism
- targetAudience: the primary users
- feasibility: low/medium/high, by technical complexity
- category: defi/nft/infrastructure/tooling/social/gaming/payments/dao/ai/other
- technicalRequirements: key technical components (array of strings)
- potentialChallenges: main risks and challenges (array of strings)
- score: 0-100, your confidence in the idea's viability

Generate exactly 4 ideas per narrative, ranging from practical to ambitious."""

IDEA_USER_PROMPT = """\
Generate 4 concrete product ideas for this Solana ecosystem narrative:

**Narrative: {title}**
{description}

**Detailed Analysis:**
{explanation}

Respond with a JSON object containing an "ideas" array with exactly 4 idea objects."""


def build_signal_digest(signals: list[Signal], limit: int = 40) -> str:
    """One line per signal, indexed from 0, for the first *limit* signals."""
    return "\n".join(
        f"[{i}] [{s.source}] (Score: {s.score}) {s.title}: {s.description}"
        for i, s in enumerate(signals[:limit])
    )


# ---------------------------------------------------------------------------
# Narrative detection
# ---------------------------------------------------------------------------


class NarrativeDetector:
    def __init__(self, provider: LLMProvider | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.provider = provider or create_llm_provider(self.settings)

    async def detect_narratives(self, signals: list[Signal]) -> dict[str, list[dict[str, Any]]]:
        """Ask the model for narratives over the top signals.

        Returns ``{"narratives": [...]}`` with the raw narrative objects as the
        model produced them; field defaults are applied during assembly.
        """
        digest = build_signal_digest(signals, self.settings.signal_digest_limit)
        today = datetime.now(UTC).date().isoformat()

        result = await self.provider.structured_output([
            LLMMessage("system", NARRATIVE_SYSTEM_PROMPT.format(today=today)),
            LLMMessage("user", NARRATIVE_USER_PROMPT.format(count=len(signals), digest=digest)),
        ])

        narratives = result.get("narratives") if isinstance(result, dict) else None
        if not isinstance(narratives, list):
            raise JSONExtractionError("LLM response has no 'narratives' array", str(result)[:500])
        return {"narratives": [n for n in narratives if isinstance(n, dict)]}


# ---------------------------------------------------------------------------
# Idea generation
# ---------------------------------------------------------------------------


@dataclass
class IdeaRequest:
    narrative_title: str
    narrative_description: str = ""
    narrative_explanation: str = ""


class IdeaGenerator:
    def __init__(
        self,
        provider: LLMProvider | None = None,
        settings: Settings | None = None,
        delay: float | None = None,
    ):
        self.settings = settings or get_settings()
        self.provider = provider or create_llm_provider(self.settings)
        self.delay = self.settings.idea_delay_seconds if delay is None else delay

    async def generate_ideas(self, request: IdeaRequest) -> list[dict[str, Any]]:
        result = await self.provider.structured_output([
            LLMMessage("system", IDEA_SYSTEM_PROMPT),
            LLMMessage("user", IDEA_USER_PROMPT.format(
                title=request.narrative_title,
                description=request.narrative_description,
                explanation=request.narrative_explanation,
            )),
        ])
        ideas = result.get("ideas") if isinstance(result, dict) else result
        if not isinstance(ideas, list):
            raise JSONExtractionError("LLM response has no 'ideas' array", str(result)[:500])
        return [idea for idea in ideas if isinstance(idea, dict)]

    async def generate_batch_ideas(self, requests: list[IdeaRequest]) -> dict[str, list[dict[str, Any]]]:
        """Generate ideas for each narrative in turn, pausing between calls.

        A failed narrative maps to an empty list; the rest still run.
        """
        results: dict[str, list[dict[str, Any]]] = {}
        for i, request in enumerate(requests):
            if i and self.delay > 0:
                await asyncio.sleep(self.delay)
            log.info("Generating ideas for: %s", request.narrative_title)
            try:
                results[request.narrative_title] = await self.generate_ideas(request)
            except Exception as exc:
                log.warning("Idea generation failed for %r: %s", request.narrative_title, exc)
                results[request.narrative_title] = []
        return results
