from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from solsniff.collectors import (
    Collector,
    GithubCollector,
    NewsCollector,
    OnchainCollector,
    SocialCollector,
)
from solsniff.config import Settings, get_settings
from solsniff.models import Signal

log = logging.getLogger(__name__)


@dataclass
class CollectionOutcome:
    signals: list[Signal] = field(default_factory=list)
    raw_data: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def default_collectors(settings: Settings) -> list[Collector]:
    return [
        OnchainCollector(settings),
        GithubCollector(settings),
        SocialCollector(settings),
        NewsCollector(settings),
    ]


class CollectorManager:
    """Runs every collector in parallel and merges what they return.

    A failing collector contributes one error string and no signals; it never
    cancels the others.
    """

    def __init__(self, settings: Settings | None = None, collectors: list[Collector] | None = None):
        self.collectors = collectors if collectors is not None else default_collectors(settings or get_settings())

    async def collect_all(self) -> CollectionOutcome:
        outcome = CollectionOutcome()
        results = await asyncio.gather(
            *(c.collect() for c in self.collectors), return_exceptions=True,
        )

        for collector, result in zip(self.collectors, results):
            if isinstance(result, BaseException):
                message = str(result) or "Unknown error"
                log.warning("%s failed: %s", collector.name, message)
                outcome.errors.append(message)
                continue
            log.info("%s: %d signals", collector.name, len(result.signals))
            outcome.signals.extend(result.signals)
            outcome.raw_data[collector.source] = result.raw_data

        outcome.signals.sort(key=lambda s: s.score, reverse=True)
        return outcome
