"""Signal collectors for the Solana ecosystem.

Each collector gathers signals from one class of upstream source.  A collector
is made of independent *sections* (e.g. "trending repos", "org activity") that
run concurrently; a failing section is logged and contributes no signals, so a
collector's ``collect()`` only raises when something outside its sections
breaks.
"""
from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from lxml import etree, html as lxml_html

from solsniff.config import Settings, get_settings
from solsniff.models import Signal, SignalSource

log = logging.getLogger(__name__)

SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_RPC_URL = "https://mainnet.helius-rpc.com/"
DEFILLAMA_API = "https://api.llama.fi"
GITHUB_API = "https://api.github.com"
COINGECKO_API = "https://api.coingecko.com/api/v3"
LUNARCRUSH_API = "https://lunarcrush.com/api4/public"
CRYPTOPANIC_URL = "https://cryptopanic.com/api/free/v1/posts/"
REDDIT_URL = "https://www.reddit.com"

SectionResult = tuple[list[Signal], Any]
Section = Callable[[httpx.AsyncClient], Awaitable[SectionResult]]


# ---------------------------------------------------------------------------
# HTTP retry helper
# ---------------------------------------------------------------------------


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying on HTTP 429 and network errors.

    Waits ``base_delay * 2**attempt`` seconds between attempts.  Any other
    status is returned to the caller immediately.  The last attempt's response
    (even a 429) is returned, and its transport error is re-raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        final = attempt == max_attempts - 1
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if final:
                raise
            log.warning("Request to %s failed (%d/%d): %s", url, attempt + 1, max_attempts, exc)
        else:
            if response.status_code != 429 or final:
                return response
            log.warning("Rate limited by %s (%d/%d)", url, attempt + 1, max_attempts)
        await asyncio.sleep(base_delay * 2 ** attempt)

    raise RuntimeError(f"Failed after {max_attempts} attempts: {url}")


# ---------------------------------------------------------------------------
# Collector base
# ---------------------------------------------------------------------------


@dataclass
class CollectorResult:
    signals: list[Signal] = field(default_factory=list)
    raw_data: dict[str, Any] = field(default_factory=dict)


class Collector:
    """Base class for all collectors.

    Subclasses set ``source`` and ``name`` and return their sections from
    :meth:`sections`.  Pass *client* to share or mock the HTTP client; it is
    never closed by the collector.
    """

    source: SignalSource
    name: str
    retry_base_delay: float = 1.0

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._client = client

    def sections(self) -> dict[str, Section]:
        raise NotImplementedError

    async def collect(self) -> CollectorResult:
        result = CollectorResult()
        sections = self.sections()
        if not sections:
            return result

        async with self.open_client() as client:
            outcomes = await asyncio.gather(
                *(section(client) for section in sections.values()), return_exceptions=True,
            )

        for key, outcome in zip(sections, outcomes):
            if isinstance(outcome, BaseException):
                log.warning("%s: %s collection failed: %s", self.name, key, outcome)
                continue
            signals, raw = outcome
            result.signals.extend(signals)
            result.raw_data[key] = raw
        return result

    @asynccontextmanager
    async def open_client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected client, or a fresh one closed on exit."""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(self.settings.request_timeout_seconds),
            headers={"User-Agent": self.settings.user_agent},
        ) as client:
            yield client

    def create_signal(
        self,
        title: str,
        description: str,
        score: float,
        metadata: dict[str, Any] | None = None,
        url: str | None = None,
    ) -> Signal:
        return Signal(
            source=self.source,
            title=title,
            description=description,
            url=url or None,
            score=max(0, min(100, round(score))),
            metadata=metadata or {},
            detected_at=datetime.now(UTC),
        )

    async def fetch(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return await fetch_with_retry(client, method, url, base_delay=self.retry_base_delay, **kwargs)

    async def get_json(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> Any:
        """GET *url* and return the decoded body, or ``None`` on a non-2xx status."""
        response = await self.fetch(client, "GET", url, **kwargs)
        if not response.is_success:
            log.debug("%s: GET %s returned %s", self.name, url, response.status_code)
            return None
        return response.json()


async def _pause(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)


def _fmt_int(value: Any) -> str:
    try:
        return f"{int(value or 0):,}"
    except (TypeError, ValueError):
        return "N/A"


def _fmt_float(value: Any, digits: int = 2) -> str:
    if isinstance(value, (int, float)):
        return f"{value:.{digits}f}"
    return "N/A"


# ---------------------------------------------------------------------------
# Onchain: Helius, public RPC, DeFiLlama
# ---------------------------------------------------------------------------


class OnchainCollector(Collector):
    source = "onchain"
    name = "Solana Onchain Collector"

    def sections(self) -> dict[str, Section]:
        sections: dict[str, Section] = {}
        if self.settings.helius_api_key:
            sections["helius"] = self._collect_helius
        sections["public"] = self._collect_public_rpc
        sections["defillama"] = self._collect_defillama
        return sections

    async def _rpc(
        self, client: httpx.AsyncClient, url: str, method: str,
        params: list[Any] | None = None, **kwargs: Any,
    ) -> Any:
        payload: dict[str, Any] = {"jsonrpc": "2.0", "id": 1, "method": method}
        if params is not None:
            payload["params"] = params
        response = await self.fetch(client, "POST", url, json=payload, **kwargs)
        if not response.is_success:
            return None
        return response.json().get("result")

    async def _collect_helius(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: dict[str, Any] = {}
        query = {"api-key": self.settings.helius_api_key}

        samples = await self._rpc(client, HELIUS_RPC_URL, "getRecentPerformanceSamples", [10], params=query)
        if samples:
            raw["performance_samples"] = samples
            avg_tps = sum(
                s.get("numTransactions", 0) / (s.get("samplePeriodSecs") or 1) for s in samples
            ) / len(samples)
            capacity = "high" if avg_tps > 3000 else "moderate" if avg_tps > 2000 else "normal"
            signals.append(self.create_signal(
                "Solana Network TPS Activity",
                f"Current average TPS: {round(avg_tps)}. "
                f"Network is processing transactions at {capacity} capacity.",
                75 if avg_tps > 3000 else 55 if avg_tps > 2000 else 35,
                {"avg_tps": round(avg_tps), "samples": len(samples)},
                "https://solscan.io",
            ))

        epoch = await self._rpc(client, HELIUS_RPC_URL, "getEpochInfo", params=query)
        if epoch:
            raw["epoch"] = epoch
            progress = round(epoch.get("slotIndex", 0) / (epoch.get("slotsInEpoch") or 1) * 100)
            signals.append(self.create_signal(
                "Solana Epoch Progress",
                f"Current epoch: {epoch.get('epoch')}, slot height: {epoch.get('absoluteSlot')}. "
                f"{progress}% through current epoch.",
                40,
                {"epoch": epoch.get("epoch"), "slot_height": epoch.get("absoluteSlot")},
                "https://solscan.io",
            ))
        return signals, raw

    async def _collect_public_rpc(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: dict[str, Any] = {}

        supply = await self._rpc(client, SOLANA_RPC_URL, "getSupply")
        value = (supply or {}).get("value")
        if value:
            raw["supply"] = value
            signals.append(self.create_signal(
                "SOL Supply Metrics",
                f"Circulating supply: {_fmt_int(value.get('circulating', 0) / 1e9)} SOL. "
                f"Non-circulating: {_fmt_int(value.get('nonCirculating', 0) / 1e9)} SOL.",
                35,
                {"circulating_lamports": value.get("circulating"), "total_lamports": value.get("total")},
            ))

        votes = await self._rpc(client, SOLANA_RPC_URL, "getVoteAccounts")
        if votes:
            active = len(votes.get("current") or [])
            delinquent = len(votes.get("delinquent") or [])
            raw["validators"] = {"active": active, "delinquent": delinquent}
            signals.append(self.create_signal(
                "Solana Validator Network Health",
                f"{active} active validators, {delinquent} delinquent. "
                f"Network decentralization is {'strong' if active > 2000 else 'moderate'}.",
                60 if active > 2000 else 40,
                {"active_validators": active, "delinquent_validators": delinquent},
                "https://www.validators.app",
            ))
        return signals, raw

    async def _collect_defillama(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: dict[str, Any] = {}

        chains = await self.get_json(client, f"{DEFILLAMA_API}/v2/chains")
        solana = next((c for c in chains or [] if c.get("name") == "Solana"), None)
        if solana:
            tvl = solana.get("tvl") or 0
            raw["tvl"] = solana
            signals.append(self.create_signal(
                "Solana DeFi TVL",
                f"Current TVL: ${tvl / 1e9:.2f}B. Solana ranks among top DeFi chains by total value locked.",
                70 if tvl > 5e9 else 50,
                {"tvl": tvl, "chain_id": solana.get("chainId")},
                "https://defillama.com/chain/Solana",
            ))

        protocols = await self.get_json(client, f"{DEFILLAMA_API}/protocols")
        if not isinstance(protocols, list):
            return signals, raw

        top = sorted(
            (p for p in protocols if "Solana" in (p.get("chains") or [])),
            key=lambda p: p.get("tvl") or 0,
            reverse=True,
        )[:15]
        raw["top_protocols"] = [
            {k: p.get(k) for k in ("name", "tvl", "category", "change_1d", "change_7d")}
            for p in top
        ]

        for protocol in top[:10]:
            change = protocol.get("change_7d")
            if isinstance(change, (int, float)) and change > 20:
                tvl = protocol.get("tvl") or 0
                signals.append(self.create_signal(
                    f"{protocol.get('name')} TVL Surge",
                    f"{protocol.get('name')} ({protocol.get('category')}) saw {change:.1f}% TVL increase "
                    f"in 7 days. Current TVL: ${tvl / 1e6:.1f}M.",
                    min(90, 50 + change),
                    {"name": protocol.get("name"), "category": protocol.get("category"),
                     "tvl": tvl, "change_7d": change},
                    protocol.get("url"),
                ))

        by_category: dict[str, float] = {}
        for protocol in top:
            category = protocol.get("category")
            if category:
                by_category[category] = by_category.get(category, 0) + (protocol.get("tvl") or 0)
        top_categories = sorted(by_category.items(), key=lambda kv: kv[1], reverse=True)[:5]
        if top_categories:
            summary = ", ".join(f"{cat}: ${tvl / 1e6:.0f}M" for cat, tvl in top_categories)
            signals.append(self.create_signal(
                "Solana DeFi Category Distribution",
                f"Top DeFi categories by TVL: {summary}",
                55,
                {"categories": dict(top_categories)},
            ))
        return signals, raw


# ---------------------------------------------------------------------------
# GitHub developer activity
# ---------------------------------------------------------------------------

SOLANA_ORGS = [
    "solana-labs", "solana-foundation", "coral-xyz", "metaplex-foundation",
    "jup-ag", "orca-so", "marinade-finance", "helium", "squads-protocol",
    "drift-labs", "tensor-hq", "magiceden-oss", "clockwork-xyz", "switchboard-xyz",
    "raydium-io", "project-serum",
]

SOLANA_TOPICS = [
    "solana", "solana-program", "anchor-framework", "solana-dapp",
    "solana-nft", "solana-defi", "solana-mobile",
]


class GithubCollector(Collector):
    source = "github"
    name = "GitHub Developer Activity Collector"

    org_limit = 6
    topic_limit = 3
    org_pause = 0.2
    topic_pause = 0.5

    def sections(self) -> dict[str, Section]:
        return {
            "trending_repos": self._trending_repos,
            "org_activity": self._org_activity,
            "new_projects": self._new_projects,
        }

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.settings.github_token:
            headers["Authorization"] = f"Bearer {self.settings.github_token}"
        return headers

    async def _trending_repos(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        since = (datetime.now(UTC) - timedelta(days=30)).date().isoformat()
        data = await self.get_json(
            client, f"{GITHUB_API}/search/repositories",
            params={
                "q": f"solana language:rust language:typescript created:>{since}",
                "sort": "stars", "order": "desc", "per_page": 20,
            },
            headers=self.headers,
        )
        if not data:
            return signals, []

        repos = data.get("items") or []
        raw = [
            {"name": r.get("full_name"), "description": r.get("description"),
             "stars": r.get("stargazers_count", 0), "forks": r.get("forks_count", 0),
             "language": r.get("language"), "url": r.get("html_url"), "created": r.get("created_at")}
            for r in repos
        ]

        for repo in repos[:10]:
            stars = repo.get("stargazers_count", 0)
            forks = repo.get("forks_count", 0)
            signals.append(self.create_signal(
                f"Trending: {repo.get('full_name')}",
                f"{repo.get('description') or 'No description'}. {stars} stars, {forks} forks. "
                f"Language: {repo.get('language') or 'Mixed'}.",
                min(90, 30 + stars * 2 + forks * 3),
                {"full_name": repo.get("full_name"), "stars": stars, "forks": forks,
                 "language": repo.get("language"), "topics": repo.get("topics") or []},
                repo.get("html_url"),
            ))

        total = data.get("total_count") or 0
        if total:
            signals.append(self.create_signal(
                "New Solana Repositories Created",
                f"{total} new Solana-related repositories created in the last 30 days, "
                f"indicating {'strong' if total > 100 else 'moderate'} developer interest.",
                70 if total > 100 else 55 if total > 50 else 40,
                {"total_new_repos": total, "period": "30d"},
            ))
        return signals, raw

    async def _org_activity(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: list[dict[str, Any]] = []
        week_ago = datetime.now(UTC) - timedelta(days=7)

        for org in SOLANA_ORGS[:self.org_limit]:
            try:
                repos = await self.get_json(
                    client, f"{GITHUB_API}/orgs/{org}/repos",
                    params={"sort": "pushed", "direction": "desc", "per_page": 5},
                    headers=self.headers,
                )
                active = [
                    r for r in repos or []
                    if r.get("pushed_at") and datetime.fromisoformat(r["pushed_at"]) > week_ago
                ]
                if active:
                    raw.append({
                        "org": org,
                        "active_repos": [
                            {"name": r.get("name"), "pushed_at": r.get("pushed_at"),
                             "stars": r.get("stargazers_count", 0)}
                            for r in active
                        ],
                    })
                    signals.append(self.create_signal(
                        f"{org} Active Development",
                        f"{len(active)} repos updated in the last week. Most recent: "
                        f"{active[0].get('name')} ({active[0].get('stargazers_count', 0)} stars).",
                        45 + len(active) * 5,
                        {"org": org, "active_repo_count": len(active),
                         "repos": [r.get("name") for r in active]},
                        f"https://github.com/{org}",
                    ))
            except Exception as exc:
                log.warning("GitHub org activity failed for %s: %s", org, exc)
            await _pause(self.org_pause)
        return signals, raw

    async def _new_projects(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: list[dict[str, Any]] = []
        topics = SOLANA_TOPICS[:self.topic_limit]

        for topic in topics:
            data = await self.get_json(
                client, f"{GITHUB_API}/search/repositories",
                params={"q": f"topic:{topic}", "sort": "updated", "order": "desc", "per_page": 5},
                headers=self.headers,
            )
            for repo in (data or {}).get("items") or []:
                raw.append({
                    "topic": topic, "name": repo.get("full_name"),
                    "stars": repo.get("stargazers_count", 0), "updated": repo.get("updated_at"),
                })
            await _pause(self.topic_pause)

        if raw:
            signals.append(self.create_signal(
                "Solana Topic Activity on GitHub",
                f"{len(raw)} recently updated repos across Solana-related topics ({', '.join(topics)}).",
                50,
                {"topic_repos": len(raw), "topics": topics},
            ))
        return signals, raw


# ---------------------------------------------------------------------------
# Social: LunarCrush, CoinGecko, Reddit
# ---------------------------------------------------------------------------

SUBREDDITS = ("solana", "solanadev")


class SocialCollector(Collector):
    source = "social"
    name = "Social Signals Collector"

    subreddit_pause = 1.0

    def sections(self) -> dict[str, Section]:
        sections: dict[str, Section] = {}
        if self.settings.lunarcrush_api_key:
            sections["lunarcrush"] = self._collect_lunarcrush
        sections["coingecko"] = self._collect_coingecko
        sections["reddit"] = self._collect_reddit
        return sections

    async def _collect_lunarcrush(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: dict[str, Any] = {}
        headers = {"Authorization": f"Bearer {self.settings.lunarcrush_api_key}"}

        data = await self.get_json(client, f"{LUNARCRUSH_API}/coins/sol/v1", headers=headers)
        metrics = (data or {}).get("data")
        if data:
            raw["sol"] = data
        if metrics:
            signals.append(self.create_signal(
                "SOL Social Sentiment",
                f"Social volume: {metrics.get('social_volume') or 'N/A'}, "
                f"Sentiment: {metrics.get('sentiment') or 'N/A'}/5. "
                f"Galaxy Score: {metrics.get('galaxy_score') or 'N/A'}/100.",
                metrics.get("galaxy_score") or 50,
                {"social_volume": metrics.get("social_volume"), "sentiment": metrics.get("sentiment"),
                 "galaxy_score": metrics.get("galaxy_score"),
                 "social_dominance": metrics.get("social_dominance")},
                "https://lunarcrush.com/coins/sol",
            ))

        trending = await self.get_json(
            client, f"{LUNARCRUSH_API}/coins/list/v1",
            params={"sort": "social_volume", "desc": "true", "limit": 20},
            headers=headers,
        )
        if trending:
            raw["trending"] = trending
        return signals, raw

    async def _collect_coingecko(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: dict[str, Any] = {}

        data = await self.get_json(client, f"{COINGECKO_API}/search/trending")
        if data:
            raw["trending"] = data
            coins = data.get("coins") or []
            solana_coins = [c for c in coins if _is_solana_coin(c.get("item") or {})]
            for coin in solana_coins:
                item = coin["item"]
                signals.append(self.create_signal(
                    f"Trending on CoinGecko: {item.get('name')}",
                    f"{item.get('name')} ({item.get('symbol')}) is trending. "
                    f"Market cap rank: #{item.get('market_cap_rank') or 'N/A'}.",
                    65,
                    {"name": item.get("name"), "symbol": item.get("symbol"),
                     "market_cap_rank": item.get("market_cap_rank")},
                    f"https://www.coingecko.com/en/coins/{item.get('id')}",
                ))
            signals.append(self.create_signal(
                "CoinGecko Trending Overview",
                f"{len(coins)} coins currently trending. {len(solana_coins)} are Solana ecosystem tokens.",
                70 if len(solana_coins) > 2 else 40,
                {"total_trending": len(coins), "solana_trending": len(solana_coins)},
            ))

        price = await self.get_json(
            client, f"{COINGECKO_API}/simple/price",
            params={
                "ids": "solana", "vs_currencies": "usd", "include_24hr_change": "true",
                "include_market_cap": "true", "include_24hr_vol": "true",
            },
        )
        sol = (price or {}).get("solana")
        if sol:
            raw["sol_price"] = price
            market_cap = sol.get("usd_market_cap")
            volume = sol.get("usd_24h_vol")
            signals.append(self.create_signal(
                "SOL Market Overview",
                f"SOL price: ${_fmt_float(sol.get('usd'))}. "
                f"24h change: {_fmt_float(sol.get('usd_24h_change'))}%. "
                f"Market cap: ${_fmt_float(market_cap / 1e9 if market_cap else None)}B. "
                f"24h volume: ${_fmt_float(volume / 1e9 if volume else None)}B.",
                55,
                {"price": sol.get("usd"), "change_24h": sol.get("usd_24h_change"),
                 "market_cap": market_cap, "volume_24h": volume},
            ))
        return signals, raw

    async def _collect_reddit(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: dict[str, Any] = {}

        for sub in SUBREDDITS:
            try:
                data = await self.get_json(
                    client, f"{REDDIT_URL}/r/{sub}/hot.json",
                    params={"limit": 10},
                    headers={"User-Agent": self.settings.user_agent},
                )
                posts = [p.get("data") or {} for p in ((data or {}).get("data") or {}).get("children") or []]
                if data:
                    raw[sub] = [
                        {"title": p.get("title"), "score": p.get("score", 0),
                         "comments": p.get("num_comments", 0),
                         "url": f"https://reddit.com{p.get('permalink', '')}",
                         "created": p.get("created_utc")}
                        for p in posts
                    ]
                for post in posts[:5]:
                    upvotes = post.get("score", 0)
                    comments = post.get("num_comments", 0)
                    if upvotes <= 50 and comments <= 20:
                        continue
                    selftext = post.get("selftext") or ""
                    excerpt = f"{selftext[:120]}..." if selftext else ""
                    signals.append(self.create_signal(
                        f"r/{sub}: {(post.get('title') or '')[:80]}",
                        f"{upvotes} upvotes, {comments} comments. {excerpt}".strip(),
                        min(75, 30 + upvotes // 10 + comments),
                        {"subreddit": sub, "score": upvotes, "comments": comments,
                         "author": post.get("author")},
                        f"https://reddit.com{post.get('permalink', '')}",
                    ))
            except Exception as exc:
                log.warning("Reddit collection failed for r/%s: %s", sub, exc)
            await _pause(self.subreddit_pause)
        return signals, raw


def _is_solana_coin(item: dict[str, Any]) -> bool:
    platforms = item.get("platforms") or {}
    return bool(
        platforms.get("solana")
        or "solana" in (item.get("name") or "").lower()
        or "solana" in (item.get("id") or "")
    )


# ---------------------------------------------------------------------------
# News & research: CryptoPanic, CoinGecko ecosystem data, RSS feeds
# ---------------------------------------------------------------------------

NEWS_FEEDS: list[dict[str, Any]] = [
    {
        "name": "CoinDesk",
        "url": "https://www.coindesk.com/arc/outboundfeeds/rss/",
        "terms": ("solana", "SOL", "phantom", "jupiter", "jito"),
    },
    {
        "name": "The Block",
        "url": "https://www.theblock.co/rss.xml",
        "terms": ("solana", "SOL"),
    },
    {
        "name": "Decrypt",
        "url": "https://decrypt.co/feed",
        "terms": ("solana", "SOL", "phantom"),
    },
]

IMPORTANT_NEWS_SOURCES = ("coindesk", "theblock", "decrypt", "cointelegraph")

_ATOM = "{http://www.w3.org/2005/Atom}"


def calculate_news_score(post: dict[str, Any], now: datetime | None = None) -> int:
    """Score a CryptoPanic post from votes, recency and source reputation (0-95)."""
    score = 30
    votes = post.get("votes") or {}
    score += (votes.get("positive") or 0) * 3
    score -= (votes.get("negative") or 0) * 2

    published = post.get("published_at")
    if published:
        try:
            published_at = datetime.fromisoformat(published)
        except ValueError:
            published_at = None
        if published_at is not None:
            if published_at.tzinfo is None:
                published_at = published_at.replace(tzinfo=UTC)
            hours_ago = ((now or datetime.now(UTC)) - published_at).total_seconds() / 3600
            if hours_ago < 6:
                score += 20
            elif hours_ago < 24:
                score += 10

    source_title = ((post.get("source") or {}).get("title") or "").lower()
    if source_title and any(s in source_title for s in IMPORTANT_NEWS_SOURCES):
        score += 10

    return min(95, max(0, score))


def _plain_text(fragment: str) -> str:
    if not fragment.strip():
        return ""
    try:
        return " ".join(lxml_html.fromstring(fragment).text_content().split())
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return fragment.strip()


def _child_text(node: Any, *tags: str) -> str:
    for tag in tags:
        child = node.find(tag)
        if child is not None and child.text:
            return child.text.strip()
    return ""


def parse_feed_items(content: bytes) -> list[dict[str, str]]:
    """Extract items from an RSS 2.0 or Atom document."""
    parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(content, parser=parser)
    except (etree.XMLSyntaxError, ValueError):
        return []
    if root is None:
        return []

    items: list[dict[str, str]] = []
    for node in root.iter("item", f"{_ATOM}entry"):
        link = _child_text(node, "link")
        if not link:
            atom_link = node.find(f"{_ATOM}link")
            link = atom_link.get("href", "") if atom_link is not None else ""
        items.append({
            "title": _child_text(node, "title", f"{_ATOM}title"),
            "link": link,
            "description": _plain_text(_child_text(node, "description", f"{_ATOM}summary")),
            "published": _child_text(node, "pubDate", f"{_ATOM}updated"),
        })
    return items


def matching_terms(text: str, terms: tuple[str, ...]) -> list[str]:
    """Return the *terms* found in *text* as whole words.

    All-caps terms such as tickers match case-sensitively, the rest ignore case.
    """
    found = []
    for term in terms:
        flags = 0 if term.isupper() else re.IGNORECASE
        if re.search(rf"\b{re.escape(term)}\b", text, flags):
            found.append(term)
    return found


class NewsCollector(Collector):
    source = "news"
    name = "News & Research Collector"

    feed_item_limit = 5

    def sections(self) -> dict[str, Section]:
        return {
            "news": self._collect_crypto_news,
            "ecosystem": self._collect_ecosystem_updates,
            "feeds": self._collect_feeds,
        }

    async def _collect_crypto_news(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: list[dict[str, Any]] = []

        try:
            data = await self.get_json(
                client, CRYPTOPANIC_URL,
                params={"auth_token": "free", "currencies": "SOL", "kind": "news", "filter": "hot"},
            )
        except Exception as exc:
            log.warning("Crypto news collection failed: %s", exc)
            signals.append(self.create_signal(
                "Solana Ecosystem News Monitoring",
                "Monitoring crypto news sources for Solana-related developments and narratives.",
                30,
                {"status": "active", "sources": [f["name"] for f in NEWS_FEEDS]},
            ))
            return signals, raw

        for post in ((data or {}).get("results") or [])[:15]:
            source_title = (post.get("source") or {}).get("title") or "Unknown"
            raw.append({
                "title": post.get("title"), "link": post.get("url"),
                "published": post.get("published_at"), "source": source_title,
            })
            score = calculate_news_score(post)
            if score <= 30:
                continue
            votes = post.get("votes")
            vote_text = (
                f" Votes: +{votes.get('positive') or 0} / -{votes.get('negative') or 0}" if votes else ""
            )
            signals.append(self.create_signal(
                (post.get("title") or "")[:100],
                f"Source: {source_title}.{vote_text}",
                score,
                {"source": source_title, "votes": votes,
                 "published_at": post.get("published_at"), "kind": post.get("kind")},
                post.get("url"),
            ))
        return signals, raw

    async def _collect_ecosystem_updates(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        data = await self.get_json(
            client, f"{COINGECKO_API}/coins/solana",
            params={"localization": "false", "tickers": "false",
                    "community_data": "true", "developer_data": "true"},
        )
        if not data:
            return signals, []

        community = data.get("community_data")
        if community:
            signals.append(self.create_signal(
                "Solana Community Growth Metrics",
                f"Twitter followers: {_fmt_int(community.get('twitter_followers'))}, "
                f"Reddit subscribers: {_fmt_int(community.get('reddit_subscribers'))}, "
                f"Reddit active: {_fmt_int(community.get('reddit_accounts_active_48h'))}.",
                50,
                {"twitter_followers": community.get("twitter_followers"),
                 "reddit_subscribers": community.get("reddit_subscribers"),
                 "reddit_active_48h": community.get("reddit_accounts_active_48h")},
            ))

        developer = data.get("developer_data")
        if developer:
            changes = developer.get("code_additions_deletions_4_weeks") or {}
            additions = changes.get("additions")
            signals.append(self.create_signal(
                "Solana Core Developer Activity",
                f"GitHub stars: {_fmt_int(developer.get('stars'))}, "
                f"Forks: {_fmt_int(developer.get('forks'))}, "
                f"Subscribers: {_fmt_int(developer.get('subscribers'))}. "
                f"Code additions (4w): {_fmt_int(additions) if additions is not None else 'N/A'}.",
                55,
                {"stars": developer.get("stars"), "forks": developer.get("forks"),
                 "subscribers": developer.get("subscribers"), "code_changes_4w": changes,
                 "commit_count_4w": developer.get("commit_count_4_weeks")},
                "https://github.com/solana-labs/solana",
            ))

        bullish = data.get("sentiment_votes_up_percentage")
        if bullish:
            bearish = data.get("sentiment_votes_down_percentage")
            signals.append(self.create_signal(
                "SOL Community Sentiment",
                f"Bullish: {_fmt_float(bullish, 1)}%, Bearish: {_fmt_float(bearish, 1)}%.",
                65 if bullish > 70 else 45,
                {"bullish": bullish, "bearish": bearish},
            ))
        return signals, [{"source": "coingecko_detail", "data": data}]

    async def _collect_feeds(self, client: httpx.AsyncClient) -> SectionResult:
        signals: list[Signal] = []
        raw: dict[str, Any] = {}

        for feed in NEWS_FEEDS:
            try:
                response = await self.fetch(client, "GET", feed["url"])
                if not response.is_success:
                    log.debug("Feed %s returned %s", feed["name"], response.status_code)
                    continue
                items = parse_feed_items(response.content)
            except Exception as exc:
                log.warning("Feed collection failed for %s: %s", feed["name"], exc)
                continue

            relevant = []
            for item in items:
                terms = matching_terms(f"{item['title']} {item['description']}", feed["terms"])
                if terms:
                    relevant.append((item, terms))
            raw[feed["name"]] = [item for item, _ in relevant]

            for item, terms in relevant[:self.feed_item_limit]:
                signals.append(self.create_signal(
                    f"{feed['name']}: {item['title'][:90]}",
                    item["description"][:240] or item["title"],
                    min(60, 40 + 5 * len(terms)),
                    {"feed": feed["name"], "terms": terms, "published": item["published"]},
                    item["link"],
                ))
        return signals, raw
