"""LLM chat providers and the structured (JSON) output layer."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import anthropic
import httpx
import openai

from solsniff.config import Settings, get_settings

log = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

JSON_INSTRUCTION = (
    "IMPORTANT: You MUST respond with valid JSON only. "
    "No markdown, no code blocks, no extra text. Just raw JSON."
)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LLMError(Exception):
    """Base class for provider and structured-output failures."""


class ProviderHTTPError(LLMError):
    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"LLM API error: {status_code} - {body[:500]}")


class JSONExtractionError(LLMError):
    """No JSON value could be recovered from a model reply."""

    def __init__(self, message: str, content: str = ""):
        self.content = content
        super().__init__(message)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LLMMessage:
    role: str  # system | user | assistant
    content: str


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


def _find_span(text: str, opener: str, closer: str) -> str | None:
    """Return the first balanced ``opener ... closer`` span in *text*.

    Brackets inside JSON strings are ignored.  Without a balanced span, falls
    back to everything from the first opener to the last closer.
    """
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    end = text.rfind(closer)
    return text[start:end + 1] if end > start else None


def extract_json(content: str) -> Any:
    """Parse a JSON value out of a model reply.

    Tries the whole reply (minus a fence wrapping all of it), then the first
    object span, then the first array span of the reply.
    """
    text = content.strip()
    fenced = _FENCE_RE.fullmatch(text)
    body = fenced.group(1).strip() if fenced else text

    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        first_error = exc

    for opener, closer in (("{", "}"), ("[", "]")):
        span = _find_span(text, opener, closer)
        if span is None:
            continue
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            continue

    raise JSONExtractionError(
        f"Failed to parse JSON from LLM response: {first_error}", content,
    ) from first_error


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class LLMProvider:
    name: str = ""

    def __init__(self, settings: Settings, model: str | None = None):
        self.settings = settings
        self.model = model or settings.model_for(self.name)
        self.api_key = settings.api_key_for(self.name)
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens

    async def chat(self, messages: list[LLMMessage]) -> LLMResponse:
        raise NotImplementedError

    async def structured_output(self, messages: list[LLMMessage], schema_hint: str | None = None) -> Any:
        """Ask for a JSON-only reply and return the parsed value.

        The JSON instruction (and *schema_hint*) is appended to the system
        message of a copy of *messages*; a system message is added when the
        conversation has none.
        """
        instruction = JSON_INSTRUCTION
        if schema_hint:
            instruction += f"\n\nExpected JSON schema:\n{schema_hint}"

        prepared = list(messages)
        for i, message in enumerate(prepared):
            if message.role == "system":
                prepared[i] = LLMMessage("system", f"{message.content}\n\n{instruction}")
                break
        else:
            prepared.insert(0, LLMMessage("system", instruction))

        response = await self.chat(prepared)
        return extract_json(response.content)


class GroqProvider(LLMProvider):
    """Groq's OpenAI-compatible endpoint, retrying on HTTP 429.

    Each 429 waits ``rate_limit_delay`` seconds and re-issues the same
    request, at most ``max_rate_limit_retries`` times.
    """

    name = "groq"

    def __init__(self, settings: Settings, model: str | None = None, client: Any = None):
        super().__init__(settings, model)
        self.rate_limit_delay = settings.rate_limit_delay_seconds
        self.max_rate_limit_retries = settings.max_rate_limit_retries
        self._client = client or openai.AsyncOpenAI(
            api_key=self.api_key or None,
            base_url=GROQ_BASE_URL,
            max_retries=0,
            timeout=settings.llm_timeout_seconds,
        )

    async def chat(self, messages: list[LLMMessage], _attempt: int = 0) -> LLMResponse:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.RateLimitError as exc:
            if _attempt >= self.max_rate_limit_retries:
                raise ProviderHTTPError(429, str(exc)) from exc
            log.warning(
                "Groq rate limited, retrying in %.1fs (%d/%d)",
                self.rate_limit_delay, _attempt + 1, self.max_rate_limit_retries,
            )
            await asyncio.sleep(self.rate_limit_delay)
            return await self.chat(messages, _attempt + 1)
        except openai.APIStatusError as exc:
            raise ProviderHTTPError(exc.status_code, str(exc)) from exc
        except openai.APIError as exc:
            raise LLMError(f"Groq API call failed: {exc}") from exc

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self.model,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            ) if usage else TokenUsage(),
        )


class OpenAIProvider(LLMProvider):
    """Any OpenAI-compatible ``/chat/completions`` endpoint over plain HTTP."""

    name = "openai"

    def __init__(
        self,
        settings: Settings,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(settings, model)
        self.base_url = settings.openai_base_url.rstrip("/")
        self._transport = transport

    async def chat(self, messages: list[LLMMessage]) -> LLMResponse:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.llm_timeout_seconds), transport=self._transport,
        ) as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "messages": [{"role": m.role, "content": m.content} for m in messages],
                    "temperature": self.temperature,
                    "max_tokens": self.max_tokens,
                },
            )
        if not response.is_success:
            raise ProviderHTTPError(response.status_code, response.text)

        data = response.json()
        usage = data.get("usage") or {}
        return LLMResponse(
            content=data["choices"][0]["message"].get("content") or "",
            model=data.get("model") or self.model,
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
        )


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(self, settings: Settings, model: str | None = None, client: Any = None):
        super().__init__(settings, model)
        self._client = client or anthropic.AsyncAnthropic(
            api_key=self.api_key or None,
            max_retries=0,
            timeout=settings.llm_timeout_seconds,
        )

    async def chat(self, messages: list[LLMMessage]) -> LLMResponse:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        kwargs: dict[str, Any] = {}
        if system:
            kwargs["system"] = system
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": m.role, "content": m.content} for m in messages if m.role != "system"],
                **kwargs,
            )
        except anthropic.APIStatusError as exc:
            raise ProviderHTTPError(exc.status_code, str(exc)) from exc
        except anthropic.APIError as exc:
            raise LLMError(f"Anthropic API call failed: {exc}") from exc

        text = "".join(getattr(block, "text", "") for block in response.content)
        prompt = response.usage.input_tokens
        completion = response.usage.output_tokens
        return LLMResponse(
            content=text,
            model=response.model or self.model,
            usage=TokenUsage(prompt, completion, prompt + completion),
        )


PROVIDERS: dict[str, type[LLMProvider]] = {
    "groq": GroqProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}


def create_llm_provider(settings: Settings | None = None, provider: str | None = None) -> LLMProvider:
    """Build the configured provider; unknown names raise ``ValueError``."""
    settings = settings or get_settings()
    name = (provider or settings.llm_provider).lower()
    cls = PROVIDERS.get(name)
    if cls is None:
        raise ValueError(f"Unknown LLM provider: {name!r}")
    return cls(settings)
