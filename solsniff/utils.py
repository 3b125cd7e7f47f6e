"""Shared utility functions used across SolSniff modules."""
from __future__ import annotations

import json
import re
import uuid
from typing import Any

_MISSING = object()

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_SLUG_SPACE_RE = re.compile(r"\s+")
_SLUG_DASH_RE = re.compile(r"-+")
SLUG_MAX_LENGTH = 60


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def slugify(title: str) -> str:
    """Derive a URL slug from a title.

    ``"My Cool DeFi App!!"`` becomes ``"my-cool-defi-app"``.
    """
    slug = _SLUG_STRIP_RE.sub("", title.lower())
    slug = _SLUG_SPACE_RE.sub("-", slug)
    slug = _SLUG_DASH_RE.sub("-", slug)
    return slug[:SLUG_MAX_LENGTH]


def new_id() -> str:
    return uuid.uuid4().hex
