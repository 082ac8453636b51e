"""Optional research step run before tool extraction.

The research call goes through the same provider as everything else. Its
failure is never fatal: the caller logs it and extracts tools from the
original description.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import WebSearchEntry
from .prompts import ENHANCE_DESCRIPTION_TEMPLATE, RESEARCH_PROMPT, SYSTEM_PROMPT, format_prompt
from .providers import BaseProvider

logger = logging.getLogger(__name__)

RESEARCH_MAX_TOKENS = 1024

_SOURCE_RE = re.compile(r"^\s*Source:\s*(\S+)", re.MULTILINE)


def extract_sources(text: str) -> list[str]:
    """URLs listed on 'Source: <url>' lines, first occurrence order."""
    seen: dict[str, None] = {}
    for match in _SOURCE_RE.finditer(text):
        seen.setdefault(match.group(1).rstrip(".,)"), None)
    return list(seen)


async def research(provider: BaseProvider, description: str) -> Optional[WebSearchEntry]:
    """Ask the provider for background on the description; None on failure."""
    prompt = format_prompt(RESEARCH_PROMPT, description=description)
    response = await provider.call(SYSTEM_PROMPT, prompt, RESEARCH_MAX_TOKENS)
    if response.error:
        logger.warning("Research step failed, continuing without it: %s", response.error)
        return None
    if not response.text.strip():
        logger.warning("Research step returned no text, continuing without it")
        return None
    return WebSearchEntry(
        query=description,
        results=response.text.strip(),
        sources=extract_sources(response.text),
    )


def enhance_description(description: str, entry: Optional[WebSearchEntry]) -> str:
    """Description with research notes appended (unchanged without research)."""
    if entry is None:
        return description
    return format_prompt(ENHANCE_DESCRIPTION_TEMPLATE, description=description, research=entry.results)
