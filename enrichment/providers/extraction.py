"""
Turn free text into the profile JSON shape with the extraction model.

LLM output is untrusted and often wrapped in markdown fences or sprinkled with
trailing commas. Parsing returns a tagged ParsedExtraction instead of raising,
so the caller can fall through to the next strategy on any failure.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

import structlog

from enrichment.llm_client import LLMClient, LLMTask
from enrichment.models import CompanyIdentity
from enrichment.prompts.templates import (
    PROFILE_EXTRACTOR_SYSTEM,
    PROFILE_EXTRACTOR_USER_TEMPLATE,
    PROFILE_JSON_SHAPE,
    SEARCH_RESULTS_EXTRACTOR_USER_TEMPLATE,
)

logger = structlog.get_logger()

CITATION_PATTERN = re.compile(r"https?://[^\s\)\]]+")
MAX_CITATIONS = 10

PROFILE_KEYS: tuple[str, ...] = (
    "description",
    "industry",
    "location",
    "foundedYear",
    "companySize",
    "keyPeople",
    "productSummary",
)


@dataclass(frozen=True)
class ParsedExtraction:
    """Tagged parse result: ``ok`` with data, or a failure reason."""

    ok: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    retry_count: int = 0

    @classmethod
    def success(cls, data: dict[str, Any], retry_count: int = 0) -> ParsedExtraction:
        return cls(ok=True, data=data, retry_count=retry_count)

    @classmethod
    def failure(cls, error: str, retry_count: int = 0) -> ParsedExtraction:
        return cls(ok=False, error=error, retry_count=retry_count)


def extract_citations(text: str, limit: int = MAX_CITATIONS) -> list[str]:
    """First ``limit`` URLs in ``text`` with trailing punctuation stripped, de-duplicated."""
    seen: list[str] = []
    for match in CITATION_PATTERN.findall(text or ""):
        url = match.rstrip(".,;:")
        if url and url not in seen:
            seen.append(url)
        if len(seen) >= limit:
            break
    return seen


def social_links_from_urls(urls: Iterable[str]) -> dict[str, str]:
    """Pick linkedin/twitter/github profile URLs out of a list of source URLs (last one wins)."""
    links: dict[str, str] = {}
    for url in urls:
        try:
            parts = urlsplit(url)
        except ValueError:
            continue
        host = (parts.hostname or "").removeprefix("www.")
        path = parts.path.lower()
        if host == "linkedin.com" and path.startswith("/company/"):
            links["linkedin"] = url
        elif host in ("twitter.com", "x.com") and len(path) > 1:
            links["twitter"] = url
        elif host == "github.com" and len(path) > 1:
            links["github"] = url
    return links


def strip_json_fences(raw: str) -> str:
    """Remove markdown code fences so we get raw JSON."""
    cleaned = raw.strip()
    cleaned = re.sub(r"^\s*```(?:json)?\s*\n?", "", cleaned, flags=re.IGNORECASE)
    if "```" in cleaned:
        cleaned = cleaned.split("```")[0]
    return cleaned.strip()


def _sanitize_json(text: str) -> str:
    """Fix common LLM JSON errors (trailing commas, NaN/Infinity)."""
    text = re.sub(r",\s*([}\]])", r"\1", text)
    text = re.sub(r"\bNaN\b", "null", text)
    text = re.sub(r"-?Infinity\b", "null", text)
    return text


def parse_extraction(raw: str) -> ParsedExtraction:
    """Parse extraction-model output into a dict restricted to the profile keys."""
    if not raw or not raw.strip():
        return ParsedExtraction.failure("empty extraction output")
    cleaned = strip_json_fences(raw)
    candidates = [cleaned, _sanitize_json(cleaned)]
    # Last resort: outermost braces (model added prose around the object)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if 0 <= start < end:
        candidates.append(_sanitize_json(cleaned[start : end + 1]))

    parsed: Any = None
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            break
        except json.JSONDecodeError:
            continue
    else:
        logger.warning("extraction_parse_failed", chars=len(raw))
        return ParsedExtraction.failure("extraction output is not valid JSON")

    if not isinstance(parsed, dict):
        return ParsedExtraction.failure("extraction output is not a JSON object")

    data = {k: parsed[k] for k in PROFILE_KEYS if parsed.get(k) not in (None, "", [])}
    if not data:
        return ParsedExtraction.failure("extraction output has no profile fields")
    return ParsedExtraction.success(data)


class ProfileExtractor:
    """Runs the extraction prompt through the LLM client and parses the answer."""

    def __init__(self, llm: LLMClient, context_chars: int = 6000) -> None:
        self.llm = llm
        self.context_chars = context_chars

    async def extract(
        self,
        identity: CompanyIdentity,
        content: str,
        *,
        from_search_results: bool = False,
    ) -> ParsedExtraction:
        template = SEARCH_RESULTS_EXTRACTOR_USER_TEMPLATE if from_search_results else PROFILE_EXTRACTOR_USER_TEMPLATE
        user_prompt = template.format(
            company_name=identity.display_name,
            domain=identity.domain,
            content=content[: self.context_chars],
            json_shape=PROFILE_JSON_SHAPE,
        )
        result = await self.llm.generate(
            LLMTask.EXTRACTION,
            user_prompt,
            system_prompt=PROFILE_EXTRACTOR_SYSTEM,
            json_mode=True,
        )
        if not result.success or not result.data:
            return ParsedExtraction.failure(result.error or "extraction call failed", retry_count=result.retry_count)
        parsed = parse_extraction(result.data)
        if not parsed.ok:
            return ParsedExtraction.failure(parsed.error or "parse failed", retry_count=result.retry_count)
        return ParsedExtraction.success(parsed.data, retry_count=result.retry_count)
