"""
Regex/keyword extraction over raw search hits. No LLM, no network.

Used when the extraction model is unavailable or its output cannot be
parsed. Everything it produces is marked ``ai_generated=False``.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

from enrichment.providers.extraction import social_links_from_urls
from enrichment.providers.web_search import NormalizedResult

DEFAULT_INDUSTRIES: list[dict[str, Any]] = [
    {"industry": "SaaS", "keywords": ["saas", "software as a service"]},
    {"industry": "Fintech", "keywords": ["fintech", "payments", "banking"]},
    {"industry": "Healthcare", "keywords": ["healthcare", "medical"]},
    {"industry": "E-commerce", "keywords": ["e-commerce", "retail"]},
    {"industry": "AI/ML", "keywords": ["artificial intelligence", "machine learning"]},
]

_LOCATION_PATTERN = re.compile(
    r"(?:headquartered|based|located)\s+in\s+([A-Z][a-zA-Z\s,]+?)(?:\.|,|$)",
    re.IGNORECASE,
)
_FOUNDED_PATTERN = re.compile(r"(?:founded|established|since)\s+(?:in\s+)?(\d{4})", re.IGNORECASE)
_EMPLOYEES_PATTERN = re.compile(r"(\d[\d,]*)\+?\s*employees", re.IGNORECASE)
_ABOUT_PREFIX = re.compile(r"^(About|Overview)[:\s]*", re.IGNORECASE)

MIN_DESCRIPTION_CHARS = 50
MAX_DESCRIPTION_CHARS = 500
MIN_FOUNDED_YEAR = 1900


def size_band(employees: int) -> str:
    if employees >= 10_000:
        return "10,000+ employees"
    if employees >= 1_000:
        return "1,000-10,000 employees"
    if employees >= 200:
        return "200-1,000 employees"
    return "1-200 employees"


class HeuristicExtractor:
    """Keyword tables come from config/enrichment.yaml when present."""

    def __init__(self, industries: Optional[list[dict[str, Any]]] = None) -> None:
        table = industries or DEFAULT_INDUSTRIES
        self.industries: list[tuple[str, list[str]]] = [
            (str(row["industry"]), [str(k).lower() for k in row.get("keywords", [])])
            for row in table
            if isinstance(row, dict) and row.get("industry")
        ]

    def _description(self, hits: list[NormalizedResult], domain: str) -> Optional[str]:
        for hit in hits:
            desc = hit.snippet
            if domain not in hit.url.lower() or not desc:
                continue
            if not (MIN_DESCRIPTION_CHARS < len(desc) < MAX_DESCRIPTION_CHARS):
                continue
            desc = _ABOUT_PREFIX.sub("", desc)
            if "cookie" in desc.lower():
                continue
            return desc
        return None

    def _industry(self, lower_text: str) -> Optional[str]:
        for industry, keywords in self.industries:
            if any(kw in lower_text for kw in keywords):
                return industry
        return None

    @staticmethod
    def _location(text: str) -> Optional[str]:
        match = _LOCATION_PATTERN.search(text)
        if not match:
            return None
        loc = match.group(1).strip().rstrip(", ")
        return loc if 2 < len(loc) < 50 else None

    @staticmethod
    def _founded_year(text: str) -> Optional[str]:
        match = _FOUNDED_PATTERN.search(text)
        if not match:
            return None
        year = int(match.group(1))
        if MIN_FOUNDED_YEAR <= year <= datetime.now(timezone.utc).year:
            return match.group(1)
        return None

    @staticmethod
    def _company_size(text: str) -> Optional[str]:
        match = _EMPLOYEES_PATTERN.search(text)
        if not match:
            return None
        return size_band(int(match.group(1).replace(",", "")))

    def extract(self, hits: list[NormalizedResult], domain: str) -> dict[str, Any]:
        """Raw profile fields (camelCase) found in the hits; empty dict when nothing matched."""
        if not hits:
            return {}
        combined = " ".join(block for hit in hits for block in hit.text_blocks())
        fields: dict[str, Any] = {}

        description = self._description(hits, domain.lower())
        if description:
            fields["description"] = description
        industry = self._industry(combined.lower())
        if industry:
            fields["industry"] = industry
        location = self._location(combined)
        if location:
            fields["location"] = location
        year = self._founded_year(combined)
        if year:
            fields["foundedYear"] = year
        size = self._company_size(combined)
        if size:
            fields["companySize"] = size
        social = social_links_from_urls(hit.url for hit in hits)
        if social:
            fields["socialLinks"] = social
        return fields
