"""
Schema validation, fallback-content detection and confidence scoring.

Raw provider output is untrusted: anything that is not the expected type is
dropped, long strings are truncated with a warning, and social links must
match a strict company/profile URL shape for their platform.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

from enrichment.models import EnrichedProfile, SocialLinks

MAX_DESCRIPTION_LENGTH = 2000
MAX_INDUSTRY_LENGTH = 100
MAX_LOCATION_LENGTH = 200
MAX_COMPANY_SIZE_LENGTH = 100
MAX_PRODUCT_SUMMARY_LENGTH = 2000
MAX_KEY_PEOPLE_COUNT = 10
MAX_KEY_PERSON_LENGTH = 200
MAX_SOCIAL_URL_LENGTH = 500
MAX_CITATION_URLS = 5
MIN_FOUNDED_YEAR = 1800

SOCIAL_PATTERNS: dict[str, re.Pattern[str]] = {
    "linkedin": re.compile(r"^https?://(www\.)?linkedin\.com/company/[\w-]+/?$", re.IGNORECASE),
    "twitter": re.compile(r"^https?://(www\.)?(twitter\.com|x\.com)/[\w-]+/?$", re.IGNORECASE),
    "github": re.compile(r"^https?://(www\.)?github\.com/[\w-]+/?$", re.IGNORECASE),
}

CONFIDENCE_WEIGHTS: dict[str, float] = {
    "description": 0.25,
    "industry": 0.15,
    "location": 0.15,
    "company_size": 0.10,
    "founded_year": 0.10,
    "key_people": 0.10,
    "product_summary": 0.05,
    "social_links": 0.10,
}

DEFAULT_PLACEHOLDER_PHRASES: tuple[str, ...] = (
    "visit the website",
    "visit the company's website",
    "for more information",
    "no information available",
    "could not find",
    "unable to retrieve",
)

_YEAR_PATTERN = re.compile(r"\b(1[89]\d{2}|20\d{2})\b")
# Control characters except \t and \n
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# (snake_case, camelCase) names accepted from providers
_STRING_FIELDS: tuple[tuple[str, str, int], ...] = (
    ("description", "description", MAX_DESCRIPTION_LENGTH),
    ("industry", "industry", MAX_INDUSTRY_LENGTH),
    ("location", "location", MAX_LOCATION_LENGTH),
    ("company_size", "companySize", MAX_COMPANY_SIZE_LENGTH),
    ("product_summary", "productSummary", MAX_PRODUCT_SUMMARY_LENGTH),
)


@dataclass
class ProfileValidation:
    """Validated profile plus what had to be changed to get there."""

    profile: EnrichedProfile
    warnings: list[str] = field(default_factory=list)
    fields_dropped: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return bool(self.profile.populated_fields())


def _pick(raw: dict[str, Any], snake: str, camel: str) -> Any:
    if snake in raw:
        return raw[snake]
    return raw.get(camel)


def _sanitize_string(value: Any, max_length: int) -> tuple[Optional[str], bool]:
    """Return (clean value or None, truncated?)."""
    if not isinstance(value, str):
        return None, False
    cleaned = _CONTROL_CHARS.sub("", value).strip()
    if not cleaned:
        return None, False
    if len(cleaned) > max_length:
        return cleaned[: max_length - 3].rstrip() + "...", True
    return cleaned, False


def _validate_founded_year(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        text = str(int(value))
    elif isinstance(value, str):
        text = value.strip()
    else:
        return None
    match = _YEAR_PATTERN.search(text)
    if not match:
        return None
    year = int(match.group(1))
    if year < MIN_FOUNDED_YEAR or year > datetime.now(timezone.utc).year:
        return None
    return match.group(1)


def _validate_string_list(value: Any, max_count: int, max_item_length: int) -> tuple[Optional[list[str]], bool]:
    if not isinstance(value, list):
        return None, False
    items: list[str] = []
    truncated = False
    for item in value:
        if len(items) >= max_count:
            break
        clean, was_truncated = _sanitize_string(item, max_item_length)
        if clean:
            items.append(clean)
            truncated = truncated or was_truncated
    return (items or None), truncated


def _is_http_url(url: str) -> bool:
    try:
        return urlsplit(url).scheme in ("http", "https")
    except ValueError:
        return False


def validate_social_url(platform: str, url: Any) -> Optional[str]:
    """Return the trimmed URL if it matches the platform's company/profile shape."""
    if not isinstance(url, str):
        return None
    trimmed = url.strip()
    if not trimmed or len(trimmed) > MAX_SOCIAL_URL_LENGTH or not _is_http_url(trimmed):
        return None
    pattern = SOCIAL_PATTERNS.get(platform)
    if pattern is None or not pattern.match(trimmed):
        return None
    return trimmed


def validate_profile(raw: dict[str, Any]) -> ProfileValidation:
    """Normalize raw provider output into an EnrichedProfile (content fields only)."""
    warnings: list[str] = []
    dropped: list[str] = []
    values: dict[str, Any] = {}

    for snake, camel, max_len in _STRING_FIELDS:
        original = _pick(raw, snake, camel)
        clean, truncated = _sanitize_string(original, max_len)
        if clean:
            values[snake] = clean
            if truncated:
                warnings.append(f"{camel} truncated from {len(original)} to {max_len} chars")
        elif original is not None:
            dropped.append(camel)

    raw_year = _pick(raw, "founded_year", "foundedYear")
    year = _validate_founded_year(raw_year)
    if year:
        values["founded_year"] = year
    elif raw_year is not None:
        dropped.append("foundedYear")
        warnings.append("Invalid or out-of-range founded year")

    raw_people = _pick(raw, "key_people", "keyPeople")
    people, people_truncated = _validate_string_list(raw_people, MAX_KEY_PEOPLE_COUNT, MAX_KEY_PERSON_LENGTH)
    if people:
        values["key_people"] = people
        if people_truncated:
            warnings.append(f"keyPeople entries truncated to {MAX_KEY_PERSON_LENGTH} chars")
        if isinstance(raw_people, list) and len(raw_people) > MAX_KEY_PEOPLE_COUNT:
            warnings.append(f"keyPeople capped at {MAX_KEY_PEOPLE_COUNT} entries")
    elif raw_people is not None:
        dropped.append("keyPeople")

    raw_social = _pick(raw, "social_links", "socialLinks")
    if isinstance(raw_social, SocialLinks):
        raw_social = raw_social.model_dump()
    if isinstance(raw_social, dict):
        links: dict[str, str] = {}
        for platform in SOCIAL_PATTERNS:
            candidate = raw_social.get(platform)
            valid = validate_social_url(platform, candidate)
            if valid:
                links[platform] = valid
            elif candidate is not None:
                warnings.append(f"Invalid {platform} URL format")
        if links:
            values["social_links"] = SocialLinks(**links)
    elif raw_social is not None:
        dropped.append("socialLinks")

    raw_citations = _pick(raw, "citation_urls", "citationUrls")
    if isinstance(raw_citations, list):
        citations = [u.strip() for u in raw_citations if isinstance(u, str) and _is_http_url(u.strip())]
        values["citation_urls"] = citations[:MAX_CITATION_URLS]

    return ProfileValidation(profile=EnrichedProfile(**values), warnings=warnings, fields_dropped=dropped)


def is_fallback_content(
    profile: EnrichedProfile,
    domain: str,
    phrases: Iterable[str] = DEFAULT_PLACEHOLDER_PHRASES,
) -> bool:
    """True when a profile has no description or only placeholder text."""
    if not profile.description:
        return True
    desc = profile.description.lower()
    patterns = [f"visit {domain.lower()}", *(p.lower() for p in phrases)]
    return any(p in desc for p in patterns)


def calculate_confidence(profile: EnrichedProfile) -> float:
    """Weighted share of populated fields, rounded to two decimals, in [0, 1]."""
    score = sum(weight for name, weight in CONFIDENCE_WEIGHTS.items() if profile.has_field(name))
    return min(1.0, max(0.0, round(score, 2)))
