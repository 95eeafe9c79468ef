"""Tests for keyword/regex extraction over raw search hits."""

from enrichment.providers.heuristic import HeuristicExtractor, size_band
from enrichment.providers.web_search import NormalizedResult

ABOUT_HIT = NormalizedResult(
    title="Acme - Payments infrastructure",
    url="https://acme.com/about",
    snippet=(
        "Acme builds payments infrastructure for internet businesses "
        "of every size, headquartered in San Francisco."
    ),
    extra_snippets=["Founded in 2010, Acme has 8,000 employees."],
)
LINKEDIN_HIT = NormalizedResult(
    title="Acme | LinkedIn",
    url="https://www.linkedin.com/company/acme",
    snippet="Acme | 8,000 followers on LinkedIn.",
)


def test_extracts_all_signals() -> None:
    fields = HeuristicExtractor().extract([ABOUT_HIT, LINKEDIN_HIT], "acme.com")
    assert fields["description"].startswith("Acme builds payments infrastructure")
    assert fields["industry"] == "Fintech"
    assert fields["location"] == "San Francisco"
    assert fields["foundedYear"] == "2010"
    assert fields["companySize"] == "1,000-10,000 employees"
    assert fields["socialLinks"] == {"linkedin": "https://www.linkedin.com/company/acme"}


def test_description_only_from_company_domain() -> None:
    hit = NormalizedResult(
        title="News",
        url="https://news.test/acme",
        snippet="A long article about Acme and how its payments business keeps growing every year.",
    )
    assert "description" not in HeuristicExtractor().extract([hit], "acme.com")


def test_description_skips_cookie_banners_and_strips_about() -> None:
    cookie = NormalizedResult(
        url="https://acme.com/",
        snippet="We use cookies to improve your experience on our website. Accept all cookies?",
    )
    about = NormalizedResult(
        url="https://acme.com/company",
        snippet="About: Acme is the operating system for independent veterinary clinics worldwide.",
    )
    fields = HeuristicExtractor().extract([cookie, about], "acme.com")
    assert fields["description"] == "Acme is the operating system for independent veterinary clinics worldwide."


def test_custom_industry_table() -> None:
    hit = NormalizedResult(url="https://rockets.test", snippet="We build reusable rocket engines.")
    extractor = HeuristicExtractor([{"industry": "Aerospace", "keywords": ["rocket"]}])
    assert extractor.extract([hit], "rockets.test")["industry"] == "Aerospace"


def test_implausible_values_ignored() -> None:
    hit = NormalizedResult(url="https://x.test", snippet="Established 1492 and based in a.")
    fields = HeuristicExtractor().extract([hit], "x.test")
    assert "foundedYear" not in fields
    assert "location" not in fields


def test_no_hits() -> None:
    assert HeuristicExtractor().extract([], "acme.com") == {}


def test_size_bands() -> None:
    assert size_band(12) == "1-200 employees"
    assert size_band(200) == "200-1,000 employees"
    assert size_band(1_000) == "1,000-10,000 employees"
    assert size_band(25_000) == "10,000+ employees"
