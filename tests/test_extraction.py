"""Tests for extraction-output parsing, citation scraping and social link detection."""

import pytest

from enrichment.llm_client import LLMClient, LLMTask
from enrichment.models import CompanyIdentity
from enrichment.providers.extraction import (
    ProfileExtractor,
    extract_citations,
    parse_extraction,
    social_links_from_urls,
    strip_json_fences,
)
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry
from enrichment.resilience.client import ResilientClient

from conftest import EXTRACTION_JSON, FakeChatModel, make_settings

ACME = CompanyIdentity(domain="acme.com", display_name="Acme", normalized_url="https://acme.com")


class TestParseExtraction:
    def test_fenced_json_with_trailing_comma(self) -> None:
        parsed = parse_extraction(EXTRACTION_JSON)
        assert parsed.ok
        assert parsed.data["industry"] == "Fintech"
        assert parsed.data["keyPeople"] == ["Jane Doe (CEO)"]

    def test_prose_around_object(self) -> None:
        parsed = parse_extraction('Here is the profile: {"industry": "SaaS"} Hope this helps!')
        assert parsed.ok
        assert parsed.data == {"industry": "SaaS"}

    def test_unknown_and_empty_keys_dropped(self) -> None:
        parsed = parse_extraction('{"industry": "SaaS", "ceo": "x", "location": "", "keyPeople": []}')
        assert parsed.data == {"industry": "SaaS"}

    @pytest.mark.parametrize(
        "raw, error",
        [
            ("", "empty"),
            ("not json at all", "not valid JSON"),
            ("[1, 2, 3]", "not a JSON object"),
            ('{"ceo": "x"}', "no profile fields"),
        ],
    )
    def test_failures(self, raw: str, error: str) -> None:
        parsed = parse_extraction(raw)
        assert not parsed.ok
        assert error in (parsed.error or "")

    def test_strip_fences(self) -> None:
        assert strip_json_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_json_fences('{"a": 1}') == '{"a": 1}'


class TestCitations:
    def test_trailing_punctuation_and_duplicates(self) -> None:
        text = "See https://acme.com/about, and (https://news.test/acme). Also https://acme.com/about."
        assert extract_citations(text) == ["https://acme.com/about", "https://news.test/acme"]

    def test_limit(self) -> None:
        text = " ".join(f"https://s{i}.com" for i in range(20))
        assert len(extract_citations(text, limit=3)) == 3

    def test_no_urls(self) -> None:
        assert extract_citations("nothing here") == []


class TestSocialLinks:
    def test_picks_profiles_by_host(self) -> None:
        links = social_links_from_urls(
            [
                "https://www.linkedin.com/company/acme",
                "https://x.com/acme",
                "https://github.com/acme",
                "https://acme.com/about",
            ]
        )
        assert links == {
            "linkedin": "https://www.linkedin.com/company/acme",
            "twitter": "https://x.com/acme",
            "github": "https://github.com/acme",
        }

    def test_lookalike_hosts_ignored(self) -> None:
        links = social_links_from_urls(
            ["https://netflix.com/acme", "https://notgithub.com/acme", "https://www.linkedin.com/in/jane"]
        )
        assert links == {}

    def test_bare_host_ignored(self) -> None:
        assert social_links_from_urls(["https://github.com/", "https://twitter.com"]) == {}


class TestProfileExtractor:
    @pytest.mark.asyncio
    async def test_extract_requests_json_mode(self) -> None:
        settings = make_settings()
        model = FakeChatModel(EXTRACTION_JSON)
        resilient = ResilientClient(CircuitBreakerRegistry(), base_delay=0)
        llm = LLMClient(resilient, settings.providers, settings.resilience, models={LLMTask.EXTRACTION: model})

        parsed = await ProfileExtractor(llm).extract(ACME, "Acme is a payments company.")
        assert parsed.ok
        assert parsed.data["location"] == "San Francisco, CA"
        assert model.bound == {"response_format": {"type": "json_object"}}

    @pytest.mark.asyncio
    async def test_unparseable_output_is_a_failure(self) -> None:
        settings = make_settings()
        model = FakeChatModel("I could not find anything about this company.")
        resilient = ResilientClient(CircuitBreakerRegistry(), base_delay=0)
        llm = LLMClient(resilient, settings.providers, settings.resilience, models={LLMTask.EXTRACTION: model})

        parsed = await ProfileExtractor(llm).extract(ACME, "text", from_search_results=True)
        assert not parsed.ok
        assert model.calls == 1
