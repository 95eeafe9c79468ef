"""
Prompt templates for the AI-search and extraction calls.

The research prompt goes to the search-capable model and asks for free text
with sources. The extraction prompts turn free text (or search snippets) into
one fixed JSON shape that validate_profile understands.
"""

# ═══════════════════════════════════════════════════════════
# AI SEARCH (primary)
# ═══════════════════════════════════════════════════════════

COMPANY_RESEARCH_USER_TEMPLATE = """Search for comprehensive information about {company_name} ({domain}).
Find: company description, industry, headquarters location, founding year, employee count, key executives, and main products/services.
Focus on their official website and reliable business sources like LinkedIn, Crunchbase, Bloomberg, or TechCrunch."""


# ═══════════════════════════════════════════════════════════
# EXTRACTION
# ═══════════════════════════════════════════════════════════

PROFILE_EXTRACTOR_SYSTEM = """You are a company research assistant. Extract structured information from the provided research content.
Return ONLY valid JSON with no markdown formatting, no code blocks, just the raw JSON object.
If information is not found or unclear, omit that field entirely. Be accurate."""

PROFILE_JSON_SHAPE = """{
  "description": "A clear 1-2 sentence description of what the company does",
  "industry": "Primary industry (e.g., Fintech, SaaS, Healthcare)",
  "location": "Company headquarters only - city and state/country",
  "foundedYear": "Year founded (4-digit year)",
  "companySize": "Employee count range (e.g., '1,000-5,000 employees')",
  "keyPeople": ["Array of key executives - format: 'Name (Title)'"],
  "productSummary": "Brief summary of main products/services"
}"""

PROFILE_EXTRACTOR_USER_TEMPLATE = """Extract company information for "{company_name}" ({domain}) from this research:

<research>
{content}
</research>

Return a JSON object with these fields (omit any fields where info is not found):
{json_shape}

Return ONLY the JSON object."""

SEARCH_RESULTS_EXTRACTOR_USER_TEMPLATE = """Extract company information for "{company_name}" ({domain}) from these web search results:

<search_results>
{content}
</search_results>

Return a JSON object with these fields (omit any fields where info is not found):
{json_shape}

Return ONLY the JSON object."""


# ═══════════════════════════════════════════════════════════
# WEB SEARCH (secondary)
# ═══════════════════════════════════════════════════════════

COMPANY_SEARCH_QUERY_TEMPLATE = '{company_name} company about "{domain}" headquarters employees founded'
