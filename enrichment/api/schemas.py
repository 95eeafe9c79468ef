"""Request bodies for the HTTP API (camelCase on the wire)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EnrichRequestBody(BaseModel):
    """``POST /enrich`` body. The per-request URL cap is enforced by the orchestrator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    urls: list[str] = Field(min_length=1)
    use_cache: bool = True
    force_refresh: bool = False
