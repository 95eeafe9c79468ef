"""
Completion client for the OpenAI-compatible endpoint (Groq by default).

Two roles share the endpoint: an AI-search model that answers a research
question with live web results, and a smaller extraction model that turns
free text into the profile JSON shape. Both calls run through the shared
ResilientClient under the ``completion`` breaker, so the chat model itself is
built with retries disabled.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from enrichment.config import ProviderConfig, ResilienceConfig, get_settings
from enrichment.errors import PermanentUpstreamError
from enrichment.resilience.client import CallResult, ResilientClient

logger = structlog.get_logger()

COMPLETION_UPSTREAM = "completion"


class LLMTask(str, Enum):
    """Per-role model identifiers."""

    RESEARCH = "research"
    EXTRACTION = "extraction"


def _content_text(response: Any) -> str:
    """Flatten a LangChain message content (str or list of parts) to text."""
    content = response.content if hasattr(response, "content") else response
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(str(part.get("text", "")))
            else:
                parts.append(str(part))
        return "".join(parts)
    return str(content or "")


class LLMClient:
    """
    Lazily builds one ChatOpenAI per task and runs calls through the resilient client.

    ``models`` may be injected (tests, alternative endpoints); otherwise models
    are created on first use from ProviderConfig.
    """

    def __init__(
        self,
        resilient: ResilientClient,
        providers: Optional[ProviderConfig] = None,
        resilience: Optional[ResilienceConfig] = None,
        models: Optional[dict[LLMTask, BaseChatModel]] = None,
    ) -> None:
        settings = get_settings() if providers is None or resilience is None else None
        self._providers = providers or settings.providers
        self._resilience = resilience or settings.resilience
        self._resilient = resilient
        self._models: dict[LLMTask, BaseChatModel] = dict(models or {})

    @property
    def is_configured(self) -> bool:
        return bool(self._models) or self._providers.has_completion

    def _ensure_models(self) -> None:
        if self._models or not self._providers.has_completion:
            return
        cfg = self._providers
        api_key = cfg.completion_api_key.strip()
        base_url = cfg.completion_api_base.rstrip("/")

        def _client(model: str, max_tokens: int) -> BaseChatModel:
            return ChatOpenAI(
                base_url=base_url,
                api_key=api_key,
                model=model,
                temperature=cfg.temperature,
                max_tokens=max_tokens,
                timeout=self._resilience.request_timeout,
                max_retries=0,
            )

        self._models[LLMTask.RESEARCH] = _client(cfg.search_model, cfg.search_max_tokens)
        self._models[LLMTask.EXTRACTION] = _client(cfg.extraction_model, cfg.extraction_max_tokens)
        logger.info(
            "llm_client_initialized",
            base_url=base_url,
            search_model=cfg.search_model,
            extraction_model=cfg.extraction_model,
            key_suffix=f"...{api_key[-4:]}" if len(api_key) >= 8 else "set",
        )

    def get_model(self, task: LLMTask) -> BaseChatModel:
        self._ensure_models()
        if task not in self._models:
            raise PermanentUpstreamError(f"No completion model configured for task: {task.value}")
        return self._models[task]

    async def generate(
        self,
        task: LLMTask,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> CallResult[str]:
        """
        Run one completion. Never raises for upstream faults.

        Args:
            json_mode: request a JSON-object response format. Not every model on
                the endpoint supports it; the parser still strips fences.
        """
        messages: list[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=user_prompt))

        async def _invoke() -> str:
            model = self.get_model(task)
            if json_mode and hasattr(model, "bind"):
                model = model.bind(response_format={"type": "json_object"})
            response = await model.ainvoke(messages)
            text = _content_text(response).strip()
            if not text:
                raise PermanentUpstreamError("Empty response from completion endpoint")
            return text

        result = await self._resilient.call(COMPLETION_UPSTREAM, _invoke)
        if result.success:
            logger.debug(
                "llm_call_complete",
                task=task.value,
                chars=len(result.data or ""),
                retry_count=result.retry_count,
            )
        return result
