"""
LLM Model Router: AICredential → LangChain chat model

The router answers one question: "Which LangChain model object serves this
credential for this kind of unit?"

  vision units → credential.vision_model
  text units   → credential.model

Design principles:
  - Pure Python, no network I/O at build time: fast and testable.
  - Provider SDK imports are deferred to the builder that needs them, so a
    deployment without Ollama never imports langchain_community.
  - The LangChain model object is returned, not a raw string: the gateway
    calls .ainvoke() directly.
"""

from __future__ import annotations

import logging

from langchain_core.language_models.chat_models import BaseChatModel

from examforge.llm.credentials import AICredential, Provider

logger = logging.getLogger(__name__)


class ModelRouter:
    """
    Usage::

        router = ModelRouter()
        llm    = router.build_llm(credential, vision=True)
        reply  = await llm.ainvoke(messages)
    """

    def build_llm(self, credential: AICredential, vision: bool = False) -> BaseChatModel:
        model = credential.vision_model if vision else credential.model
        logger.debug(
            "ModelRouter | provider=%s model=%s vision=%s",
            credential.provider.value, model, vision,
        )

        if credential.provider == Provider.OPENAI:
            return self._build_openai(credential, model)

        if credential.provider == Provider.AZURE_OPENAI:
            return self._build_azure_openai(credential, model)

        if credential.provider == Provider.OLLAMA:
            return self._build_ollama(credential, model)

        raise ValueError(f"Unsupported provider: {credential.provider}")   # pragma: no cover

    # -----------------------------------------------------------------------
    # Provider-specific builders
    # -----------------------------------------------------------------------

    @staticmethod
    def _build_openai(credential: AICredential, model: str) -> BaseChatModel:
        from langchain_openai import ChatOpenAI
        kwargs = {}
        if credential.base_url:
            kwargs["base_url"] = credential.base_url
        return ChatOpenAI(
            model=model,
            api_key=credential.api_key,
            temperature=credential.temperature,
            max_tokens=credential.max_tokens,
            **kwargs,
        )

    @staticmethod
    def _build_azure_openai(credential: AICredential, model: str) -> BaseChatModel:
        from langchain_openai import AzureChatOpenAI
        return AzureChatOpenAI(
            azure_deployment=model,
            azure_endpoint=credential.base_url,
            api_key=credential.api_key,   # type: ignore
            api_version=credential.api_version,
            temperature=credential.temperature,
            max_tokens=credential.max_tokens,
        )

    @staticmethod
    def _build_ollama(credential: AICredential, model: str) -> BaseChatModel:
        from langchain_community.chat_models import ChatOllama
        return ChatOllama(
            model=model,
            base_url=credential.base_url,
            temperature=credential.temperature,
        )
