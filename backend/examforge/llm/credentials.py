"""
AI credentials: resolving a provider selector to connection details.

The caller names a provider ("openai", "azure_openai", "ollama"); what that
name maps to is configuration owned outside this subsystem. The default
store reads it from Settings. Other deployments can supply any object with a
matching ``resolve`` method.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from examforge.core.config import Settings, settings as default_settings
from examforge.core.errors import UnknownProvider


class Provider(str, Enum):
    OPENAI       = "openai"         # includes OpenAI-compatible hosts via base_url
    AZURE_OPENAI = "azure_openai"
    OLLAMA       = "ollama"


@dataclass(frozen=True)
class AICredential:
    provider:     Provider
    model:        str               # text-mode model
    vision_model: str               # vision-mode model
    api_key:      str = ""
    base_url:     str = ""
    api_version:  str = ""          # Azure only
    temperature:  float = 0.0
    max_tokens:   int = 4096

    def __repr__(self) -> str:   # never log the key
        return f"AICredential(provider={self.provider.value}, model={self.model}, vision_model={self.vision_model})"


class CredentialStore(Protocol):
    def resolve(self, selector: str | None) -> AICredential:
        ...


class SettingsCredentialStore:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings

    def resolve(self, selector: str | None) -> AICredential:
        s = self._settings
        name = (selector or s.default_ai_provider).strip().lower()

        try:
            provider = Provider(name)
        except ValueError:
            raise UnknownProvider(f"unknown AI provider '{name}'") from None

        if provider == Provider.OPENAI:
            return AICredential(
                provider=provider,
                model=s.llm_model,
                vision_model=s.vision_model,
                api_key=s.openai_api_key,
                base_url=s.openai_base_url,
                temperature=s.llm_temperature,
                max_tokens=s.llm_max_tokens,
            )
        if provider == Provider.AZURE_OPENAI:
            return AICredential(
                provider=provider,
                model=s.azure_openai_deployment,
                vision_model=s.azure_openai_deployment,
                api_key=s.azure_openai_api_key,
                base_url=s.azure_openai_endpoint,
                api_version=s.azure_openai_api_version,
                temperature=s.llm_temperature,
                max_tokens=s.llm_max_tokens,
            )
        return AICredential(
            provider=provider,
            model=s.ollama_model,
            vision_model=s.ollama_model,
            base_url=s.ollama_base_url,
            temperature=s.llm_temperature,
            max_tokens=s.llm_max_tokens,
        )
