"""
LLM Package
════════════

  credentials.py  Provider selector → AICredential (Settings-backed by default)
  router.py       AICredential → LangChain chat model (OpenAI, Azure OpenAI, Ollama)
  gateway.py      One extraction call per page image or text chunk, JSON reply parsing
  prompts.py      Default extraction prompts
"""

from examforge.llm.credentials import AICredential, CredentialStore, Provider, SettingsCredentialStore
from examforge.llm.gateway import QuestionExtractionGateway, parse_question_payload
from examforge.llm.router import ModelRouter

__all__ = [
    "AICredential",
    "CredentialStore",
    "Provider",
    "SettingsCredentialStore",
    "QuestionExtractionGateway",
    "parse_question_payload",
    "ModelRouter",
]
