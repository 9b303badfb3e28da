"""Generation collaborators: LangChain chat models and the dry-run stub."""

from skillsmith.llm.client import ChatModelClient, GenerationClient, build_clients, get_chat_model
from skillsmith.llm.mock import StubGenerationClient

__all__ = [
    "ChatModelClient",
    "GenerationClient",
    "StubGenerationClient",
    "build_clients",
    "get_chat_model",
]
