from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from typing_extensions import assert_never

from skillsmith.config.settings import LLMSettings, Provider, Settings, Stage
from skillsmith.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

FEEDBACK_HEADER = "## Feedback From The Previous Attempt"


class GenerationClient(Protocol):
    """Anything that turns instructions plus input text into generated text."""

    async def complete(self, instructions: str, input_text: str, feedback: Optional[str] = None) -> str:
        ...


def get_chat_model(llm: LLMSettings, **overrides: Any) -> BaseChatModel:
    """Build the LangChain chat model for ``llm.provider``."""

    api_key = llm.resolve_api_key()
    provider = llm.provider
    if provider is Provider.OPENAI or provider is Provider.OPENAI_COMPATIBLE:
        from langchain_openai import ChatOpenAI

        params: Dict[str, Any] = {
            "model": llm.model,
            "api_key": api_key or "dummy",
            "temperature": llm.temperature,
            "max_tokens": llm.get_max_tokens(),
            "timeout": llm.timeout,
            "max_retries": 2,
        }
        if llm.base_url:
            params["base_url"] = llm.base_url
        params.update(overrides)
        return ChatOpenAI(**params)
    if provider is Provider.ANTHROPIC:
        from langchain_anthropic import ChatAnthropic

        params = {
            "model": llm.model,
            "api_key": api_key,
            "temperature": llm.temperature,
            "max_tokens": llm.get_max_tokens(),
            "timeout": llm.timeout,
            "max_retries": 2,
        }
        if llm.base_url:
            params["base_url"] = llm.base_url
        params.update(overrides)
        return ChatAnthropic(**params)
    if provider is Provider.GEMINI:
        from langchain_google_genai import ChatGoogleGenerativeAI

        params = {
            "model": llm.model,
            "google_api_key": api_key,
            "temperature": llm.temperature,
            "max_output_tokens": llm.get_max_tokens(),
            "timeout": llm.timeout,
            "max_retries": 2,
        }
        params.update(overrides)
        return ChatGoogleGenerativeAI(**params)
    assert_never(provider)


def _status_code(exc: BaseException) -> Optional[int]:
    for candidate in (exc, getattr(exc, "response", None)):
        code = getattr(candidate, "status_code", None) or getattr(candidate, "code", None)
        if isinstance(code, int):
            return code
    return None


def classify_error(exc: BaseException) -> str:
    """Map a provider SDK exception onto a ``CollaboratorError`` kind."""

    status = _status_code(exc)
    name = type(exc).__name__.lower()
    if status in (401, 403) or "authentication" in name or "permissiondenied" in name:
        return CollaboratorError.AUTH
    if status == 429 or "ratelimit" in name or "resourceexhausted" in name:
        return CollaboratorError.RATE_LIMIT
    if status is not None and 400 <= status < 500:
        return CollaboratorError.MALFORMED
    return CollaboratorError.NETWORK


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return str(content)


class ChatModelClient:
    """Adapter from a LangChain chat model to ``GenerationClient``."""

    def __init__(self, model: BaseChatModel, *, role: str = "generation"):
        self.model = model
        self.role = role

    @staticmethod
    def build_messages(instructions: str, input_text: str, feedback: Optional[str] = None) -> list:
        human = input_text
        if feedback:
            human = f"{input_text}\n\n{FEEDBACK_HEADER}\n\n{feedback}"
        return [SystemMessage(instructions), HumanMessage(human)]

    async def complete(self, instructions: str, input_text: str, feedback: Optional[str] = None) -> str:
        messages = self.build_messages(instructions, input_text, feedback)
        return await self._invoke(messages)

    async def _invoke(self, messages: list) -> str:
        try:
            response = await self.model.ainvoke(messages)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            kind = classify_error(exc)
            raise CollaboratorError(f"{self.role} request failed: {exc}", kind=kind, role=self.role) from exc

        text = _content_text(getattr(response, "content", response)).strip()
        if not text:
            raise CollaboratorError(
                f"{self.role} returned an empty response", kind=CollaboratorError.MALFORMED, role=self.role
            )
        return text


def build_clients(settings: Settings, *, dry_run: bool = False) -> Dict[Stage, GenerationClient]:
    """One client per stage; stages sharing a model configuration share the chat model."""

    if dry_run:
        from skillsmith.llm.mock import StubGenerationClient

        return {stage: StubGenerationClient(stage) for stage in Stage}

    generation = settings.generation
    models: Dict[LLMSettings, BaseChatModel] = {}
    clients: Dict[Stage, GenerationClient] = {}
    for stage in Stage:
        llm = settings.llm_for(stage)
        model = models.get(llm)
        if model is None:
            logger.debug("Creating %s chat model %s", llm.provider.value, llm.model)
            model = models[llm] = get_chat_model(llm, max_retries=generation.collaborator_retries)
        clients[stage] = ChatModelClient(model, role=stage.value)
    return clients


__all__ = [
    "ChatModelClient",
    "FEEDBACK_HEADER",
    "GenerationClient",
    "build_clients",
    "classify_error",
    "get_chat_model",
]
