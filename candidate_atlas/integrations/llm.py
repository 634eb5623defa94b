"""
Provider-agnostic chat client used by the AI header-mapping assist.

Callers only ever see chat(system, user, temperature) -> ChatResponse(text);
all JSON extraction and validation happens on the caller's side.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from candidate_atlas.core.config import Settings
from candidate_atlas.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ChatResponse:
    text: str


class ChatClient(Protocol):
    def chat(self, system: str, user: str, temperature: float = 0.0) -> ChatResponse: ...


def _content_to_text(content: Any) -> str:
    """Flatten a LangChain message content (string or list of content blocks) to text."""
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
    raise ValueError(f"Unexpected chat response content type: {type(content).__name__}")


class LangChainChatClient:
    """Adapts any LangChain chat model to the ChatClient interface."""

    def __init__(self, model: BaseChatModel, provider: str = "langchain"):
        self.model = model
        self.provider = provider

    def chat(self, system: str, user: str, temperature: float = 0.0) -> ChatResponse:
        messages = [SystemMessage(content=system), HumanMessage(content=user)]
        response = self.model.invoke(messages, temperature=temperature)
        text = _content_to_text(response.content)
        logger.debug(f"{self.provider} chat returned {len(text)} characters")
        return ChatResponse(text=text)


def create_chat_client(settings: Settings) -> LangChainChatClient:
    """
    Build the chat client selected by settings.ai_provider.

    Supported providers: anthropic (alias claude), openai, gemini (alias google).
    Provider packages are imported on demand.

    Raises:
        ConfigurationError: Unknown provider or missing API key
    """
    provider = (settings.ai_provider or "").lower()

    if provider in ("anthropic", "claude"):
        if not settings.anthropic_api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is required for AI header mapping")

        from langchain_anthropic import ChatAnthropic

        options = {"base_url": settings.anthropic_base_url} if settings.anthropic_base_url else {}
        model = ChatAnthropic(
            model=settings.anthropic_model,
            api_key=settings.anthropic_api_key,
            temperature=0,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_api_timeout,
            max_retries=settings.llm_max_retries,
            **options,
        )
        return LangChainChatClient(model, provider="anthropic")

    if provider == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for AI header mapping")

        from langchain_openai import ChatOpenAI

        model = ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            temperature=0,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_api_timeout,
            max_retries=settings.llm_max_retries,
        )
        return LangChainChatClient(model, provider="openai")

    if provider in ("gemini", "google"):
        if not settings.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required for AI header mapping")

        from langchain_google_genai import ChatGoogleGenerativeAI

        model = ChatGoogleGenerativeAI(
            # Accept ids copied from the REST API ("models/gemini-...").
            model=settings.gemini_model.removeprefix("models/"),
            google_api_key=settings.gemini_api_key,
            temperature=0,
            max_output_tokens=settings.llm_max_tokens,
            timeout=settings.llm_api_timeout,
            max_retries=settings.llm_max_retries,
        )
        return LangChainChatClient(model, provider="gemini")

    raise ConfigurationError(f"Unsupported AI_PROVIDER: {settings.ai_provider}")


def create_optional_chat_client(settings: Settings) -> Optional[LangChainChatClient]:
    """Chat client when AI header mapping is enabled, otherwise None."""
    if settings.ai_header_mapping == "off":
        return None
    return create_chat_client(settings)
