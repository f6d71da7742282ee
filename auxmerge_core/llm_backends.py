"""
LLM Backends for the Auxiliary Generator
========================================

A connection profile names the backend and model used for auxiliary generation.
Three backends are available:

1. OllamaLLM  - local Ollama server, plain HTTP through requests
2. ClaudeLLM  - Anthropic API (optional `anthropic` package)
3. OpenAILLM  - OpenAI API (optional `openai` package)

All backends are synchronous; callers on the event loop run them in an executor.

Author: auxmerge contributors | 2026-10-19
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import os
import logging
import requests

logger = logging.getLogger(__name__)


# =============================================================================
# Connection Profiles
# =============================================================================

@dataclass
class ConnectionProfile:
    """
    A named backend selection for the auxiliary generator.

    Attributes:
        id: Profile identifier referenced by settings
        name: Display name
        api: Backend kind ("ollama", "claude", "openai"); empty means unconfigured
        model: Model name
        base_url: Server URL (Ollama)
        max_tokens: Default completion budget when settings do not set one
        api_key_env: Environment variable holding the API key (cloud backends)
        timeout: Request timeout in seconds
    """
    id: str
    name: str = ""
    api: str = ""
    model: str = ""
    base_url: str = "http://localhost:11434"
    max_tokens: Optional[int] = None
    api_key_env: Optional[str] = None
    timeout: int = 120

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "api": self.api,
            "model": self.model,
            "base_url": self.base_url,
            "max_tokens": self.max_tokens,
            "api_key_env": self.api_key_env,
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionProfile":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            api=data.get("api", ""),
            model=data.get("model", ""),
            base_url=data.get("base_url", "http://localhost:11434"),
            max_tokens=data.get("max_tokens"),
            api_key_env=data.get("api_key_env"),
            timeout=data.get("timeout", 120),
        )


# =============================================================================
# Base LLM Interface
# =============================================================================

class BaseLLM(ABC):
    """
    Abstract base class for auxiliary generator backends.

    All backends must implement complete(), which takes chat messages
    ({"role": ..., "content": ...}) and returns the completion text.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""
        pass

    @abstractmethod
    def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> Optional[str]:
        """
        Generate a completion.

        Args:
            messages: Chat messages
            max_tokens: Completion budget (backend default if None)

        Returns:
            Completion text, or None if the backend returned nothing
        """
        pass


class OllamaLLM(BaseLLM):
    """
    Ollama backend - local execution through the /api/chat endpoint.

    Example:
        llm = OllamaLLM("mistral")
        text = llm.complete([{"role": "user", "content": "Hello"}])
    """

    def __init__(self, model: str, base_url: str = "http://localhost:11434", timeout: int = 120):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        logger.info(f"Initialized OllamaLLM with model: {model}")

    @property
    def model_name(self) -> str:
        return self.model

    def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> Optional[str]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
        }
        if max_tokens:
            payload["options"] = {"num_predict": max_tokens}

        r = requests.post(f"{self.base_url}/api/chat", json=payload, timeout=self.timeout)
        r.raise_for_status()
        data = r.json()

        message = data.get("message") or {}
        return message.get("content")

    def is_available(self) -> bool:
        """Check if Ollama is running and the model is pulled."""
        try:
            r = requests.get(f"{self.base_url}/api/tags", timeout=5)
            if r.status_code == 200:
                models = [m["name"] for m in r.json().get("models", [])]
                return any(self.model in m for m in models)
        except requests.RequestException:
            pass
        return False


class ClaudeLLM(BaseLLM):
    """
    Claude backend - Anthropic API.

    Requires:
        pip install anthropic
        export ANTHROPIC_API_KEY="sk-ant-..."
    """

    def __init__(self, model: str, api_key: Optional[str] = None, max_tokens: int = 4096):
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")

        if not self._api_key:
            raise ValueError(
                "Claude API key required. Set ANTHROPIC_API_KEY environment "
                "variable or configure api_key_env on the profile."
            )

        # Import anthropic here to make it optional
        try:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self._api_key)
        except ImportError:
            raise ImportError(
                "anthropic package required for Claude backend. "
                "Install with: pip install anthropic"
            )

        logger.info(f"Initialized ClaudeLLM with model: {model}")

    @property
    def model_name(self) -> str:
        return self.model

    def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> Optional[str]:
        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        chat = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": chat,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        response = self._client.messages.create(**kwargs)
        texts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        return "".join(texts) if texts else None


class OpenAILLM(BaseLLM):
    """
    OpenAI backend - Chat Completions API.

    Requires:
        pip install openai
        export OPENAI_API_KEY="sk-..."
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")

        if not self._api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment "
                "variable or configure api_key_env on the profile."
            )

        # Import openai here to make it optional
        try:
            import openai
            self._client = openai.OpenAI(api_key=self._api_key)
        except ImportError:
            raise ImportError(
                "openai package required for OpenAI backend. "
                "Install with: pip install openai"
            )

        logger.info(f"Initialized OpenAILLM with model: {model}")

    @property
    def model_name(self) -> str:
        return self.model

    def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> Optional[str]:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens or self.max_tokens,
            temperature=self.temperature,
        )
        return response.choices[0].message.content


# =============================================================================
# Factory Function
# =============================================================================

def create_backend(profile: ConnectionProfile) -> BaseLLM:
    """
    Create the backend described by a connection profile.

    Raises:
        ValueError: Unknown backend kind
    """
    api = (profile.api or "").lower()
    api_key = os.environ.get(profile.api_key_env) if profile.api_key_env else None

    if api == "ollama":
        return OllamaLLM(
            model=profile.model or "mistral",
            base_url=profile.base_url,
            timeout=profile.timeout,
        )

    elif api in ("claude", "anthropic"):
        return ClaudeLLM(
            model=profile.model or "claude-sonnet-4-20250514",
            api_key=api_key,
            max_tokens=profile.max_tokens or 4096,
        )

    elif api in ("openai", "chatgpt", "gpt"):
        return OpenAILLM(
            model=profile.model or "gpt-4o",
            api_key=api_key,
            max_tokens=profile.max_tokens or 4096,
        )

    else:
        raise ValueError(
            f"Unknown backend: {profile.api!r}. Supported: ollama, claude, openai"
        )
