"""
LLM integration for the assistant.

Supports:
- OpenAI-compatible APIs (OpenAI, LM Studio, vLLM, ...)
- Ollama (local LLMs: Llama, Qwen, Mistral, etc.)
- A simple rule-based responder for running without a model

Every backend speaks the same contract: ``invoke(messages, tools)`` takes the
conversation log and returns a single ``AIMessage`` that may carry tool calls.
"""

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal, Optional, Union

logger = logging.getLogger(__name__)


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass
class ToolCall:
    """A tool call emitted by the model."""

    name: str
    arguments: dict = field(default_factory=dict)
    id: str = field(default_factory=_new_call_id)


@dataclass
class SystemMessage:
    content: str
    role: Literal["system"] = "system"


@dataclass
class HumanMessage:
    content: str
    image: Optional[str] = None  # base64 JPEG
    role: Literal["user"] = "user"


@dataclass
class AIMessage:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str = ""
    latency_ms: float = 0.0
    role: Literal["assistant"] = "assistant"


@dataclass
class ToolMessage:
    call_id: str
    name: str
    content: str
    status: Literal["ok", "error"] = "ok"
    role: Literal["tool"] = "tool"


ConversationMessage = Union[SystemMessage, HumanMessage, AIMessage, ToolMessage]


def to_openai_messages(messages: list[ConversationMessage]) -> list[dict]:
    """Convert the conversation log to OpenAI chat-completions format."""
    converted = []
    for msg in messages:
        if isinstance(msg, SystemMessage):
            converted.append({"role": "system", "content": msg.content})
        elif isinstance(msg, HumanMessage):
            if msg.image:
                content = [
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/jpeg;base64,{msg.image}"},
                    },
                    {"type": "text", "text": msg.content},
                ]
            else:
                content = msg.content
            converted.append({"role": "user", "content": content})
        elif isinstance(msg, AIMessage):
            entry: dict = {"role": "assistant", "content": msg.content or None}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in msg.tool_calls
                ]
            converted.append(entry)
        elif isinstance(msg, ToolMessage):
            converted.append({"role": "tool", "tool_call_id": msg.call_id, "content": msg.content})
    return converted


def to_ollama_messages(messages: list[ConversationMessage]) -> list[dict]:
    """Convert the conversation log to Ollama chat format."""
    converted = []
    for msg in messages:
        if isinstance(msg, SystemMessage):
            converted.append({"role": "system", "content": msg.content})
        elif isinstance(msg, HumanMessage):
            entry = {"role": "user", "content": msg.content}
            if msg.image:
                entry["images"] = [msg.image]
            converted.append(entry)
        elif isinstance(msg, AIMessage):
            entry = {"role": "assistant", "content": msg.content}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {"function": {"name": tc.name, "arguments": tc.arguments}}
                    for tc in msg.tool_calls
                ]
            converted.append(entry)
        elif isinstance(msg, ToolMessage):
            converted.append({"role": "tool", "content": msg.content, "tool_name": msg.name})
    return converted


class LLMBackend(ABC):
    """Abstract base class for LLM backends."""

    model: str = ""

    @abstractmethod
    async def invoke(
        self, messages: list[ConversationMessage], tools: Optional[list[dict]] = None
    ) -> AIMessage:
        """
        Run one model turn over the full conversation log.

        Args:
            messages: Ordered conversation log
            tools: OpenAI-format tool definitions to bind for this call

        Returns:
            AIMessage with text content and zero or more tool calls
        """
        pass

    async def aclose(self) -> None:
        """Release any client resources."""
        return None


class OpenAILLM(LLMBackend):
    """
    LLM using an OpenAI-compatible API.

    Works with OpenAI itself and with local servers that mimic it
    (LM Studio, vLLM). Supports vision via the multimodal content format.
    """

    def __init__(
        self,
        model: str = "qwen/qwen3-4b-2507",
        host: Optional[str] = "http://localhost:1234/v1",
        api_key: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 300,
    ):
        """
        Initialize OpenAI-compatible LLM.

        Args:
            model: Model name served by the endpoint
            host: Base URL of the endpoint (None for api.openai.com)
            api_key: API key (or set OPENAI_API_KEY env)
            temperature: Sampling temperature
            max_tokens: Max tokens per response
        """
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ImportError(
                "OpenAI client not installed. "
                "Install with: pip install openai"
            ) from e

        import os

        api_key = api_key or os.environ.get("OPENAI_API_KEY") or "not-needed"

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.host = host
        self._client = AsyncOpenAI(api_key=api_key, base_url=host)

        logger.info("OpenAI-compatible LLM ready: %s at %s", model, host or "api.openai.com")

    async def invoke(
        self, messages: list[ConversationMessage], tools: Optional[list[dict]] = None
    ) -> AIMessage:
        """Run one turn against the chat completions API."""
        kwargs: dict = {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            kwargs["tools"] = tools

        start = time.perf_counter()
        response = await self._client.chat.completions.create(**kwargs)
        latency = (time.perf_counter() - start) * 1000

        msg = response.choices[0].message
        tool_calls = []
        for tc in msg.tool_calls or []:
            try:
                args = json.loads(tc.function.arguments) if tc.function.arguments else {}
            except (json.JSONDecodeError, AttributeError):
                args = {}
            if not isinstance(args, dict):
                args = {"input": args}
            tool_calls.append(ToolCall(name=tc.function.name, arguments=args, id=tc.id or _new_call_id()))

        return AIMessage(
            content=msg.content or "",
            tool_calls=tool_calls,
            model=self.model,
            latency_ms=latency,
        )

    async def aclose(self) -> None:
        await self._client.close()


class OllamaLLM(LLMBackend):
    """
    Local LLM using Ollama.

    Ollama must be running: `ollama serve`
    Models: qwen3, llama3.2, mistral, etc. (tool calling needs a model that supports it)
    """

    def __init__(
        self,
        model: str = "qwen3:4b",
        host: str = "http://localhost:11434",
        temperature: float = 0.3,
        max_tokens: int = 300,
    ):
        """
        Initialize Ollama LLM.

        Args:
            model: Ollama model name (e.g., "qwen3:4b", "llama3.2:3b")
            host: Ollama server URL
            temperature: Sampling temperature
            max_tokens: Max tokens per response (num_predict)
        """
        try:
            import ollama
        except ImportError as e:
            raise ImportError(
                "Ollama Python client not installed. "
                "Install with: pip install ollama"
            ) from e

        self.model = model
        self.host = host
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = ollama.AsyncClient(host=host)

        logger.info("Ollama LLM ready: %s at %s", model, host)

    async def invoke(
        self, messages: list[ConversationMessage], tools: Optional[list[dict]] = None
    ) -> AIMessage:
        """Run one turn against Ollama's chat API."""
        kwargs: dict = {
            "model": self.model,
            "messages": to_ollama_messages(messages),
            "options": {"num_predict": self.max_tokens, "temperature": self.temperature},
        }
        if tools:
            kwargs["tools"] = tools

        start = time.perf_counter()
        response = await self._client.chat(**kwargs)
        latency = (time.perf_counter() - start) * 1000

        message = response["message"]
        tool_calls = []
        for tc in message.get("tool_calls") or []:
            func = tc.get("function", {})
            args = func.get("arguments") or {}
            tool_calls.append(ToolCall(name=func.get("name", ""), arguments=dict(args)))

        return AIMessage(
            content=message.get("content", "") or "",
            tool_calls=tool_calls,
            model=self.model,
            latency_ms=latency,
        )


class SimpleLLM(LLMBackend):
    """
    Simple rule-based "LLM" for testing without a real model.

    Answers basic phrases with canned responses, always in final-answer form.
    """

    RESPONSES = {
        "hello": "Hello! How can I help?",
        "how are you": "Doing great, thanks for asking!",
        "who are you": "Mira, your smart glasses assistant.",
        "tell me a joke": "Why do programmers prefer dark mode? Light attracts bugs!",
        "thank you": "You're welcome!",
    }

    def __init__(self):
        self.model = "simple"
        logger.info("Using simple rule-based responses (no LLM)")

    async def invoke(
        self, messages: list[ConversationMessage], tools: Optional[list[dict]] = None
    ) -> AIMessage:
        """Answer the latest human message from the canned table."""
        prompt = ""
        for msg in reversed(messages):
            if isinstance(msg, HumanMessage):
                prompt = msg.content.lower().strip()
                break

        for key, response in self.RESPONSES.items():
            if key in prompt:
                return AIMessage(content=f"Final Answer: {response}", model=self.model)

        return AIMessage(
            content="Final Answer: Not sure about that one. Try something else!",
            model=self.model,
        )


def create_llm(
    backend: str = "openai",
    model: Optional[str] = None,
    **kwargs,
) -> LLMBackend:
    """
    Factory function to create LLM backend.

    Args:
        backend: "openai", "ollama", or "simple"
        model: Model name (backend-specific)
        **kwargs: Backend-specific options

    Returns:
        LLMBackend instance
    """
    if "host" in kwargs and kwargs["host"] is None:
        # Let each backend use its own default endpoint
        kwargs.pop("host")

    if backend == "openai":
        return OpenAILLM(model=model or "qwen/qwen3-4b-2507", **kwargs)
    elif backend == "ollama":
        kwargs.pop("api_key", None)
        return OllamaLLM(model=model or "qwen3:4b", **kwargs)
    elif backend == "simple":
        return SimpleLLM()
    else:
        raise ValueError(f"Unknown LLM backend: {backend}")
