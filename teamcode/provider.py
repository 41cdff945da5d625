"""
Model backends.

A Provider performs one request/response exchange with a model: given the
chat-shaped history (see messages.py) and the tool schemas of the active
catalog, it returns text, zero or more tool calls, and token counters.

    Provider.chat(messages, tools) -> ProviderResponse
    Provider.chat_stream(messages, tools) -> iterator of StreamChunk
    Provider.list_models() -> [name, ...]

Two adapters ship: AnthropicProvider (Messages API) and OpenAIProvider
(any chat-completions compatible server, e.g. Ollama). Both raise
ProviderError for anything the SDK throws; callers never see SDK types.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, Optional

import anthropic
import openai

from teamcode import config
from teamcode.errors import ProviderError
from teamcode.messages import content_text

logger = logging.getLogger(__name__)


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ProviderResponse:
    content: Optional[str] = None
    tool_calls: list = field(default_factory=list)
    finish_reason: str = "stop"
    usage: Optional[Usage] = None


@dataclass
class StreamChunk:
    type: str  # content | tool_call | done
    content: str = ""
    tool_call: Optional[ToolCallRequest] = None
    finish_reason: str = ""


def parse_arguments(raw) -> dict:
    """Tool-call arguments arrive as a dict or a JSON string. Anything that is
    not a JSON object becomes {} so a malformed call still reaches the
    dispatcher (which reports the problem to the model)."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Malformed tool arguments: %.200s", raw)
        return {}
    return value if isinstance(value, dict) else {}


class Provider(ABC):
    name = "provider"

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    def chat(self, messages: list, tools: list = None, **options) -> ProviderResponse:
        ...

    @abstractmethod
    def chat_stream(self, messages: list, tools: list = None, **options) -> Iterator[StreamChunk]:
        ...

    @abstractmethod
    def list_models(self) -> list:
        ...


# =============================================================================
# Anthropic
# =============================================================================

def to_anthropic_messages(messages: list):
    """Split chat-shaped history into (system, messages) for the Messages API.

    tool_calls become tool_use blocks; consecutive tool messages are folded
    into one user message of tool_result blocks.
    """
    system_parts = []
    out = []
    for msg in messages:
        role = msg.get("role")
        if role == "system":
            system_parts.append(content_text(msg))
        elif role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id", ""),
                "content": content_text(msg),
            }
            prev = out[-1] if out else None
            if (prev and prev["role"] == "user" and isinstance(prev["content"], list)
                    and all(b.get("type") == "tool_result" for b in prev["content"])):
                prev["content"].append(block)
            else:
                out.append({"role": "user", "content": [block]})
        elif role == "assistant":
            blocks = []
            if msg.get("content"):
                blocks.append({"type": "text", "text": content_text(msg)})
            for tc in msg.get("tool_calls") or []:
                fn = tc.get("function", {})
                blocks.append({
                    "type": "tool_use",
                    "id": tc.get("id", ""),
                    "name": fn.get("name", ""),
                    "input": parse_arguments(fn.get("arguments")),
                })
            if not blocks:
                blocks.append({"type": "text", "text": "(empty)"})
            out.append({"role": "assistant", "content": blocks})
        else:
            out.append({"role": "user", "content": content_text(msg)})
    return "\n\n".join(system_parts), out


class AnthropicProvider(Provider):
    name = "anthropic"

    def __init__(self, model: str = None, client=None, max_tokens: int = None):
        super().__init__(model or config.MODEL)
        self.client = client or anthropic.Anthropic(base_url=config.ANTHROPIC_BASE_URL)
        self.max_tokens = max_tokens or config.MAX_TOKENS

    def _request(self, messages: list, tools: list, options: dict) -> dict:
        system, converted = to_anthropic_messages(messages)
        kwargs = {
            "model": options.get("model", self.model),
            "messages": converted,
            "max_tokens": options.get("max_tokens", self.max_tokens),
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools
        if "temperature" in options:
            kwargs["temperature"] = options["temperature"]
        return kwargs

    def chat(self, messages: list, tools: list = None, **options) -> ProviderResponse:
        kwargs = self._request(messages, tools, options)
        logger.debug("anthropic chat: model=%s messages=%d tools=%d",
                     kwargs["model"], len(kwargs["messages"]), len(tools or []))
        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("anthropic chat failed: %s", e)
            raise ProviderError(str(e)) from e

        texts = []
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCallRequest(id=block.id, name=block.name,
                                                  arguments=parse_arguments(block.input)))
        usage = None
        if getattr(response, "usage", None) is not None:
            usage = Usage(response.usage.input_tokens, response.usage.output_tokens)
        return ProviderResponse(
            content="\n".join(texts) if texts else None,
            tool_calls=tool_calls,
            finish_reason=response.stop_reason or "end_turn",
            usage=usage,
        )

    def chat_stream(self, messages: list, tools: list = None, **options) -> Iterator[StreamChunk]:
        kwargs = self._request(messages, tools, options)
        try:
            with self.client.messages.stream(**kwargs) as stream:
                for event in stream:
                    if event.type == "text":
                        yield StreamChunk("content", content=event.text)
                final = stream.get_final_message()
        except anthropic.APIError as e:
            logger.error("anthropic stream failed: %s", e)
            raise ProviderError(str(e)) from e

        for block in final.content:
            if block.type == "tool_use":
                yield StreamChunk("tool_call", tool_call=ToolCallRequest(
                    id=block.id, name=block.name, arguments=parse_arguments(block.input)))
        yield StreamChunk("done", finish_reason=final.stop_reason or "end_turn")

    def list_models(self) -> list:
        try:
            return [m.id for m in self.client.models.list()]
        except anthropic.APIError as e:
            logger.error("Failed to list models: %s", e)
            return []


# =============================================================================
# OpenAI-compatible
# =============================================================================

def to_openai_tools(tools: list) -> list:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for t in tools
    ]


class OpenAIProvider(Provider):
    name = "openai"

    def __init__(self, model: str = None, client=None, temperature: float = 0.7):
        super().__init__(model or config.MODEL)
        self.client = client or openai.OpenAI(api_key=config.OPENAI_API_KEY,
                                              base_url=config.OPENAI_BASE_URL)
        self.temperature = temperature

    def _request(self, messages: list, tools: list, options: dict) -> dict:
        kwargs = {
            "model": options.get("model", self.model),
            "messages": messages,
            "temperature": options.get("temperature", self.temperature),
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
        if "max_tokens" in options:
            kwargs["max_tokens"] = options["max_tokens"]
        return kwargs

    def chat(self, messages: list, tools: list = None, **options) -> ProviderResponse:
        kwargs = self._request(messages, tools, options)
        logger.debug("openai chat: model=%s messages=%d tools=%d",
                     kwargs["model"], len(messages), len(tools or []))
        try:
            response = self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.error("openai chat failed: %s", e)
            raise ProviderError(str(e)) from e

        if not response.choices:
            raise ProviderError("No response from model")
        choice = response.choices[0]
        tool_calls = [
            ToolCallRequest(id=tc.id, name=tc.function.name,
                            arguments=parse_arguments(tc.function.arguments))
            for tc in choice.message.tool_calls or []
        ]
        usage = None
        if response.usage is not None:
            usage = Usage(response.usage.prompt_tokens, response.usage.completion_tokens)
        return ProviderResponse(
            content=choice.message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def chat_stream(self, messages: list, tools: list = None, **options) -> Iterator[StreamChunk]:
        kwargs = self._request(messages, tools, options)
        try:
            stream = self.client.chat.completions.create(stream=True, **kwargs)
            yield from self._read_stream(stream)
        except openai.OpenAIError as e:
            logger.error("openai stream failed: %s", e)
            raise ProviderError(str(e)) from e

    @staticmethod
    def _read_stream(stream) -> Iterator[StreamChunk]:
        # index -> [id, name, argument fragments]
        pending = {}
        for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if delta is not None and delta.content:
                yield StreamChunk("content", content=delta.content)
            for tc in (delta.tool_calls if delta is not None else None) or []:
                acc = pending.setdefault(tc.index, ["", "", []])
                if tc.id:
                    acc[0] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        acc[1] = tc.function.name
                    if tc.function.arguments:
                        acc[2].append(tc.function.arguments)
            if choice.finish_reason:
                for index in sorted(pending):
                    call_id, name, parts = pending[index]
                    yield StreamChunk("tool_call", tool_call=ToolCallRequest(
                        id=call_id, name=name, arguments=parse_arguments("".join(parts))))
                pending.clear()
                yield StreamChunk("done", finish_reason=choice.finish_reason)

    def list_models(self) -> list:
        try:
            return [m.id for m in self.client.models.list().data]
        except openai.OpenAIError as e:
            logger.error("Failed to list models: %s", e)
            return []


PROVIDERS = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
}


def create_provider(name: str = None, model: str = None) -> Provider:
    name = name or config.PROVIDER
    if name not in PROVIDERS:
        raise ValueError(f"Unknown provider '{name}'. Available: {', '.join(PROVIDERS)}")
    return PROVIDERS[name](model=model)
