from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .errors import ErrorKind, ProviderError, kind_for_status
from .models import Message

logger = logging.getLogger("agent-gateway")

DEFAULT_MAX_TOKENS = 4096


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelRequest:
    """Provider-agnostic input for one inference step."""

    system: str
    messages: List[Message]
    tools: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ModelTurn:
    """Normalized result of one inference step."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = "stop"


@dataclass
class StreamChunk:
    """Either a text delta or, as the last chunk of a step, the assembled turn."""

    delta: str = ""
    turn: Optional[ModelTurn] = None


@dataclass(frozen=True)
class ChatModel:
    """A provider bound to one model id."""

    provider: "BaseProvider"
    model_id: str

    async def complete(self, request: ModelRequest) -> ModelTurn:
        return await self.provider.complete(self.model_id, request)

    def stream(self, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        return self.provider.stream(self.model_id, request)

    @property
    def label(self) -> str:
        return f"{self.provider.name}:{self.model_id}"


class BaseProvider:
    """
    Abstract provider interface.

    A provider holds credentials; calling it with a model id returns a
    `ChatModel` handle. Subclasses translate `ModelRequest` into their HTTP
    API and raise `ProviderError` for every upstream failure.
    """

    name = "base"
    default_base_url = ""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def __call__(self, model_id: str) -> ChatModel:
        return ChatModel(provider=self, model_id=model_id)

    async def complete(self, model_id: str, request: ModelRequest) -> ModelTurn:  # pragma: no cover - interface only
        raise NotImplementedError

    async def stream(self, model_id: str, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        """Fallback streaming: one delta carrying the whole completed text."""
        turn = await self.complete(model_id, request)
        if turn.text:
            yield StreamChunk(delta=turn.text)
        yield StreamChunk(turn=turn)

    # HTTP helpers

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _failure(self, status_code: int, message: str) -> ProviderError:
        return ProviderError(
            kind_for_status(status_code),
            f"{self.name} request failed ({status_code}): {message}",
            provider=self.name,
            upstream_status=status_code,
        )

    async def _post_json(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.post(url, headers=self._headers(), json=body)
        except httpx.HTTPError as exc:
            raise ProviderError(
                ErrorKind.PROVIDER,
                f"{self.name} request failed: {exc}",
                provider=self.name,
            ) from exc
        if resp.status_code >= 400:
            raise self._failure(resp.status_code, _error_message(resp))
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(
                ErrorKind.PROVIDER,
                f"{self.name} returned a malformed response",
                provider=self.name,
                upstream_status=resp.status_code,
            ) from exc

    async def _stream_sse(self, url: str, body: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """Yield the JSON payload of each `data:` line of a server-sent events response."""
        try:
            async with self._client() as client:
                async with client.stream("POST", url, headers=self._headers(), json=body) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise self._failure(resp.status_code, _error_message(resp))
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[5:].strip()
                        if not data or data == "[DONE]":
                            continue
                        try:
                            payload = json.loads(data)
                        except json.JSONDecodeError:
                            logger.debug("%s: skipping undecodable stream line", self.name)
                            continue
                        if isinstance(payload, dict):
                            yield payload
        except httpx.HTTPError as exc:
            raise ProviderError(
                ErrorKind.PROVIDER,
                f"{self.name} stream failed: {exc}",
                provider=self.name,
            ) from exc


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip() or resp.reason_phrase
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return resp.text.strip() or resp.reason_phrase


def _tool_result_value(part: Dict[str, Any]) -> Any:
    output = part.get("output")
    if isinstance(output, dict) and "type" in output and "value" in output:
        return output["value"]
    return output


def _tool_result_is_error(part: Dict[str, Any]) -> bool:
    output = part.get("output")
    if isinstance(output, dict) and str(output.get("type", "")).startswith("error"):
        return True
    return bool(part.get("isError"))


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class OpenAIProvider(BaseProvider):
    """OpenAI chat-completions API."""

    name = "openai"
    default_base_url = "https://api.openai.com/v1"

    _FINISH_REASONS = {
        "stop": "stop",
        "length": "length",
        "tool_calls": "tool-calls",
        "function_call": "tool-calls",
        "content_filter": "content-filter",
    }

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _encode_messages(self, request: ModelRequest) -> List[Dict[str, Any]]:
        encoded: List[Dict[str, Any]] = []
        if request.system:
            encoded.append({"role": "system", "content": request.system})
        for message in request.messages:
            if message.role == "tool":
                for part in message.parts("tool-result"):
                    encoded.append(
                        {
                            "role": "tool",
                            "tool_call_id": part.get("toolCallId"),
                            "content": _as_text(_tool_result_value(part)),
                        }
                    )
                continue
            if message.role == "assistant":
                entry: Dict[str, Any] = {"role": "assistant", "content": message.text() or None}
                calls = message.parts("tool-call")
                if calls:
                    entry["tool_calls"] = [
                        {
                            "id": part.get("toolCallId"),
                            "type": "function",
                            "function": {
                                "name": part.get("toolName"),
                                "arguments": json.dumps(part.get("input") or {}),
                            },
                        }
                        for part in calls
                    ]
                encoded.append(entry)
                continue
            encoded.append({"role": message.role, "content": message.text()})
        return encoded

    def _body(self, model_id: str, request: ModelRequest, *, stream: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model_id,
            "messages": self._encode_messages(request),
        }
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool["description"],
                        "parameters": tool["parameters"],
                    },
                }
                for tool in request.tools
            ]
        if stream:
            body["stream"] = True
        return body

    def _finish_reason(self, raw: Optional[str], tool_calls: List[ToolCall]) -> str:
        if tool_calls:
            return "tool-calls"
        return self._FINISH_REASONS.get(raw or "stop", "other")

    async def complete(self, model_id: str, request: ModelRequest) -> ModelTurn:
        data = await self._post_json(f"{self.base_url}/chat/completions", self._body(model_id, request, stream=False))
        try:
            choice = data["choices"][0]
            message = choice.get("message") or {}
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                ErrorKind.PROVIDER,
                f"{self.name} response has no choices",
                provider=self.name,
            ) from exc

        tool_calls = [
            ToolCall(
                id=call.get("id") or _new_call_id(),
                name=(call.get("function") or {}).get("name", ""),
                arguments=_parse_arguments((call.get("function") or {}).get("arguments")),
            )
            for call in message.get("tool_calls") or []
        ]
        return ModelTurn(
            text=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=self._finish_reason(choice.get("finish_reason"), tool_calls),
        )

    async def stream(self, model_id: str, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        text_parts: List[str] = []
        # Tool call fragments arrive keyed by index.
        pending: Dict[int, Dict[str, str]] = {}
        raw_finish: Optional[str] = None

        url = f"{self.base_url}/chat/completions"
        async for chunk in self._stream_sse(url, self._body(model_id, request, stream=True)):
            if isinstance(chunk.get("error"), dict):
                raise ProviderError(
                    ErrorKind.PROVIDER,
                    f"{self.name} stream failed: {chunk['error'].get('message', 'unknown error')}",
                    provider=self.name,
                )
            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if content:
                    text_parts.append(content)
                    yield StreamChunk(delta=content)
                for fragment in delta.get("tool_calls") or []:
                    slot = pending.setdefault(int(fragment.get("index", 0)), {"id": "", "name": "", "arguments": ""})
                    if fragment.get("id"):
                        slot["id"] = fragment["id"]
                    function = fragment.get("function") or {}
                    if function.get("name"):
                        slot["name"] += function["name"]
                    if function.get("arguments"):
                        slot["arguments"] += function["arguments"]
                if choice.get("finish_reason"):
                    raw_finish = choice["finish_reason"]

        tool_calls = [
            ToolCall(
                id=slot["id"] or _new_call_id(),
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            )
            for _, slot in sorted(pending.items())
        ]
        yield StreamChunk(
            turn=ModelTurn(
                text="".join(text_parts),
                tool_calls=tool_calls,
                finish_reason=self._finish_reason(raw_finish, tool_calls),
            )
        )


class GatewayProvider(OpenAIProvider):
    """
    Generic multi-provider gateway speaking the OpenAI-compatible protocol.

    Used for any client type without a dedicated adapter; model ids are
    passed through untouched (e.g. "mistral/mistral-large").
    """

    name = "gateway"
    default_base_url = "https://ai-gateway.vercel.sh/v1"


class AnthropicProvider(BaseProvider):
    """Anthropic messages API."""

    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    api_version = "2023-06-01"

    _FINISH_REASONS = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "length",
        "tool_use": "tool-calls",
        "refusal": "content-filter",
    }

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _encode_messages(self, request: ModelRequest) -> List[Dict[str, Any]]:
        encoded: List[Dict[str, Any]] = []
        for message in request.messages:
            if message.role == "assistant":
                blocks: List[Dict[str, Any]] = []
                text = message.text()
                if text:
                    blocks.append({"type": "text", "text": text})
                for part in message.parts("tool-call"):
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": part.get("toolCallId"),
                            "name": part.get("toolName"),
                            "input": part.get("input") or {},
                        }
                    )
                if blocks:
                    encoded.append({"role": "assistant", "content": blocks})
                continue
            if message.role == "tool":
                encoded.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": part.get("toolCallId"),
                                "content": _as_text(_tool_result_value(part)),
                                "is_error": _tool_result_is_error(part),
                            }
                            for part in message.parts("tool-result")
                        ],
                    }
                )
                continue
            # The messages API has no system role inside the conversation.
            encoded.append({"role": "user", "content": message.text()})
        return encoded

    def _body(self, model_id: str, request: ModelRequest, *, stream: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model_id,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "messages": self._encode_messages(request),
        }
        if request.system:
            body["system"] = request.system
        if request.tools:
            body["tools"] = [
                {
                    "name": tool["name"],
                    "description": tool["description"],
                    "input_schema": tool["parameters"],
                }
                for tool in request.tools
            ]
        if stream:
            body["stream"] = True
        return body

    def _finish_reason(self, raw: Optional[str], tool_calls: List[ToolCall]) -> str:
        if tool_calls:
            return "tool-calls"
        return self._FINISH_REASONS.get(raw or "end_turn", "other")

    async def complete(self, model_id: str, request: ModelRequest) -> ModelTurn:
        data = await self._post_json(f"{self.base_url}/messages", self._body(model_id, request, stream=False))
        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id") or _new_call_id(),
                        name=block.get("name", ""),
                        arguments=block.get("input") or {},
                    )
                )
        return ModelTurn(
            text="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=self._finish_reason(data.get("stop_reason"), tool_calls),
        )

    async def stream(self, model_id: str, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        text_parts: List[str] = []
        blocks: Dict[int, Dict[str, str]] = {}
        raw_finish: Optional[str] = None

        url = f"{self.base_url}/messages"
        async for event in self._stream_sse(url, self._body(model_id, request, stream=True)):
            event_type = event.get("type")
            if event_type == "error":
                error = event.get("error") or {}
                raise ProviderError(
                    ErrorKind.RATE_LIMITED if error.get("type") == "overloaded_error" else ErrorKind.PROVIDER,
                    f"{self.name} stream failed: {error.get('message', 'unknown error')}",
                    provider=self.name,
                )
            if event_type == "content_block_start":
                block = event.get("content_block") or {}
                if block.get("type") == "tool_use":
                    blocks[int(event.get("index", 0))] = {
                        "id": block.get("id", ""),
                        "name": block.get("name", ""),
                        "arguments": "",
                    }
            elif event_type == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    text_parts.append(delta["text"])
                    yield StreamChunk(delta=delta["text"])
                elif delta.get("type") == "input_json_delta":
                    slot = blocks.get(int(event.get("index", 0)))
                    if slot is not None:
                        slot["arguments"] += delta.get("partial_json", "")
            elif event_type == "message_delta":
                raw_finish = (event.get("delta") or {}).get("stop_reason") or raw_finish

        tool_calls = [
            ToolCall(
                id=slot["id"] or _new_call_id(),
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            )
            for _, slot in sorted(blocks.items())
        ]
        yield StreamChunk(
            turn=ModelTurn(
                text="".join(text_parts),
                tool_calls=tool_calls,
                finish_reason=self._finish_reason(raw_finish, tool_calls),
            )
        )


class GoogleProvider(BaseProvider):
    """Google Generative AI (Gemini) API."""

    name = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    _FINISH_REASONS = {
        "STOP": "stop",
        "MAX_TOKENS": "length",
        "SAFETY": "content-filter",
        "RECITATION": "content-filter",
    }

    def _headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _encode_contents(self, request: ModelRequest) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = []
        for message in request.messages:
            if message.role == "assistant":
                parts: List[Dict[str, Any]] = []
                text = message.text()
                if text:
                    parts.append({"text": text})
                for part in message.parts("tool-call"):
                    parts.append({"functionCall": {"name": part.get("toolName"), "args": part.get("input") or {}}})
                if parts:
                    contents.append({"role": "model", "parts": parts})
                continue
            if message.role == "tool":
                contents.append(
                    {
                        "role": "user",
                        "parts": [
                            {
                                "functionResponse": {
                                    "name": part.get("toolName"),
                                    "response": {"result": _tool_result_value(part)},
                                }
                            }
                            for part in message.parts("tool-result")
                        ],
                    }
                )
                continue
            contents.append({"role": "user", "parts": [{"text": message.text()}]})
        return contents

    def _body(self, request: ModelRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {"contents": self._encode_contents(request)}
        if request.system:
            body["systemInstruction"] = {"parts": [{"text": request.system}]}
        if request.tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool["name"],
                            "description": tool["description"],
                            "parameters": tool["parameters"],
                        }
                        for tool in request.tools
                    ]
                }
            ]
        return body

    def _finish_reason(self, raw: Optional[str], tool_calls: List[ToolCall]) -> str:
        if tool_calls:
            return "tool-calls"
        return self._FINISH_REASONS.get(raw or "STOP", "other")

    @staticmethod
    def _read_candidate(data: Dict[str, Any]) -> tuple:
        candidates = data.get("candidates") or []
        if not candidates:
            return [], None
        candidate = candidates[0]
        return (candidate.get("content") or {}).get("parts") or [], candidate.get("finishReason")

    @staticmethod
    def _tool_call(part: Dict[str, Any]) -> ToolCall:
        call = part["functionCall"]
        return ToolCall(
            id=call.get("id") or _new_call_id(),
            name=call.get("name", ""),
            arguments=call.get("args") or {},
        )

    async def complete(self, model_id: str, request: ModelRequest) -> ModelTurn:
        url = f"{self.base_url}/models/{model_id}:generateContent"
        data = await self._post_json(url, self._body(request))
        parts, raw_finish = self._read_candidate(data)
        text_parts = [part["text"] for part in parts if part.get("text")]
        tool_calls = [self._tool_call(part) for part in parts if part.get("functionCall")]
        return ModelTurn(
            text="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=self._finish_reason(raw_finish, tool_calls),
        )

    async def stream(self, model_id: str, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        raw_finish: Optional[str] = None

        url = f"{self.base_url}/models/{model_id}:streamGenerateContent?alt=sse"
        async for chunk in self._stream_sse(url, self._body(request)):
            if isinstance(chunk.get("error"), dict):
                error = chunk["error"]
                status = error.get("code")
                raise ProviderError(
                    kind_for_status(status) if isinstance(status, int) else ErrorKind.PROVIDER,
                    f"{self.name} stream failed: {error.get('message', 'unknown error')}",
                    provider=self.name,
                    upstream_status=status if isinstance(status, int) else None,
                )
            parts, finish = self._read_candidate(chunk)
            raw_finish = finish or raw_finish
            for part in parts:
                if part.get("text"):
                    text_parts.append(part["text"])
                    yield StreamChunk(delta=part["text"])
                elif part.get("functionCall"):
                    tool_calls.append(self._tool_call(part))

        yield StreamChunk(
            turn=ModelTurn(
                text="".join(text_parts),
                tool_calls=tool_calls,
                finish_reason=self._finish_reason(raw_finish, tool_calls),
            )
        )


class StubProvider(BaseProvider):
    """
    Deterministic offline provider that echoes the latest user turn.

    Selected with PROVIDER=stub for local development without API keys.
    """

    name = "stub"

    def __init__(self, api_key: str = "", base_url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(api_key, base_url, **kwargs)

    @staticmethod
    def _reply(request: ModelRequest) -> str:
        for message in reversed(request.messages):
            if message.role == "user":
                return f"stub: {message.text()}"
        return "stub"

    async def complete(self, model_id: str, request: ModelRequest) -> ModelTurn:
        return ModelTurn(text=self._reply(request))

    async def stream(self, model_id: str, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        text = self._reply(request)
        words = text.split(" ")
        for index, word in enumerate(words):
            yield StreamChunk(delta=word if index == len(words) - 1 else word + " ")
        yield StreamChunk(turn=ModelTurn(text=text))
