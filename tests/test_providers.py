from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List

import httpx
import pytest

from agent_gateway.errors import ErrorKind, ProviderError
from agent_gateway.models import Message
from agent_gateway.providers import (
    AnthropicProvider,
    GatewayProvider,
    GoogleProvider,
    ModelRequest,
    OpenAIProvider,
    StubProvider,
)

TOOL = {
    "name": "get_weather",
    "description": "Current weather",
    "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
}

TOOL_EXCHANGE = [
    Message(role="user", content="Weather in Paris?"),
    Message(
        role="assistant",
        content=[
            {"type": "text", "text": "Checking."},
            {"type": "tool-call", "toolCallId": "call_9", "toolName": "get_weather", "input": {"city": "Paris"}},
        ],
    ),
    Message(
        role="tool",
        content=[
            {
                "type": "tool-result",
                "toolCallId": "call_9",
                "toolName": "get_weather",
                "output": {"type": "json", "value": {"forecast": "sunny"}},
            }
        ],
    ),
]


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def body(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


def _sse(*payloads: Any) -> httpx.Response:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return httpx.Response(200, content="".join(lines).encode(), headers={"content-type": "text/event-stream"})


def _collect(provider, model_id: str, request: ModelRequest):
    async def run():
        return [chunk async for chunk in provider.stream(model_id, request)]

    return asyncio.run(run())


### OpenAI ####################################################################


def test_openai_complete_encodes_history_and_parses_tool_calls():
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {"name": "get_weather", "arguments": '{"city": "Lyon"}'},
                                }
                            ],
                        },
                        "finish_reason": "tool_calls",
                    }
                ]
            },
        )
    )
    provider = OpenAIProvider("sk-1", "https://api.example.test/v1", transport=httpx.MockTransport(recorder))

    turn = asyncio.run(provider.complete("gpt-x", ModelRequest(system="be nice", messages=TOOL_EXCHANGE, tools=[TOOL])))

    request = recorder.requests[0]
    assert str(request.url) == "https://api.example.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-1"
    body = recorder.body
    assert body["model"] == "gpt-x"
    assert body["messages"][0] == {"role": "system", "content": "be nice"}
    assert body["messages"][2]["tool_calls"][0]["function"] == {
        "name": "get_weather",
        "arguments": json.dumps({"city": "Paris"}),
    }
    assert body["messages"][3] == {"role": "tool", "tool_call_id": "call_9", "content": json.dumps({"forecast": "sunny"})}
    assert body["tools"][0]["function"]["name"] == "get_weather"
    assert "stream" not in body

    assert turn.finish_reason == "tool-calls"
    assert turn.tool_calls[0].id == "call_1"
    assert turn.tool_calls[0].arguments == {"city": "Lyon"}


def test_openai_stream_assembles_text_and_fragmented_tool_calls():
    recorder = Recorder(
        _sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c1", "function": {"name": "get_weather", "arguments": '{"ci'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": 'ty": "Nice"}'}}]}}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
            "[DONE]",
        )
    )
    provider = OpenAIProvider("sk-1", transport=httpx.MockTransport(recorder))

    chunks = _collect(provider, "gpt-x", ModelRequest(system="", messages=[Message(role="user", content="hi")]))

    assert [c.delta for c in chunks if c.delta] == ["Hel", "lo"]
    turn = chunks[-1].turn
    assert turn.text == "Hello"
    assert turn.tool_calls[0].id == "c1"
    assert turn.tool_calls[0].arguments == {"city": "Nice"}
    assert recorder.body["stream"] is True


def test_gateway_provider_speaks_openai_protocol():
    recorder = Recorder(httpx.Response(200, json={"choices": [{"message": {"content": "hey"}, "finish_reason": "stop"}]}))
    provider = GatewayProvider("gw-key", transport=httpx.MockTransport(recorder))

    turn = asyncio.run(provider.complete("mistral/large", ModelRequest(system="", messages=[])))

    assert str(recorder.requests[0].url) == "https://ai-gateway.vercel.sh/v1/chat/completions"
    assert recorder.body["model"] == "mistral/large"
    assert turn.text == "hey"
    assert turn.finish_reason == "stop"


### Anthropic #################################################################


def test_anthropic_complete_encodes_blocks_and_system():
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "content": [
                    {"type": "text", "text": "Let me check."},
                    {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Rome"}},
                ],
                "stop_reason": "tool_use",
            },
        )
    )
    provider = AnthropicProvider("ak", transport=httpx.MockTransport(recorder))

    turn = asyncio.run(provider.complete("claude-x", ModelRequest(system="sys", messages=TOOL_EXCHANGE, tools=[TOOL])))

    request = recorder.requests[0]
    assert str(request.url) == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "ak"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = recorder.body
    assert body["system"] == "sys"
    assert body["max_tokens"] > 0
    assert body["messages"][1]["content"][1] == {
        "type": "tool_use",
        "id": "call_9",
        "name": "get_weather",
        "input": {"city": "Paris"},
    }
    assert body["messages"][2]["role"] == "user"
    assert body["messages"][2]["content"][0]["tool_use_id"] == "call_9"
    assert body["messages"][2]["content"][0]["is_error"] is False
    assert body["tools"][0]["input_schema"] == TOOL["parameters"]

    assert turn.text == "Let me check."
    assert turn.tool_calls[0].arguments == {"city": "Rome"}
    assert turn.finish_reason == "tool-calls"


def test_anthropic_stream_parses_deltas_and_tool_input():
    recorder = Recorder(
        _sse(
            {"type": "message_start", "message": {}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "On it"}},
            {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "t1", "name": "get_weather"}},
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"city":'}},
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": ' "Oslo"}'}},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
            {"type": "message_stop"},
        )
    )
    provider = AnthropicProvider("ak", transport=httpx.MockTransport(recorder))

    chunks = _collect(provider, "claude-x", ModelRequest(system="", messages=[Message(role="user", content="hi")]))

    assert [c.delta for c in chunks if c.delta] == ["On it"]
    turn = chunks[-1].turn
    assert turn.tool_calls[0].id == "t1"
    assert turn.tool_calls[0].arguments == {"city": "Oslo"}
    assert turn.finish_reason == "tool-calls"


def test_anthropic_stream_error_event_raises():
    recorder = Recorder(_sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))
    provider = AnthropicProvider("ak", transport=httpx.MockTransport(recorder))

    with pytest.raises(ProviderError) as exc:
        _collect(provider, "claude-x", ModelRequest(system="", messages=[]))

    assert exc.value.kind is ErrorKind.RATE_LIMITED
    assert "Overloaded" in exc.value.message


### Google ####################################################################


def test_google_complete_encodes_contents_and_function_calls():
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {"role": "model", "parts": [{"functionCall": {"name": "get_weather", "args": {"city": "Bern"}}}]},
                        "finishReason": "STOP",
                    }
                ]
            },
        )
    )
    provider = GoogleProvider("gk", transport=httpx.MockTransport(recorder))

    turn = asyncio.run(provider.complete("gemini-x", ModelRequest(system="sys", messages=TOOL_EXCHANGE, tools=[TOOL])))

    request = recorder.requests[0]
    assert str(request.url) == "https://generativelanguage.googleapis.com/v1beta/models/gemini-x:generateContent"
    assert request.headers["x-goog-api-key"] == "gk"
    body = recorder.body
    assert body["systemInstruction"] == {"parts": [{"text": "sys"}]}
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert body["contents"][2]["parts"][0]["functionResponse"] == {
        "name": "get_weather",
        "response": {"result": {"forecast": "sunny"}},
    }
    assert body["tools"][0]["functionDeclarations"][0]["name"] == "get_weather"

    assert turn.tool_calls[0].name == "get_weather"
    assert turn.tool_calls[0].arguments == {"city": "Bern"}
    assert turn.tool_calls[0].id.startswith("call_")
    assert turn.finish_reason == "tool-calls"


def test_google_stream_uses_sse_endpoint():
    recorder = Recorder(
        _sse(
            {"candidates": [{"content": {"parts": [{"text": "Guten "}]}}]},
            {"candidates": [{"content": {"parts": [{"text": "Tag"}]}, "finishReason": "STOP"}]},
        )
    )
    provider = GoogleProvider("gk", transport=httpx.MockTransport(recorder))

    chunks = _collect(provider, "gemini-x", ModelRequest(system="", messages=[Message(role="user", content="hi")]))

    assert str(recorder.requests[0].url).endswith("/models/gemini-x:streamGenerateContent?alt=sse")
    assert [c.delta for c in chunks if c.delta] == ["Guten ", "Tag"]
    assert chunks[-1].turn.text == "Guten Tag"
    assert chunks[-1].turn.finish_reason == "stop"


def test_google_stream_error_payload_raises():
    recorder = Recorder(
        _sse(
            {"candidates": [{"content": {"parts": [{"text": "Par"}]}}]},
            {"error": {"code": 429, "message": "Resource has been exhausted", "status": "RESOURCE_EXHAUSTED"}},
        )
    )
    provider = GoogleProvider("gk", transport=httpx.MockTransport(recorder))

    with pytest.raises(ProviderError) as exc:
        _collect(provider, "gemini-x", ModelRequest(system="", messages=[Message(role="user", content="hi")]))

    assert exc.value.kind is ErrorKind.RATE_LIMITED
    assert exc.value.upstream_status == 429
    assert "Resource has been exhausted" in exc.value.message


### Failures ##################################################################


@pytest.mark.parametrize(
    "status,kind",
    [
        (401, ErrorKind.UNAUTHORIZED),
        (403, ErrorKind.FORBIDDEN),
        (404, ErrorKind.NOT_FOUND),
        (429, ErrorKind.RATE_LIMITED),
        (500, ErrorKind.PROVIDER),
    ],
)
def test_http_failures_are_tagged_by_status(status, kind):
    recorder = Recorder(httpx.Response(status, json={"error": {"message": "upstream says no"}}))
    provider = OpenAIProvider("sk-1", transport=httpx.MockTransport(recorder))

    with pytest.raises(ProviderError) as exc:
        asyncio.run(provider.complete("gpt-x", ModelRequest(system="", messages=[])))

    assert exc.value.kind is kind
    assert exc.value.upstream_status == status
    assert "upstream says no" in exc.value.message
    assert exc.value.details == {"provider": "openai", "upstream_status": status}


def test_stream_http_failure_carries_provider_message():
    recorder = Recorder(httpx.Response(401, json={"error": {"message": "invalid x-api-key"}}))
    provider = AnthropicProvider("bad", transport=httpx.MockTransport(recorder))

    with pytest.raises(ProviderError) as exc:
        _collect(provider, "claude-x", ModelRequest(system="", messages=[]))

    assert exc.value.kind is ErrorKind.UNAUTHORIZED
    assert "invalid x-api-key" in exc.value.message


def test_network_failure_becomes_provider_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = GoogleProvider("gk", transport=httpx.MockTransport(refuse))

    with pytest.raises(ProviderError) as exc:
        asyncio.run(provider.complete("gemini-x", ModelRequest(system="", messages=[])))

    assert exc.value.kind is ErrorKind.PROVIDER
    assert exc.value.upstream_status is None


def test_malformed_response_becomes_provider_error():
    recorder = Recorder(httpx.Response(200, json={"unexpected": True}))
    provider = OpenAIProvider("sk-1", transport=httpx.MockTransport(recorder))

    with pytest.raises(ProviderError):
        asyncio.run(provider.complete("gpt-x", ModelRequest(system="", messages=[])))


### Stub ######################################################################


def test_stub_provider_echoes_last_user_turn():
    provider = StubProvider()
    request = ModelRequest(system="", messages=[Message(role="user", content="ping")])

    turn = asyncio.run(provider.complete("any", request))
    chunks = _collect(provider, "any", request)

    assert turn.text == "stub: ping"
    assert "".join(c.delta for c in chunks) == "stub: ping"
    assert chunks[-1].turn.text == "stub: ping"
