"""
Shared test doubles: a scripted provider and a gateway resolver that hands it out.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncIterator, List, Optional, Union

import pytest

from agent_gateway.models import AgentConfig
from agent_gateway.providers import BaseProvider, ModelRequest, ModelTurn, StreamChunk, ToolCall

Script = List[Union[ModelTurn, Exception]]

FIXED_NOW = datetime(2026, 3, 14, 9, 30, 0)


class ScriptedProvider(BaseProvider):
    """
    Provider that replays a fixed list of turns, one per inference step.

    An Exception in the script is raised instead of returning a turn. The
    last entry repeats once the script runs out.
    """

    name = "scripted"

    def __init__(self, script: Script, api_key: str = "", base_url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(api_key, base_url, **kwargs)
        self._script = list(script)
        self.requests: List[ModelRequest] = []
        self.model_ids: List[str] = []

    def _next(self, model_id: str, request: ModelRequest) -> ModelTurn:
        self.requests.append(request)
        self.model_ids.append(model_id)
        item = self._script[min(len(self.requests), len(self._script)) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(self, model_id: str, request: ModelRequest) -> ModelTurn:
        return self._next(model_id, request)

    async def stream(self, model_id: str, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        turn = self._next(model_id, request)
        for word in turn.text.split():
            yield StreamChunk(delta=word)
        yield StreamChunk(turn=turn)


class ScriptedGateway:
    """Resolver double: records what it was asked for and returns one shared provider."""

    def __init__(self, script: Script) -> None:
        self.provider = ScriptedProvider(script)
        self.client_types: List[str] = []
        self.credentials: List[tuple] = []

    def __call__(self, client_type: Any) -> Any:
        self.client_types.append(str(getattr(client_type, "value", client_type)))
        return self._factory

    def _factory(self, api_key: str, base_url: Optional[str] = None, **kwargs: Any) -> ScriptedProvider:
        self.credentials.append((api_key, base_url))
        return self.provider


def reply(text: str) -> ModelTurn:
    return ModelTurn(text=text, finish_reason="stop")


def call_tool(name: str, arguments: dict, call_id: str = "call_1", text: str = "") -> ModelTurn:
    return ModelTurn(
        text=text,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool-calls",
    )


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(
        api_key="sk-test",
        base_url="https://llm.example.test/v1",
        model="test-model",
        client_type="openai",
        max_context_load_time=30,
        platforms=["telegram", "discord"],
        current_platform="telegram",
    )


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
