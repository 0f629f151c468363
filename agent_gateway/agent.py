"""
Agent session: conversation state plus the ask / stream / schedule entry points.

An Agent owns its message list exclusively and only ever appends to it. It
is not safe to run two calls on the same instance concurrently; callers
serialize access.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Tuple

import httpx

from .engine import TextStream, generate_text, stream_text
from .gateway import Resolver, resolve
from .models import AgentConfig, AgentInput, AgentResult, Message, Schedule
from .prompts import build_schedule_message, build_system_prompt
from .providers import ChatModel
from .tools import Tool, build_toolset

logger = logging.getLogger("agent-gateway")


class AgentStream:
    """
    Lazy, single-use stream of GenerationEvents for one `Agent.stream` call.

    Nothing is sent to the provider until the first event is requested. Once
    the iterator is drained, `result()` returns the produced messages and the
    session has been extended with them.
    """

    def __init__(self, start: Callable[[], TextStream], on_complete: Callable[[List[Message]], None]):
        self._start = start
        self._on_complete = on_complete
        self._stream: Optional[TextStream] = None
        self._result: Optional[AgentResult] = None

    def __aiter__(self) -> "AgentStream":
        return self

    async def __anext__(self) -> Any:
        if self._stream is None:
            self._stream = self._start()
        try:
            return await self._stream.__anext__()
        except StopAsyncIteration:
            if self._result is None:
                generation = await self._stream.response()
                self._on_complete(generation.messages)
                self._result = AgentResult(messages=generation.messages)
            raise

    def result(self) -> AgentResult:
        if self._result is None:
            raise RuntimeError("Stream has not been drained; no final result is available")
        return self._result

    async def aclose(self) -> None:
        if self._stream is not None:
            await self._stream.aclose()


class Agent:
    def __init__(
        self,
        config: AgentConfig,
        *,
        tools: Optional[Sequence[Tool]] = None,
        resolver: Resolver = resolve,
        clock: Callable[[], datetime] = datetime.now,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._tools = build_toolset(list(tools or []))
        self._resolver = resolver
        self._clock = clock
        self._timeout = timeout
        self._transport = transport
        self._messages: List[Message] = []

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Snapshot of the session history, oldest first."""
        return tuple(self._messages)

    def _system_prompt(self, config: AgentConfig) -> str:
        return build_system_prompt(
            date=self._clock(),
            locale=config.locale,
            language=config.language,
            max_context_load_time=config.max_context_load_time,
            platforms=config.platforms,
            current_platform=config.current_platform,
        )

    def _bind(self, config: AgentConfig) -> ChatModel:
        factory = self._resolver(config.client_type)
        provider = factory(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return provider(config.model)

    def _append(self, messages: Sequence[Message]) -> None:
        self._messages.extend(message.model_copy(deep=True) for message in messages)

    def _open_turn(self, agent_input: AgentInput, content: str) -> None:
        self._append(agent_input.messages)
        self._append([Message(role="user", content=content)])

    async def _dispatch(self, config: AgentConfig) -> AgentResult:
        model = self._bind(config)
        generation = await generate_text(
            model,
            system=self._system_prompt(config),
            messages=self._messages,
            max_steps=config.max_steps,
            tools=self._tools,
        )
        self._append(generation.messages)
        return AgentResult(messages=generation.messages)

    async def ask(self, agent_input: AgentInput, *, config: Optional[AgentConfig] = None) -> AgentResult:
        """Append the caller's turns and query, run to completion, return the new turns."""
        self._open_turn(agent_input, agent_input.query)
        return await self._dispatch(config or self.config)

    def stream(self, agent_input: AgentInput, *, config: Optional[AgentConfig] = None) -> AgentStream:
        """Same as `ask`, but yields GenerationEvents as they are produced."""
        effective = config or self.config

        def start() -> TextStream:
            self._open_turn(agent_input, agent_input.query)
            return stream_text(
                self._bind(effective),
                system=self._system_prompt(effective),
                messages=self._messages,
                max_steps=effective.max_steps,
                tools=self._tools,
            )

        return AgentStream(start, self._append)

    async def trigger_schedule(
        self,
        agent_input: AgentInput,
        schedule: Schedule,
        *,
        config: Optional[AgentConfig] = None,
    ) -> AgentResult:
        """Inject the schedule as a system-generated turn and run it like `ask`."""
        effective = config or self.config
        body = build_schedule_message(schedule=schedule, locale=effective.locale, date=self._clock())
        logger.info("schedule trigger schedule_id=%s name=%s", schedule.id, schedule.name)
        self._open_turn(agent_input, body)
        return await self._dispatch(effective)
