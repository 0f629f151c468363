from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import ErrorKind, ProviderError
from .events import Finish, FinishStep, TextDelta, ToolCallEvent, ToolResultEvent
from .models import Message
from .providers import ChatModel, ModelRequest, ModelTurn
from .tools import ToolSet, execute_tool

logger = logging.getLogger("agent-gateway")

Emit = Callable[[Any], None]


@dataclass
class GenerationResult:
    """Messages produced by one run, in order, plus how the run ended."""

    messages: List[Message]
    steps: int
    finish_reason: str


def _assistant_message(turn: ModelTurn) -> Message:
    parts: List[Dict[str, Any]] = []
    if turn.text:
        parts.append({"type": "text", "text": turn.text})
    for call in turn.tool_calls:
        parts.append(
            {
                "type": "tool-call",
                "toolCallId": call.id,
                "toolName": call.name,
                "input": call.arguments,
            }
        )
    return Message(role="assistant", content=parts or "")


def _tool_result_part(call_id: str, name: str, output: Any, is_error: bool) -> Dict[str, Any]:
    return {
        "type": "tool-result",
        "toolCallId": call_id,
        "toolName": name,
        "output": {"type": "error-json" if is_error else "json", "value": output},
    }


async def _next_turn(model: ChatModel, request: ModelRequest, emit: Optional[Emit]) -> ModelTurn:
    if emit is None:
        return await model.complete(request)

    turn: Optional[ModelTurn] = None
    async for chunk in model.stream(request):
        if chunk.delta:
            emit(TextDelta(text=chunk.delta))
        if chunk.turn is not None:
            turn = chunk.turn
    if turn is None:
        raise ProviderError(
            ErrorKind.PROVIDER,
            f"{model.provider.name} stream ended without a final result",
            provider=model.provider.name,
        )
    return turn


async def _run_loop(
    model: ChatModel,
    *,
    system: str,
    messages: Sequence[Message],
    max_steps: int,
    tools: ToolSet,
    emit: Optional[Emit] = None,
) -> GenerationResult:
    """
    Bounded agentic loop shared by both execution modes.

    Each step is one inference followed by the tool calls it requested. The
    loop ends when a step requests no tools or after `max_steps` steps.
    """
    start = time.monotonic()
    history = list(messages)
    produced: List[Message] = []
    tool_specs = [tool.spec() for tool in tools.values()]
    step = 0
    finish_reason = "stop"

    while True:
        step += 1
        request = ModelRequest(system=system, messages=history + produced, tools=tool_specs)
        turn = await _next_turn(model, request, emit)
        finish_reason = turn.finish_reason
        produced.append(_assistant_message(turn))

        if turn.tool_calls:
            results: List[Dict[str, Any]] = []
            for call in turn.tool_calls:
                if emit is not None:
                    emit(ToolCallEvent(tool_call_id=call.id, tool_name=call.name, input=call.arguments))
                output, is_error = await execute_tool(tools, call.name, call.arguments)
                if emit is not None:
                    emit(
                        ToolResultEvent(
                            tool_call_id=call.id,
                            tool_name=call.name,
                            output=output,
                            is_error=is_error,
                        )
                    )
                results.append(_tool_result_part(call.id, call.name, output, is_error))
            produced.append(Message(role="tool", content=results))

        logger.debug(
            "step model=%s step=%s finish_reason=%s tool_calls=%s",
            model.label,
            step,
            finish_reason,
            len(turn.tool_calls),
        )
        if emit is not None:
            emit(FinishStep(step=step, finish_reason=finish_reason))

        if not turn.tool_calls:
            break
        if step >= max_steps:
            logger.warning("step ceiling reached model=%s max_steps=%s", model.label, max_steps)
            break

    if emit is not None:
        emit(Finish(finish_reason=finish_reason, steps=step))
    logger.info(
        "generation model=%s mode=%s steps=%s finish_reason=%s latency_ms=%.2f",
        model.label,
        "stream" if emit is not None else "blocking",
        step,
        finish_reason,
        (time.monotonic() - start) * 1000.0,
    )
    return GenerationResult(messages=produced, steps=step, finish_reason=finish_reason)


async def generate_text(
    model: ChatModel,
    *,
    system: str,
    messages: Sequence[Message],
    max_steps: int,
    tools: Optional[ToolSet] = None,
) -> GenerationResult:
    """Run the bounded loop to completion and return the produced messages."""
    return await _run_loop(model, system=system, messages=messages, max_steps=max_steps, tools=tools or {})


@dataclass
class _Done:
    result: GenerationResult


@dataclass
class _Failed:
    error: BaseException


class TextStream:
    """
    Streaming run of the bounded loop.

    A producer task pushes events into an unbounded queue, so a slow consumer
    never throttles generation. Iterating yields events in emission order;
    a failure in the producer is raised after the events queued before it.
    `aclose()` cancels the producer if it is still running.
    """

    def __init__(
        self,
        model: ChatModel,
        *,
        system: str,
        messages: Sequence[Message],
        max_steps: int,
        tools: Optional[ToolSet] = None,
    ) -> None:
        self._model = model
        self._system = system
        self._messages = list(messages)
        self._max_steps = max_steps
        self._tools = tools or {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[GenerationResult] = None
        self._error: Optional[BaseException] = None
        self._exhausted = False

    def _ensure_started(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._produce())

    async def _produce(self) -> None:
        try:
            result = await _run_loop(
                self._model,
                system=self._system,
                messages=self._messages,
                max_steps=self._max_steps,
                tools=self._tools,
                emit=self._queue.put_nowait,
            )
        except Exception as exc:
            self._error = exc
            self._queue.put_nowait(_Failed(exc))
            return
        self._result = result
        self._queue.put_nowait(_Done(result))

    def __aiter__(self) -> "TextStream":
        return self

    async def __anext__(self) -> Any:
        if self._exhausted:
            raise StopAsyncIteration
        self._ensure_started()
        item = await self._queue.get()
        if isinstance(item, _Done):
            self._exhausted = True
            raise StopAsyncIteration
        if isinstance(item, _Failed):
            self._exhausted = True
            raise item.error
        return item

    async def response(self) -> GenerationResult:
        """Wait for the run to finish and return its result, re-raising its failure."""
        self._ensure_started()
        assert self._task is not None
        await asyncio.shield(self._task)
        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    async def aclose(self) -> None:
        self._exhausted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("stream producer cancelled model=%s", self._model.label)


def stream_text(
    model: ChatModel,
    *,
    system: str,
    messages: Sequence[Message],
    max_steps: int,
    tools: Optional[ToolSet] = None,
) -> TextStream:
    """Start a streaming run lazily; production begins on first iteration."""
    return TextStream(model, system=system, messages=messages, max_steps=max_steps, tools=tools)
