"""
Chat API: POST /chat, POST /chat/stream, POST /chat/schedule.

Each request builds a fresh Agent from the body; history arrives in the
body and the produced turns go back in the response. Nothing is stored.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from agent_gateway.agent import Agent
from agent_gateway.config import get_settings
from agent_gateway.dependencies import get_resolver
from agent_gateway.errors import AgentError, ErrorKind, build_error_envelope, new_request_id
from agent_gateway.events import ErrorEvent
from agent_gateway.gateway import Resolver
from agent_gateway.models import AgentResult, ChatBody, ScheduleBody

logger = logging.getLogger("agent-gateway")

router = APIRouter(prefix="/chat", tags=["chat"])


def _chat_error(request_id: str, exc: Exception) -> JSONResponse:
    if isinstance(exc, AgentError):
        status_code, body = build_error_envelope(
            request_id=request_id,
            status_code=exc.status_code,
            code=exc.kind.value,
            message=exc.message,
            details=exc.details,
        )
    else:
        status_code, body = build_error_envelope(
            request_id=request_id,
            status_code=500,
            code=ErrorKind.INTERNAL.value,
            message="Internal server error",
        )
    return JSONResponse(status_code=status_code, content=body)


def _build_agent(body: ChatBody, resolver: Resolver) -> Agent:
    settings = get_settings()
    return Agent(
        body.to_agent_config(default_max_steps=settings.default_max_steps),
        resolver=resolver,
        timeout=settings.request_timeout,
    )


def _result_body(result: AgentResult) -> Dict[str, Any]:
    return {"messages": [message.model_dump(mode="json") for message in result.messages]}


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _log_chat(
    *,
    request_id: str,
    route: str,
    body: ChatBody,
    status_code: int,
    start: float,
) -> None:
    logger.info(
        "chat request_id=%s route=%s client_type=%s model=%s status=%s latency_ms=%.2f",
        request_id,
        route,
        body.client_type.value,
        body.model,
        status_code,
        (time.monotonic() - start) * 1000.0,
    )


@router.post("")
async def chat(body: ChatBody, resolver: Resolver = Depends(get_resolver)) -> JSONResponse:
    """
    Run one blocking turn. Returns 200 with { messages } holding the new turns.
    """
    request_id = new_request_id()
    start = time.monotonic()
    agent = _build_agent(body, resolver)
    try:
        result = await agent.ask(body.to_agent_input())
    except AgentError as exc:
        _log_chat(request_id=request_id, route="chat", body=body, status_code=exc.status_code, start=start)
        return _chat_error(request_id, exc)
    except Exception as exc:
        logger.exception("chat failed request_id=%s", request_id)
        _log_chat(request_id=request_id, route="chat", body=body, status_code=500, start=start)
        return _chat_error(request_id, exc)

    _log_chat(request_id=request_id, route="chat", body=body, status_code=200, start=start)
    return JSONResponse(status_code=200, content=_result_body(result))


@router.post("/stream")
async def chat_stream(body: ChatBody, resolver: Resolver = Depends(get_resolver)) -> StreamingResponse:
    """
    Server-sent events stream of one turn.

    Emits `{type: "delta", data: event}` per generation event, then a single
    `{type: "done", data: {messages}}`. A failure emits `{type: "error"}`
    instead of `done` and ends the stream.
    """
    request_id = new_request_id()
    start = time.monotonic()
    agent = _build_agent(body, resolver)

    async def event_stream() -> AsyncIterator[str]:
        agent_stream = agent.stream(body.to_agent_input())
        try:
            async for event in agent_stream:
                yield _sse({"type": "delta", "data": event.to_dict()})
            yield _sse({"type": "done", "data": _result_body(agent_stream.result())})
            _log_chat(request_id=request_id, route="stream", body=body, status_code=200, start=start)
        except AgentError as exc:
            _log_chat(request_id=request_id, route="stream", body=body, status_code=exc.status_code, start=start)
            error = ErrorEvent(code=exc.kind.value, message=exc.message, details=exc.details)
            yield _sse({"type": "error", "data": error.to_dict()})
        except Exception:
            logger.exception("chat stream failed request_id=%s", request_id)
            _log_chat(request_id=request_id, route="stream", body=body, status_code=500, start=start)
            error = ErrorEvent(code=ErrorKind.INTERNAL.value, message="Internal server error")
            yield _sse({"type": "error", "data": error.to_dict()})
        finally:
            # Client went away or the run failed: stop the producer.
            await agent_stream.aclose()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.post("/schedule")
async def chat_schedule(body: ScheduleBody, resolver: Resolver = Depends(get_resolver)) -> JSONResponse:
    """
    Run a scheduled task as a system-generated turn. Returns 200 with { messages }.
    """
    request_id = new_request_id()
    start = time.monotonic()
    agent = _build_agent(body, resolver)
    try:
        result = await agent.trigger_schedule(body.to_agent_input(), body.schedule)
    except AgentError as exc:
        _log_chat(request_id=request_id, route="schedule", body=body, status_code=exc.status_code, start=start)
        return _chat_error(request_id, exc)
    except Exception as exc:
        logger.exception("chat schedule failed request_id=%s", request_id)
        _log_chat(request_id=request_id, route="schedule", body=body, status_code=500, start=start)
        return _chat_error(request_id, exc)

    _log_chat(request_id=request_id, route="schedule", body=body, status_code=200, start=start)
    return JSONResponse(status_code=200, content=_result_body(result))
