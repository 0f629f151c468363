from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import ErrorKind, build_error_envelope, new_request_id
from .routers import chat as chat_router


logger = logging.getLogger("agent-gateway")


app = FastAPI(title="Agent Gateway", version="0.1.0")


# CORS: controlled by env CORS_ORIGINS (e.g. * or http://localhost:3000)
_cors_origins_list = [o.strip() for o in get_settings().cors_origins.strip().split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(chat_router.router)


def _validation_details(exc: RequestValidationError) -> List[Dict[str, Any]]:
    details: List[Dict[str, Any]] = []
    for err in exc.errors():
        details.append(
            {
                # Drop the leading "body" segment FastAPI adds.
                "path": list(err.get("loc", ()))[1:],
                "message": err.get("msg", ""),
            }
        )
    return details


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Reject malformed bodies with 400 VALIDATION_ERROR before they reach the agent.
    """
    request_id = new_request_id()
    logger.info("validation failed request_id=%s path=%s", request_id, request.url.path)
    status_code, body = build_error_envelope(
        request_id=request_id,
        status_code=400,
        code=ErrorKind.VALIDATION.value,
        message="Validation failed",
        details=_validation_details(exc),
    )
    return JSONResponse(status_code=status_code, content=body)


@app.get("/health")
async def health() -> JSONResponse:
    """
    Simple health check.
    """
    settings = get_settings()
    return JSONResponse(status_code=200, content={"status": "ok", "service": settings.service_name})
