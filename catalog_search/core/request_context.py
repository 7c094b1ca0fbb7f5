from __future__ import annotations

import logging
import re
from contextvars import ContextVar
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("catalog_search.http")

_current_request_id: ContextVar[str] = ContextVar("catalog_search_request_id", default="-")


def current_request_id() -> str:
    return _current_request_id.get()


def _request_id_from_header(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value or not _REQUEST_ID_RE.fullmatch(value):
        return uuid4().hex
    return value


def install_request_context(app: FastAPI) -> None:
    @app.middleware("http")
    async def _request_context_middleware(request: Request, call_next):
        request_id = _request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        token = _current_request_id.set(request_id)
        started_at = perf_counter()
        try:
            response = await call_next(request)
        finally:
            _current_request_id.reset(token)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers[REQUEST_ID_HEADER] = request_id

        duration_ms = (perf_counter() - started_at) * 1000.0
        _LOG.info(
            "%s %s query=%s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            request.url.path,
            request.url.query or "-",
            response.status_code,
            duration_ms,
            request_id,
        )
        return response
