"""
Request-scoped logging context.

``RequestIdMiddleware`` tags every request with an id (the incoming
``X-Request-ID`` header or a fresh uuid) and echoes it back;
``RequestContextFilter`` copies it onto log records.
"""
from __future__ import annotations

import contextvars
import logging
import uuid

_request_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar('request_id', default=None)


def get_request_id() -> str | None:
    return _request_id_ctx_var.get()


class RequestContextFilter(logging.Filter):
    """Inject the current request id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx_var.get() or '-'
        return True


class RequestIdMiddleware:
    HEADER = 'X-Request-ID'

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = (request.headers.get(self.HEADER) or '').strip()[:64] or uuid.uuid4().hex
        token = _request_id_ctx_var.set(request_id)
        request.request_id = request_id
        try:
            response = self.get_response(request)
        finally:
            _request_id_ctx_var.reset(token)
        response[self.HEADER] = request_id
        return response
