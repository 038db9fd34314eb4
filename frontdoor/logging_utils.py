import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from frontdoor.metrics import record_http_request


# Id of the request being served, attached to every log line emitted while it runs
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with a millisecond UTC `ts`, the level name and the current request id."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            log_record['ts'] = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """Route the root and uvicorn loggers through one JSON handler on stdout."""
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(ts)s %(level)s %(name)s %(message)s'
    )
    json_handler.setFormatter(formatter)
    logger.addHandler(json_handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Request lines come from RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").disabled = True

    return logger


request_logger = logging.getLogger("frontdoor.requests")


def _route_path(request: Request) -> str:
    # Route template keeps metric labels bounded (/door-bell/{door_bell_id}/messages)
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line and one metrics sample per request, tagged with an X-Request-ID.

    Log keys:
    - ts, level, request_id
    - method, path, status, latency_ms

    Door bell routes may also attach (see log_call_data):
    - door_bell_id, call_session_id, result
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id

            # Scrapes of /metrics would otherwise count themselves
            if request.url.path != "/metrics":
                record_http_request(request.method, _route_path(request), response.status_code, elapsed)

            fields = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
                **getattr(request.state, "call_log_data", {}),
            }
            request_logger.log(_level_for(response.status_code), "Request completed", extra=fields)
            return response
        finally:
            request_id_ctx.reset(token)


def log_call_data(
    request: Request,
    door_bell_id: str = None,
    call_session_id: str = None,
    result: str = None,
):
    """
    Stash door bell fields on the request for RequestLoggingMiddleware.

    result is an outcome label: rung, joined, answered, ended, posted,
    routed, or none when a scan routed nothing.
    """
    call_data = {}

    if door_bell_id is not None:
        call_data["door_bell_id"] = door_bell_id
    if call_session_id is not None:
        call_data["call_session_id"] = call_session_id
    if result is not None:
        call_data["result"] = result

    request.state.call_log_data = call_data
