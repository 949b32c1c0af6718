import logging
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("geoquest.core.middleware")

REQUEST_ID_HEADER = "x-request-id"
MAX_REQUEST_ID_LENGTH = 128


def _target(scope: Scope) -> str:
  query = scope.get("query_string", b"")
  return f"{scope.get('path', '')}?{query.decode('latin-1')}" if query else scope.get("path", "")


def resolve_request_id(scope: Scope) -> str:
  """Reuse the caller's request id when it is short and non-empty, otherwise mint one."""
  incoming = (Headers(scope=scope).get(REQUEST_ID_HEADER) or "").strip()
  if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
    return incoming
  return uuid.uuid4().hex


class RequestLoggingMiddleware:
  """Access log plus `X-Request-ID` propagation; the id lands on `request.state.request_id`."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = resolve_request_id(scope)
    scope.setdefault("state", {})["request_id"] = request_id
    method = scope.get("method", "UNKNOWN")
    started = time.perf_counter()
    logger.info("-> %s %s request_id=%s", method, _target(scope), request_id)

    response_status: dict[str, Any] = {"code": None}

    async def send_with_request_id(message: Message) -> None:
      if message["type"] == "http.response.start":
        response_status["code"] = message.get("status")
        headers = MutableHeaders(scope=message)
        headers.setdefault(REQUEST_ID_HEADER, request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info("<- %s %s %s request_id=%s %.2fms", method, scope.get("path", ""), response_status["code"] or 0, request_id, elapsed_ms)
