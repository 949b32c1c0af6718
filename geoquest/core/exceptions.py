"""HTTP error responses: every error body is `{"detail", "requestId"}`."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from geoquest.core.json import GeoQuestJSONResponse

logger = logging.getLogger("uvicorn.error")

INTERNAL_ERROR_DETAIL = "Internal Server Error"


def _json_safe(value: Any) -> Any:
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return f"{type(value).__name__}: {value}" if str(value) else type(value).__name__
  return str(value)


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def error_response(status_code: int, detail: Any, request: Request, headers: dict[str, str] | None = None) -> GeoQuestJSONResponse:
  """Build the error body; the request id is omitted when the middleware did not assign one."""
  body: dict[str, Any] = {"detail": detail}
  request_id = _request_id(request)
  if request_id:
    body["requestId"] = request_id
  return GeoQuestJSONResponse(status_code=status_code, content=body, headers=headers)


def scrub_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Drop the echoed request input from pydantic errors; question payloads never come back to the caller."""
  scrubbed: list[dict[str, Any]] = []
  for error in errors:
    entry = {key: value for key, value in error.items() if key not in ("input", "url")}
    if isinstance(entry.get("ctx"), dict):
      entry["ctx"] = {key: value for key, value in entry["ctx"].items() if key != "input"}
    scrubbed.append(_json_safe(entry))
  return scrubbed


async def unhandled_exception_handler(request: Request, exc: Exception) -> GeoQuestJSONResponse:
  logger.error("Unhandled error request_id=%s %s %s: %s", _request_id(request), request.method, request.url.path, type(exc).__name__, exc_info=exc)
  return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_DETAIL, request)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> GeoQuestJSONResponse:
  errors = scrub_validation_errors(exc.errors())
  logger.warning("Rejected request request_id=%s %s %s errors=%s", _request_id(request), request.method, request.url.path, errors)
  return error_response(status.HTTP_422_UNPROCESSABLE_CONTENT, errors, request)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> GeoQuestJSONResponse:
  """Pass 4xx details through; 5xx details stay in the log."""
  from geoquest.config import get_settings

  if exc.status_code >= 500:
    logger.error("HTTP %s request_id=%s %s: %s", exc.status_code, _request_id(request), request.url.path, exc.detail)
    return error_response(exc.status_code, INTERNAL_ERROR_DETAIL, request)

  if get_settings().log_http_4xx:
    logger.warning("HTTP %s request_id=%s %s: %s", exc.status_code, _request_id(request), request.url.path, exc.detail)
  return error_response(exc.status_code, exc.detail, request, headers=getattr(exc, "headers", None))


def register_exception_handlers(app: FastAPI) -> None:
  app.add_exception_handler(Exception, unhandled_exception_handler)
  app.add_exception_handler(StarletteHTTPException, http_exception_handler)
  app.add_exception_handler(RequestValidationError, validation_exception_handler)
