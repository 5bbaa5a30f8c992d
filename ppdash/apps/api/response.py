from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)
    # True when the payload is a dashboard with degraded sections or a cycle error.
    partial: bool = False


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    # Reuse the middleware-assigned id, then the client header, then mint one.
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    if not request_id:
        request_id = str(uuid4())
    request.state.request_id = request_id
    return request_id


def _meta(request: Request, *, partial: bool = False) -> dict[str, Any]:
    return ResponseMeta(request_id=get_request_id(request), partial=partial).model_dump()


def success_response(*, request: Request, data: Any, partial: bool = False) -> dict[str, Any]:
    return {"data": data, "meta": _meta(request, partial=partial)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Error bodies never carry stored credentials; details hold only request diagnostics.
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}
