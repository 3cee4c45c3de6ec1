from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse

INTERNAL_ERROR_MESSAGE = "Internal server error"


@dataclass
class ErrorEnvelope:
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class AppError(Exception):
    """Terminal request failure carrying a fixed, client-safe message.

    ``code`` is for logs and metrics only; it never reaches the response body.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        headers: Mapping[str, str] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.headers = dict(headers or {})


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def error_response(
    status_code: int,
    message: str,
    headers: Mapping[str, str] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(message=message)
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    for key, value in (headers or {}).items():
        response.headers[key] = value
    if request_id:
        response.headers["x-request-id"] = request_id
    return response
