import re
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from socratic_gateway.core.context import client_key_from_headers

# Caller-supplied ids end up in JSON logs; accept only short opaque tokens.
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        supplied = request.headers.get("x-request-id", "")
        request_id = supplied if _SAFE_REQUEST_ID.match(supplied) else str(uuid4())
        request.state.request_id = request_id
        request.state.client_key = client_key_from_headers(request.headers)
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response
