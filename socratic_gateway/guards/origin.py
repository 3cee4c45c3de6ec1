"""CORS and CSRF origin checks for browser-facing endpoints."""

import logging
from collections.abc import Iterable
from urllib.parse import urlsplit

from fastapi.responses import JSONResponse, Response

from socratic_gateway.core.errors import error_response

logger = logging.getLogger("socratic.origin")

FORBIDDEN_MESSAGE = "Forbidden: origin not allowed"
VARY_HEADERS = {"Vary": "Origin"}

_DEFAULT_PORTS = {"http": 80, "https": 443}


def origin_of_url(url: str) -> str | None:
    """Return ``scheme://host[:port]`` for *url*, or None if it cannot be derived."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


class OriginGuard:
    """Admits requests whose Origin is allow-listed or same-origin.

    An empty allow-list means same-origin only: requests without an Origin
    header (navigational, same-origin) or whose Origin matches the request URL.
    """

    def __init__(self, allowed_origins: Iterable[str] = ()) -> None:
        self._allowed = frozenset(origin for origin in allowed_origins if origin)

    @property
    def allowed_origins(self) -> frozenset[str]:
        return self._allowed

    def admits(self, origin: str | None, request_url: str) -> bool:
        if origin is None:
            return not self._allowed
        if origin in self._allowed:
            return True
        return self.is_same_origin(origin, request_url)

    @staticmethod
    def is_same_origin(origin: str, request_url: str) -> bool:
        own_origin = origin_of_url(request_url)
        if own_origin is None:
            return False
        declared = origin_of_url(origin)
        return declared is not None and declared == own_origin

    def cors_headers(self, origin: str | None) -> dict[str, str]:
        if not self._allowed or origin is None or origin not in self._allowed:
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With",
            "Access-Control-Max-Age": "86400",
            **VARY_HEADERS,
        }

    def reject_response(self) -> JSONResponse:
        return error_response(403, FORBIDDEN_MESSAGE, headers=VARY_HEADERS)

    def preflight_response(self, origin: str | None) -> Response:
        headers = self.cors_headers(origin)
        if not headers:
            logger.info("preflight_rejected", extra={"origin": origin})
            return Response(status_code=403, headers=VARY_HEADERS)
        return Response(status_code=204, headers=headers)
