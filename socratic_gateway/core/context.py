"""Per-request view of the inbound HTTP request."""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"


def client_key_from_headers(headers: Mapping[str, str]) -> str:
    """First X-Forwarded-For entry, then X-Real-Ip, else ``"unknown"``."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT


@dataclass(frozen=True)
class RequestContext:
    client_key: str
    origin: str | None
    url: str
    method: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    body: bytes | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        # Starlette headers are already case-insensitive; freeze a lower-cased copy.
        headers = MappingProxyType({key.lower(): value for key, value in request.headers.items()})
        return cls(
            client_key=client_key_from_headers(headers),
            origin=headers.get("origin"),
            url=str(request.url),
            method=request.method,
            headers=headers,
        )

    @property
    def content_length(self) -> str | None:
        return self.headers.get("content-length")

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def with_body(self, body: bytes) -> "RequestContext":
        return replace(self, body=body)
