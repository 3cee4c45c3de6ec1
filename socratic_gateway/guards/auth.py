"""Request authentication strategies.

Exactly one strategy is active per deployment (``SOCRATIC_AUTH_MODE``):

* ``identity_provider`` delegates to an external session verifier. A failing
  verifier is reported as ``auth_unavailable``, never as a server error.
* ``shared_secret`` compares ``Authorization: Bearer <token>`` against a
  configured secret. With no secret configured every request is rejected
  unless ``SOCRATIC_AUTH_ALLOW_OPEN`` is set.
"""

import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import httpx

from socratic_gateway.config.settings import Settings
from socratic_gateway.core.context import RequestContext

logger = logging.getLogger("socratic.auth")

ANONYMOUS_PRINCIPAL = "anonymous"
SHARED_SECRET_PRINCIPAL = "shared-secret"


class AuthFailureReason(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTH_UNAVAILABLE = "auth_unavailable"
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"


@dataclass(frozen=True)
class Authenticated:
    principal_id: str


@dataclass(frozen=True)
class Unauthenticated:
    reason: AuthFailureReason


AuthVerdict = Authenticated | Unauthenticated


class Authenticator(Protocol):
    async def authenticate(self, ctx: RequestContext) -> AuthVerdict:
        """Resolve the request to a principal or a failure reason."""


class IdentityVerifier(Protocol):
    async def verify(self, credential: str) -> str | None:
        """Return the principal id for *credential*, or None if it is not a valid session."""


def bearer_token(ctx: RequestContext) -> str | None:
    header = ctx.header("authorization") or ""
    if not header.startswith("Bearer "):
        return None
    token = header.removeprefix("Bearer ").strip()
    return token or None


def session_cookie(ctx: RequestContext, cookie_name: str) -> str | None:
    raw = ctx.header("cookie")
    if not raw:
        return None
    for item in raw.split(";"):
        name, _, value = item.strip().partition("=")
        if name == cookie_name and value:
            return value
    return None


class _WarnOnce:
    """Logs each degraded-mode condition once per owner instance."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def warning(self, event: str, **fields: object) -> None:
        if event in self._seen:
            return
        self._seen.add(event)
        logger.warning(event, extra=fields)

    def seen(self, event: str) -> bool:
        return event in self._seen


class SharedSecretAuthenticator:
    def __init__(self, secret: str | None, allow_open: bool = False) -> None:
        self._secret = secret or None
        self._allow_open = allow_open
        self._warn_once = _WarnOnce()

    @property
    def warned(self) -> _WarnOnce:
        return self._warn_once

    async def authenticate(self, ctx: RequestContext) -> AuthVerdict:
        if self._secret is None:
            if self._allow_open:
                self._warn_once.warning("auth_open_mode", reason="shared secret not configured")
                return Authenticated(principal_id=ANONYMOUS_PRINCIPAL)
            self._warn_once.warning("auth_secret_missing", reason="rejecting all requests")
            return Unauthenticated(reason=AuthFailureReason.AUTH_UNAVAILABLE)

        token = bearer_token(ctx)
        if token is None or not hmac.compare_digest(
            token.encode("utf-8"), self._secret.encode("utf-8")
        ):
            return Unauthenticated(reason=AuthFailureReason.INVALID_CREDENTIAL)
        return Authenticated(principal_id=SHARED_SECRET_PRINCIPAL)


class IdentityProviderAuthenticator:
    def __init__(self, verifier: IdentityVerifier, cookie_name: str = "__session") -> None:
        self._verifier = verifier
        self._cookie_name = cookie_name

    async def authenticate(self, ctx: RequestContext) -> AuthVerdict:
        credential = bearer_token(ctx) or session_cookie(ctx, self._cookie_name)
        if credential is None:
            return Unauthenticated(reason=AuthFailureReason.MISSING_CREDENTIAL)

        try:
            principal_id = await self._verifier.verify(credential)
        except Exception as exc:
            logger.warning(
                "auth_unavailable",
                extra={"client_key": ctx.client_key, "error_type": type(exc).__name__},
            )
            return Unauthenticated(reason=AuthFailureReason.AUTH_UNAVAILABLE)

        if not principal_id:
            return Unauthenticated(reason=AuthFailureReason.UNAUTHENTICATED)
        return Authenticated(principal_id=principal_id)


class HTTPIdentityVerifier:
    """Verifies session tokens against an identity provider's HTTP endpoint.

    Expects ``{"user_id": "..."}`` on success; 401/403/404 mean "not a session".
    Any other failure raises and is treated as the provider being unavailable.
    """

    def __init__(self, verify_url: str, api_key: str | None = None, timeout_s: float = 5.0):
        self._verify_url = verify_url
        self._api_key = api_key
        self._timeout = timeout_s

    async def verify(self, credential: str) -> str | None:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(self._verify_url, json={"token": credential}, headers=headers)

        if resp.status_code in {401, 403, 404}:
            return None
        resp.raise_for_status()

        body = resp.json()
        user_id = body.get("user_id") if isinstance(body, dict) else None
        return str(user_id) if user_id else None


def build_authenticator(settings: Settings) -> Authenticator:
    mode = settings.auth_mode_normalized
    if mode == "shared_secret":
        return SharedSecretAuthenticator(
            secret=settings.auth_shared_secret,
            allow_open=settings.auth_allow_open,
        )
    if mode == "identity_provider":
        if not settings.identity_verify_url:
            raise RuntimeError(
                "SOCRATIC_IDENTITY_VERIFY_URL is required when auth_mode=identity_provider"
            )
        return IdentityProviderAuthenticator(
            verifier=HTTPIdentityVerifier(
                verify_url=settings.identity_verify_url,
                api_key=settings.identity_api_key,
                timeout_s=settings.identity_timeout_s,
            ),
            cookie_name=settings.identity_session_cookie,
        )
    raise RuntimeError(f"Unsupported SOCRATIC_AUTH_MODE value: {mode}")
