"""Shared-secret gate for the proof report API.

Every request path falls into one access tier:

- ``PUBLIC``: node health and info, batch listings, API docs
- ``ADMIN``: registration and proof creation; needs the key whenever one is set
- ``READ``: everything else (verification, chains, logs); needs the key
  only when ``API_READ_AUTH`` is on

Environment: ``API_KEY``, ``API_READ_AUTH``, ``API_PUBLIC_PREFIXES`` and
``API_ADMIN_PREFIXES`` (comma separated). Clients present the key as an
``X-API-Key`` header, a bearer token or an ``api_key`` query parameter.
"""
from __future__ import annotations

import hmac
import logging
import os
from dataclasses import dataclass
from enum import StrEnum

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

PUBLIC_PATHS = ("/healthz", "/info", "/proofs/batches", "/docs", "/redoc", "/openapi.json")
ADMIN_PATHS = ("/admin",)


class Access(StrEnum):
    PUBLIC = "public"
    READ = "read"
    ADMIN = "admin"


def _prefixes_from_env(name: str, fallback: tuple[str, ...]) -> tuple[str, ...]:
    configured = [item.strip() for item in os.getenv(name, "").split(",")]
    return tuple(item for item in configured if item) or fallback


@dataclass(frozen=True)
class AuthPolicy:
    api_key: str
    read_auth: bool = False
    public_prefixes: tuple[str, ...] = PUBLIC_PATHS
    admin_prefixes: tuple[str, ...] = ADMIN_PATHS

    def access(self, path: str) -> Access:
        # Admin wins over an overlapping public prefix
        if path.startswith(self.admin_prefixes):
            return Access.ADMIN
        if path.startswith(self.public_prefixes):
            return Access.PUBLIC
        return Access.READ

    def needs_key(self, path: str) -> bool:
        tier = self.access(path)
        return tier is Access.ADMIN or (tier is Access.READ and self.read_auth)

    def accepts(self, presented: str | None) -> bool:
        if not presented:
            return False
        return hmac.compare_digest(presented.encode("utf-8"), self.api_key.encode("utf-8"))


def presented_key(request: Request) -> str | None:
    if key := request.headers.get("x-api-key"):
        return key
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.query_params.get("api_key")


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Rejects requests lacking the key on tiers that need it. Inert without a key."""

    def __init__(
        self,
        app,
        api_key: str | None = None,
        public_prefixes: tuple[str, ...] | None = None,
        admin_prefixes: tuple[str, ...] | None = None,
        read_auth: bool = False,
    ):
        super().__init__(app)
        self.policy = None
        if api_key:
            self.policy = AuthPolicy(
                api_key=api_key,
                read_auth=read_auth,
                public_prefixes=public_prefixes or _prefixes_from_env("API_PUBLIC_PREFIXES", PUBLIC_PATHS),
                admin_prefixes=admin_prefixes or _prefixes_from_env("API_ADMIN_PREFIXES", ADMIN_PATHS),
            )

    async def dispatch(self, request: Request, call_next):
        policy = self.policy
        if policy is not None and policy.needs_key(request.url.path):
            if not policy.accepts(presented_key(request)):
                logger.debug("rejected %s %s: missing or wrong API key", request.method, request.url.path)
                return JSONResponse(status_code=401, content={"detail": "API key required"})
        return await call_next(request)


def configure_auth(app) -> None:
    """Install the gate on ``app`` when ``API_KEY`` is set in the environment."""
    api_key = os.getenv("API_KEY", "").strip()
    if not api_key:
        logger.info("API key auth disabled, all endpoints open")
        return
    read_auth = os.getenv("API_READ_AUTH", "false").strip().lower() in ("1", "true", "yes")
    app.add_middleware(APIKeyMiddleware, api_key=api_key, read_auth=read_auth)
    logger.info("API key auth enabled (read_auth=%s)", read_auth)
