"""
API key authentication.

Usage:
    Set API_KEY in the environment:  API_KEY=your-secret-key
    Clients pass:                    Authorization: Bearer your-secret-key

In production (ENV=production) API_KEY is required and startup fails
without it, unless AUTH_DISABLED=true is set explicitly. In development
auth is optional. Keys are compared in constant time.
"""

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """Who is calling. user_id is a short hash of the key, or "anon" when auth is off."""

    api_key: str | None = None
    user_id: str = "anon"


def get_api_key() -> str | None:
    """The configured key, or None when auth is off."""
    return os.environ.get("API_KEY", "").strip() or None


def _is_production() -> bool:
    """ENV (or ENVIRONMENT) names a production-like deployment."""
    env = os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))
    return env.lower() in ("production", "prod", "staging")


def _auth_explicitly_disabled() -> bool:
    """AUTH_DISABLED is set on purpose, as opposed to API_KEY merely missing."""
    return os.environ.get("AUTH_DISABLED", "").lower() in ("true", "1", "yes")


def check_production_auth() -> None:
    """Refuse to start in production without an API key (unless explicitly disabled)."""
    if _is_production():
        if get_api_key() is None:
            if _auth_explicitly_disabled():
                logger.warning(
                    "[Auth] AUTH_DISABLED=true in production. "
                    "Agent execution and roster changes are unauthenticated."
                )
            else:
                raise RuntimeError(
                    "API_KEY is required in production mode. "
                    "Set API_KEY in the environment, or AUTH_DISABLED=true to opt out."
                )
    elif get_api_key() is None:
        logger.info("[Auth] No API_KEY set (dev mode). Endpoints are unauthenticated.")


async def verify_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(security_scheme),
) -> AuthContext:
    """
    FastAPI dependency guarding the agent and roster routes.

    401 when a key is configured but none was sent, 403 when it does not match.
    """
    expected_key = get_api_key()
    if expected_key is None:
        return AuthContext()

    client_host = request.client.host if request.client else "unknown"
    if credentials is None:
        logger.warning(f"[Auth] Missing credentials from {client_host}")
        raise HTTPException(status_code=401, detail="Missing API key")

    if not hmac.compare_digest(credentials.credentials, expected_key):
        logger.warning(f"[Auth] Invalid API key from {client_host}")
        raise HTTPException(status_code=403, detail="Invalid API key")

    key = credentials.credentials
    return AuthContext(api_key=key, user_id=hashlib.sha256(key.encode()).hexdigest()[:16])
