"""
ShopLens Security Utilities

Access-token issue/verification and the shared-secret check for the job
processor callback.
"""

import hmac
import time
from datetime import datetime, timedelta

import httpx
import structlog
from jose import JWTError, jwt

from core.config import get_settings

logger = structlog.get_logger()

_JWKS_CACHE: dict[str, tuple[float, dict]] = {}


def create_access_token(user_id: str, email: str, role: str = "client", expires_delta: timedelta | None = None) -> str:
    """Issue a local HS256 token carrying sub/email/role."""
    settings = get_settings()
    claims = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "exp": datetime.utcnow() + (expires_delta or timedelta(hours=24)),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_job_token(candidate: str | None) -> bool:
    """Constant-time comparison against the configured callback token."""
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), get_settings().job_callback_token.encode())


def _is_local_env() -> bool:
    return get_settings().app_env.strip().lower() in {"", "local", "dev", "development", "test"}


def _auth0_issuer() -> str:
    settings = get_settings()
    if settings.auth0_issuer:
        return settings.auth0_issuer.rstrip("/")
    domain = settings.auth0_domain.strip()
    if not domain:
        return ""
    if not domain.startswith(("http://", "https://")):
        domain = f"https://{domain}"
    return domain.rstrip("/")


def _fetch_jwks(issuer: str) -> dict | None:
    ttl = max(60, int(get_settings().auth0_jwks_cache_ttl_seconds))
    now = time.time()
    cached = _JWKS_CACHE.get(issuer)
    if cached and cached[0] > now:
        return cached[1]

    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(f"{issuer}/.well-known/jwks.json")
            response.raise_for_status()
        keys = response.json()
    except (httpx.HTTPError, ValueError):
        logger.warning("auth.jwks_unavailable", issuer=issuer, exc_info=True)
        return None

    if not isinstance(keys, dict) or not isinstance(keys.get("keys"), list):
        return None
    _JWKS_CACHE[issuer] = (now + ttl, keys)
    return keys


def _decode_auth0(token: str) -> dict | None:
    issuer = _auth0_issuer()
    audience = get_settings().auth0_audience
    if not issuer or not audience:
        return None

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError:
        return None
    if not kid:
        return None

    jwks = _fetch_jwks(issuer)
    key = next((k for k in (jwks or {}).get("keys", []) if k.get("kid") == kid), None)
    if key is None:
        return None

    try:
        return jwt.decode(token, key, algorithms=["RS256"], audience=audience, issuer=issuer)
    except JWTError:
        return None


def decode_access_token(token: str) -> dict | None:
    """Auth0 (JWKS) first; local HS256 only when Auth0 is not configured or in local envs."""
    settings = get_settings()

    payload = _decode_auth0(token)
    if payload is not None:
        return payload

    if settings.auth0_domain and settings.auth0_audience and not _is_local_env():
        return None

    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
