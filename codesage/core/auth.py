"""
Auth utilities for the CodeSage API.

Validates HS256 JWTs signed with AUTH_JWT_SECRET and resolves the caller's
profile. The X-User-Id header is accepted instead of a token only outside
production and, once a JWT secret is configured, only in the test environment.
"""
from fastapi import Depends, Header, Request
from typing import Optional
import jwt
import logging

from codesage.core.config import settings
from codesage.core.errors import AuthenticationError, PermissionError
from codesage.features.auth.service import ClientContext
from codesage.models.user import AuthenticatedUser

logger = logging.getLogger(__name__)


def verify_jwt(token: str) -> Optional[dict]:
    """
    Verify a JWT and return its claims.

    Returns None when no secret is configured (verification disabled).

    Raises:
        AuthenticationError: Invalid or expired token
    """
    if not settings.AUTH_JWT_SECRET:
        logger.debug("No AUTH_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token")

    if not payload.get("sub"):
        raise AuthenticationError("Invalid token")
    return payload


def header_identity_allowed() -> bool:
    """
    May a bare X-User-Id header identify the caller?

    Never in production. Once AUTH_JWT_SECRET is set only the test
    environment may skip the token.
    """
    env = (settings.ENV or "").lower()
    if env == "production":
        return False
    if settings.AUTH_JWT_SECRET:
        return env == "test"
    return True


def _load_profile(user_id: str, email: Optional[str]) -> AuthenticatedUser:
    from codesage.features.limiter.server import ensure_profile

    try:
        return ensure_profile(user_id, email=email)
    except Exception as e:
        # Don't block auth if the profile store is unreachable
        logger.warning(f"Failed to load profile for {user_id}: {e}")
        return AuthenticatedUser(id=user_id, email=email)


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Trusted caller / test user ID"),
) -> AuthenticatedUser:
    """
    Resolve the authenticated caller.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header, only where header_identity_allowed()
    3. 401 Unauthorized
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        claims = verify_jwt(auth_header[7:])
        if claims:
            user = _load_profile(claims["sub"], claims.get("email"))
            request.state.user_id = user.id
            return user

    if x_user_id and header_identity_allowed():
        user = _load_profile(x_user_id, None)
        request.state.user_id = user.id
        return user

    raise AuthenticationError("Missing Authorization (Bearer JWT) or X-User-Id header")


async def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    if not user.is_admin:
        raise PermissionError("Admin access required")
    return user


def get_client_context(request: Request) -> ClientContext:
    """Best-effort client address (first X-Forwarded-For hop) and user agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip() or None
    else:
        ip = request.client.host if request.client else None
    return ClientContext(ip=ip, user_agent=request.headers.get("user-agent"))
