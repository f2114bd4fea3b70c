"""
codesage/features/auth/service.py

Authentication operations with a security audit trail.

The identity provider is an external collaborator; this service only wraps
its calls and writes one security event per state change. Audit writes are
best effort and never change the outcome of the operation.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from codesage.core.errors import AuthenticationError, AuthRateLimitedError
from codesage.features.audit.service import record_security_event
from codesage.models.security_event import SecurityEventType


logger = logging.getLogger(__name__)

EMAIL_RATE_LIMIT_MARKER = "over_email_send_rate_limit"
_WAIT_SECONDS = re.compile(r"after (\d+) seconds?")


class IdentityProvider:
    """Boundary of the external auth backend.

    sign_in returns the provider's user id and raises on bad credentials.
    """

    async def sign_in(self, email: str, password: str) -> str:
        raise NotImplementedError

    async def sign_out(self, user_id: str) -> None:
        raise NotImplementedError

    async def request_password_reset(self, email: str, redirect_to: Optional[str] = None) -> None:
        raise NotImplementedError

    async def update_password(self, user_id: str, new_password: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class ClientContext:
    """Best-effort network address and agent of the caller."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None


def parse_rate_limit_wait(message: str) -> Optional[int]:
    """Seconds to wait from a provider message like '... after 42 seconds'."""
    match = _WAIT_SECONDS.search(message or "")
    return int(match.group(1)) if match else None


def _raise_for_rate_limit(exc: Exception) -> None:
    message = str(exc)
    if EMAIL_RATE_LIMIT_MARKER not in message:
        return
    wait = parse_rate_limit_wait(message)
    if wait:
        raise AuthRateLimitedError(
            f"Too many email requests. Please wait {wait} seconds before trying again.",
            retry_after=wait,
        ) from exc
    raise AuthRateLimitedError(
        "Too many email requests. Please wait a moment before trying again."
    ) from exc


class AuthService:
    def __init__(self, provider: IdentityProvider, reset_redirect_url: Optional[str] = None):
        self.provider = provider
        self.reset_redirect_url = reset_redirect_url

    def _audit(self, user_id: Optional[str], event_type: SecurityEventType, description: str, context: Optional[ClientContext]) -> None:
        if not user_id:
            logger.debug("Security event skipped: no user identity", extra={"event_type": event_type.value})
            return
        ctx = context or ClientContext()
        record_security_event(
            user_id=user_id,
            event_type=event_type,
            description=description,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
        )

    async def sign_in(self, email: str, password: str, context: Optional[ClientContext] = None) -> str:
        """
        Sign in and return the user id.

        A failed attempt is recorded against the email's identity and the
        provider error is re-raised as AuthenticationError.
        """
        try:
            user_id = await self.provider.sign_in(email, password)
        except Exception as exc:
            logger.warning("Sign in failed", extra={"error_message": str(exc)})
            self._audit(email, SecurityEventType.LOGIN_FAILED, f"Failed login attempt: {exc}", context)
            raise AuthenticationError(f"Sign in failed: {exc}") from exc

        self._audit(user_id, SecurityEventType.LOGIN_SUCCESS, "User signed in successfully", context)
        return user_id

    async def sign_out(self, user_id: str, context: Optional[ClientContext] = None) -> None:
        # Recorded before the provider drops the session, while the identity is still valid
        self._audit(user_id, SecurityEventType.LOGOUT, "User signed out", context)
        await self.provider.sign_out(user_id)

    async def request_password_reset(self, email: str, user_id: Optional[str] = None, context: Optional[ClientContext] = None) -> None:
        try:
            await self.provider.request_password_reset(email, self.reset_redirect_url)
        except Exception as exc:
            _raise_for_rate_limit(exc)
            raise

        self._audit(user_id or email, SecurityEventType.PASSWORD_RESET_REQUESTED, "Password reset requested", context)

    async def update_password(self, user_id: str, new_password: str, context: Optional[ClientContext] = None) -> None:
        await self.provider.update_password(user_id, new_password)
        self._audit(user_id, SecurityEventType.PASSWORD_RESET_COMPLETED, "Password successfully updated", context)


class NullIdentityProvider(IdentityProvider):
    """Provider used when no backend is wired; every call fails."""

    async def sign_in(self, email: str, password: str) -> str:
        raise AuthenticationError("No identity provider configured")

    async def sign_out(self, user_id: str) -> None:
        raise AuthenticationError("No identity provider configured")

    async def request_password_reset(self, email: str, redirect_to: Optional[str] = None) -> None:
        raise AuthenticationError("No identity provider configured")

    async def update_password(self, user_id: str, new_password: str) -> Any:
        raise AuthenticationError("No identity provider configured")
