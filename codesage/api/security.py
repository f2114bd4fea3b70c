"""
Auth and security-log routes.

- POST /v1/auth/sign-in
- POST /v1/auth/sign-out
- POST /v1/auth/password-reset
- POST /v1/auth/password
- GET  /v1/security/logs: caller's own 50 most recent security events
- GET  /v1/admin/users/{user_id}/security-logs: same view for any user (admin only)
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from codesage.core.auth import get_client_context, get_current_user, require_admin
from codesage.features.audit.service import get_security_logs
from codesage.models.user import AuthenticatedUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["security"])


class SignInRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordUpdateRequest(BaseModel):
    new_password: str


@router.post("/auth/sign-in")
async def sign_in(body: SignInRequest, request: Request):
    user_id = await request.app.state.auth_service.sign_in(
        body.email, body.password, get_client_context(request)
    )
    return {"ok": True, "user_id": user_id}


@router.post("/auth/sign-out")
async def sign_out(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    await request.app.state.auth_service.sign_out(user.id, get_client_context(request))
    return {"ok": True}


@router.post("/auth/password-reset")
async def request_password_reset(body: PasswordResetRequest, request: Request):
    # Caller is usually signed out here; the event is keyed by email when no identity is known
    user_id: Optional[str] = getattr(request.state, "user_id", None)
    await request.app.state.auth_service.request_password_reset(
        body.email, user_id=user_id, context=get_client_context(request)
    )
    return {"ok": True}


@router.post("/auth/password")
async def update_password(
    body: PasswordUpdateRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
):
    await request.app.state.auth_service.update_password(
        user.id, body.new_password, get_client_context(request)
    )
    return {"ok": True}


@router.get("/security/logs")
async def security_logs(user: AuthenticatedUser = Depends(get_current_user)) -> List[Dict[str, Any]]:
    return [event.model_dump(mode="json") for event in get_security_logs(user.id)]


@router.get("/admin/users/{user_id}/security-logs")
async def admin_security_logs(user_id: str, admin: AuthenticatedUser = Depends(require_admin)) -> List[Dict[str, Any]]:
    logger.info("[security] admin log view", extra={"user_id": admin.id, "target_user_id": user_id})
    return [event.model_dump(mode="json") for event in get_security_logs(user_id)]
