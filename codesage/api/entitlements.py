"""
Entitlement API routes.

- GET  /v1/plans: Plan catalog
- GET  /v1/subscription: Current subscription + per-feature entitlements
- POST /v1/subscription/subscribe: Activate a plan (no payment step)
- POST /v1/subscription/cancel: Return to the free tier
- POST /v1/subscription/reconcile: Pull authoritative counters into the local snapshot
- POST /v1/usage/{feature}/admit: Local + authoritative admission decision
- POST /v1/usage/{feature}/consume: Admit + account, 403/503 when denied
- POST /v1/usage/{feature}/complete: Account for a successful action
"""
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from codesage.core.auth import get_current_user
from codesage.core.errors import ValidationError
from codesage.features.persistence.snapshot import SubscriptionSnapshotStore, encode_subscription
from codesage.features.plans.catalog import get_plan, list_plans
from codesage.features.session.context import EntitlementSession
from codesage.features.usage.limits import as_metered_feature
from codesage.models.user import AuthenticatedUser

router = APIRouter(prefix="/v1", tags=["entitlements"])


class SubscribeRequest(BaseModel):
    plan_id: str


class SubscriptionResponse(BaseModel):
    user_id: str
    subscription: Dict[str, Any]
    entitlements: Dict[str, Dict[str, Any]]


class AdmissionResponse(BaseModel):
    feature: str
    allowed: bool
    status: str
    local_allowed: bool
    remote_allowed: Optional[bool]
    remaining: Union[int, str]


async def get_entitlement_session(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AsyncGenerator[EntitlementSession, None]:
    """One session per request: opened from the user's snapshot, closed (and drained) after."""
    state = request.app.state
    session = EntitlementSession(
        user.id,
        store=SubscriptionSnapshotStore(state.snapshot_storage, scope=user.id),
        limiter=state.limiter,
    )
    session.open()
    try:
        yield session
    finally:
        await session.close()


def _require_metered(feature: str):
    metered = as_metered_feature(feature)
    if metered is None:
        raise ValidationError(f"Unknown metered feature: {feature}")
    return metered


def _subscription_response(session: EntitlementSession) -> Dict[str, Any]:
    return {
        "user_id": session.user_id,
        "subscription": encode_subscription(session.subscription),
        "entitlements": session.summary(),
    }


@router.get("/plans")
async def get_plans() -> List[Dict[str, Any]]:
    return [plan.model_dump(mode="json") for plan in list_plans()]


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(session: EntitlementSession = Depends(get_entitlement_session)):
    return _subscription_response(session)


@router.post("/subscription/subscribe", response_model=SubscriptionResponse)
async def subscribe(
    body: SubscribeRequest,
    session: EntitlementSession = Depends(get_entitlement_session),
):
    """
    Activate a catalog plan.

    Errors:
        404: Unknown plan_id
    """
    plan = get_plan(body.plan_id)
    session.subscribe(plan)
    return _subscription_response(session)


@router.post("/subscription/cancel", response_model=SubscriptionResponse)
async def cancel(session: EntitlementSession = Depends(get_entitlement_session)):
    session.cancel()
    return _subscription_response(session)


@router.post("/subscription/reconcile", response_model=SubscriptionResponse)
async def reconcile(session: EntitlementSession = Depends(get_entitlement_session)):
    await session.reconcile()
    return _subscription_response(session)


@router.post("/usage/{feature}/admit", response_model=AdmissionResponse)
async def admit(feature: str, session: EntitlementSession = Depends(get_entitlement_session)):
    """
    Decide whether feature may run now.

    Always 200; the status field tells "over quota" apart from "limiter
    unavailable" (both deny).
    """
    _require_metered(feature)
    decision = await session.admit(feature)
    return {
        "feature": decision.feature,
        "allowed": decision.allowed,
        "status": decision.status.value,
        "local_allowed": decision.local_allowed,
        "remote_allowed": decision.remote_allowed,
        "remaining": decision.remaining,
    }


@router.post("/usage/{feature}/consume", response_model=SubscriptionResponse)
async def consume(feature: str, session: EntitlementSession = Depends(get_entitlement_session)):
    """
    Admit and account in one call.

    Errors:
        403: Daily limit reached (quota_exceeded)
        503: Limiter unavailable (limiter_unavailable)
    """
    _require_metered(feature)
    await session.consume(feature)
    return _subscription_response(session)


@router.post("/usage/{feature}/complete", response_model=SubscriptionResponse)
async def complete(feature: str, session: EntitlementSession = Depends(get_entitlement_session)):
    _require_metered(feature)
    await session.complete(feature)
    return _subscription_response(session)
