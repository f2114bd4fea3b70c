"""
Persisted subscription snapshot.

Envelope written under the namespace key:

    {"state": {"subscription": {...}}, "version": 0}

expires_at travels as an ISO-8601 string and is read back as a datetime;
the plan price travels as a string and is read back as a Decimal. A missing
or unreadable snapshot loads as a fresh free-tier subscription.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from codesage.core.config import settings
from codesage.features.persistence.storage import KeyValueStorage
from codesage.features.plans.catalog import find_plan
from codesage.models.subscription import Subscription

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 0


def encode_subscription(subscription: Subscription) -> Dict[str, Any]:
    data = subscription.model_dump(mode="json")
    # Explicit conversion so the on-disk format does not depend on pydantic's defaults
    data["expires_at"] = subscription.expires_at.isoformat() if subscription.expires_at else None
    return data


def decode_subscription(data: Dict[str, Any]) -> Subscription:
    raw = dict(data)
    expires_at = raw.get("expires_at")
    if isinstance(expires_at, str):
        raw["expires_at"] = datetime.fromisoformat(expires_at)
    subscription = Subscription.model_validate(raw)

    # Re-point at the catalog entry so the subscription references, not copies, the plan
    if subscription.plan is not None:
        catalog_plan = find_plan(subscription.plan.id)
        if catalog_plan is not None:
            subscription = subscription.model_copy(update={"plan": catalog_plan})
    return subscription


class SubscriptionSnapshotStore:
    def __init__(
        self,
        storage: KeyValueStorage,
        namespace: Optional[str] = None,
        scope: Optional[str] = None,
    ):
        self.storage = storage
        self.namespace = namespace or settings.SNAPSHOT_NAMESPACE
        self.scope = scope

    @property
    def key(self) -> str:
        return f"{self.namespace}:{self.scope}" if self.scope else self.namespace

    def save(self, subscription: Subscription) -> None:
        envelope = {
            "state": {"subscription": encode_subscription(subscription)},
            "version": SNAPSHOT_VERSION,
        }
        self.storage.set_item(self.key, json.dumps(envelope))

    def load(self) -> Subscription:
        try:
            raw = self.storage.get_item(self.key)
        except Exception as exc:
            logger.warning(f"Snapshot read failed for {self.key}: {exc}")
            return Subscription()

        if not raw:
            return Subscription()

        try:
            envelope = json.loads(raw)
            data = envelope["state"]["subscription"]
            return decode_subscription(data)
        except (ValueError, KeyError, TypeError, PydanticValidationError) as exc:
            logger.warning(f"Discarding malformed snapshot {self.key}: {exc}")
            return Subscription()

    def clear(self) -> None:
        self.storage.remove_item(self.key)
