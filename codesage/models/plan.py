"""
codesage/models/plan.py

Plan model for the subscription catalog.

Plans are immutable catalog entries; a subscription references the chosen one.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    SEMESTER = "semester"


class Plan(BaseModel):
    """
    Plan represents a purchasable tier.

    Examples:
    - pro-monthly
    - pro-yearly
    - student (semester)

    The feature list is display copy only; entitlement logic never reads it.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: Decimal
    billing_cycle: BillingCycle
    features: Tuple[str, ...] = ()
    popular: bool = False
    savings: Optional[str] = None
