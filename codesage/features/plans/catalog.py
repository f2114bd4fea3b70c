"""
codesage/features/plans/catalog.py

Static plan catalog.

Handles:
- Catalog definition (pro-monthly, pro-yearly, student)
- Plan lookup by id

The catalog is versioned configuration shipped with the build; it is not
editable at runtime.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from codesage.core.errors import NotFoundError
from codesage.models.plan import BillingCycle, Plan


CATALOG_VERSION = 1

DEFAULT_PLANS = {
    "pro-monthly": {
        "name": "Pro Monthly",
        "price": "9.99",
        "billing_cycle": BillingCycle.MONTHLY,
        "features": [
            "Unlimited code analysis",
            "AI video explanations",
            "Voice narration",
            "Mermaid/D2 flowchart generation",
            "Downloadable MP4 explanations",
            "Multiple AI presenters",
            "10x faster AI processing",
            "Premium challenges & roadmaps",
            "Export flowcharts (SVG, PNG, PDF)",
            "Multi-language narration",
            "Pro badge & leaderboard boost",
            "Priority support",
        ],
    },
    "pro-yearly": {
        "name": "Pro Yearly",
        "price": "99.00",
        "billing_cycle": BillingCycle.YEARLY,
        "savings": "Save 17%",
        "popular": True,
        "features": [
            "Everything in Pro Monthly",
            "Custom AI avatar creation",
            "Advanced analytics dashboard",
            "Team collaboration features",
            "API access for integrations",
            "White-label solutions",
            "Dedicated account manager",
        ],
    },
    "student": {
        "name": "Student Plan",
        "price": "29.00",
        "billing_cycle": BillingCycle.SEMESTER,
        "features": [
            "All Pro features for 6 months",
            "Student verification required",
            "Educational institution discount",
            "Study group collaboration",
            "Academic project templates",
            "Career guidance resources",
        ],
    },
}


def _build_catalog() -> Dict[str, Plan]:
    catalog = {}
    for plan_id, config in DEFAULT_PLANS.items():
        catalog[plan_id] = Plan(
            id=plan_id,
            name=config["name"],
            price=Decimal(config["price"]),
            billing_cycle=config["billing_cycle"],
            features=tuple(config["features"]),
            popular=config.get("popular", False),
            savings=config.get("savings"),
        )
    return catalog


_CATALOG: Dict[str, Plan] = _build_catalog()


def list_plans() -> List[Plan]:
    """All plans in display order."""
    return list(_CATALOG.values())


def find_plan(plan_id: str) -> Optional[Plan]:
    """Catalog entry for plan_id, or None."""
    return _CATALOG.get(plan_id)


def get_plan(plan_id: str) -> Plan:
    """
    Catalog entry for plan_id.

    Raises:
        NotFoundError: If plan_id is not in the catalog
    """
    plan = _CATALOG.get(plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    return plan
