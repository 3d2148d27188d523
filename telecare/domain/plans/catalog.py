"""Plan catalog - Emergency quotas and specialist discounts per subscription plan"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...models import SubscriptionPlan
from .repository import PlanRepository
from .schemas import UNLIMITED, PlanInfo

logger = logging.getLogger(__name__)

FREE_PLAN = "free"
FAMILY_SUFFIX = "_family"

# Catalog defaults, seeded into subscription_plans on startup
DEFAULT_PLANS = {
    "free": {
        "display_name": "Free",
        "price": 0,
        "emergency_consultations": "0",
        "specialist_discount": 0,
        "features": "Marketplace access;Full consultation price",
    },
    "basic": {
        "display_name": "Basic",
        "price": 10000,
        "emergency_consultations": "2",
        "specialist_discount": 30,
        "features": "2 emergency consultations per month;30% specialist discount",
        "is_default": True,
    },
    "premium": {
        "display_name": "Premium",
        "price": 13900,
        "emergency_consultations": UNLIMITED,
        "specialist_discount": 50,
        "features": "Unlimited emergency consultations;50% specialist discount",
    },
    "ultra": {
        "display_name": "Ultra",
        "price": 16900,
        "emergency_consultations": UNLIMITED,
        "specialist_discount": 70,
        "features": "Unlimited emergency consultations;70% specialist discount",
    },
}


def base_plan_name(plan: Optional[str]) -> str:
    """Family variants share their base plan's entitlements"""
    if not plan or not plan.strip():
        return FREE_PLAN
    name = plan.strip().lower()
    if name.endswith(FAMILY_SUFFIX):
        name = name[: -len(FAMILY_SUFFIX)]
    return name


def parse_emergency_quota(value: str) -> Optional[int]:
    """'unlimited' -> None, numeric text -> int"""
    if value is None or str(value).strip().lower() == UNLIMITED:
        return None
    return max(0, int(value))


def apply_discount(amount: int, discount_pct: int) -> int:
    """Discounted amount in cents, rounded half-up"""
    factor = Decimal(100 - discount_pct) / Decimal(100)
    return int((Decimal(amount) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _to_plan_info(row: SubscriptionPlan) -> PlanInfo:
    return PlanInfo(
        name=row.name,
        display_name=row.display_name,
        price=row.price,
        emergency_quota=parse_emergency_quota(row.emergency_consultations),
        specialist_discount_pct=row.specialist_discount,
    )


class PlanCatalog:
    """Read-only plan lookups for the settlement engine"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PlanRepository()

    def get_plan(self, name: Optional[str]) -> PlanInfo:
        """Resolve a plan by name; unknown or missing plans get free-plan entitlements"""
        requested = (name or FREE_PLAN).strip().lower()
        row = self.repo.get_plan_by_name(self.db, requested)
        if row is None and requested != base_plan_name(requested):
            row = self.repo.get_plan_by_name(self.db, base_plan_name(requested))
        if row is not None:
            return _to_plan_info(row)

        base = base_plan_name(requested)
        defaults = DEFAULT_PLANS.get(base)
        if defaults is None:
            logger.warning(f"⚠️ Unknown plan '{name}', applying free plan entitlements")
            base, defaults = FREE_PLAN, DEFAULT_PLANS[FREE_PLAN]
        return PlanInfo(
            name=base,
            display_name=defaults["display_name"],
            price=defaults["price"],
            emergency_quota=parse_emergency_quota(defaults["emergency_consultations"]),
            specialist_discount_pct=defaults["specialist_discount"],
        )

    def list_plans(self) -> list[PlanInfo]:
        return [_to_plan_info(row) for row in self.repo.list_plans(self.db)]

    def quote_consultation_price(self, base_price: int, plan: Optional[str]) -> tuple[int, int]:
        """Price the patient pays for a specialist consultation. Returns (final_price, discount_pct)"""
        discount = self.get_plan(plan).specialist_discount_pct
        return apply_discount(base_price, discount), discount


def ensure_default_plans(db: Session) -> int:
    """Seed the catalog with default plans that are missing. Returns number created."""
    repo = PlanRepository()
    created = 0
    for name, data in DEFAULT_PLANS.items():
        if repo.get_plan_by_name(db, name):
            continue
        repo.create_plan(
            db,
            name=name,
            display_name=data["display_name"],
            price=data["price"],
            emergency_consultations=data["emergency_consultations"],
            specialist_discount=data["specialist_discount"],
            features=data.get("features"),
            is_default=data.get("is_default", False),
        )
        created += 1
        logger.info(f"✅ Plan '{name}' created")
    return created
