"""Plan router - Read-only plan catalog endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .catalog import PlanCatalog
from .schemas import UNLIMITED, PlanResponse, PriceQuoteResponse

router = APIRouter(prefix="/plans", tags=["Plans"])


def get_plan_catalog(db: Session = Depends(get_db)) -> PlanCatalog:
    """Dependency injection for PlanCatalog"""
    return PlanCatalog(db)


@router.get("", response_model=list[PlanResponse])
async def list_plans(catalog: PlanCatalog = Depends(get_plan_catalog)):
    """List catalog plans"""
    return [
        PlanResponse(
            name=p.name,
            display_name=p.display_name,
            price=p.price,
            emergency_quota=UNLIMITED if p.has_unlimited_emergencies else p.emergency_quota,
            specialist_discount_pct=p.specialist_discount_pct,
        )
        for p in catalog.list_plans()
    ]


@router.get("/quote", response_model=PriceQuoteResponse)
async def quote_price(
    base_price: int = Query(..., ge=0),
    plan: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Quote a specialist consultation price with the plan discount applied"""
    plan_name = plan or current_user.plan
    final_price, discount = catalog.quote_consultation_price(base_price, plan_name)
    return PriceQuoteResponse(
        plan=catalog.get_plan(plan_name).name,
        base_price=base_price,
        discount_percentage=discount,
        final_price=final_price,
    )
