"""Plan repository - Database operations for the plan catalog"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import SubscriptionPlan


class PlanRepository:
    """Repository for subscription plan rows"""

    @staticmethod
    def get_plan_by_name(db: Session, name: str) -> Optional[SubscriptionPlan]:
        return db.query(SubscriptionPlan).filter(SubscriptionPlan.name == name).first()

    @staticmethod
    def list_plans(db: Session) -> list[SubscriptionPlan]:
        return db.query(SubscriptionPlan).order_by(SubscriptionPlan.price.asc()).all()

    @staticmethod
    def create_plan(db: Session, **plan_data) -> SubscriptionPlan:
        plan = SubscriptionPlan(**plan_data)
        db.add(plan)
        db.commit()
        db.refresh(plan)
        return plan
