from .catalog import PlanCatalog, ensure_default_plans
from .router import router

__all__ = ["PlanCatalog", "ensure_default_plans", "router"]
