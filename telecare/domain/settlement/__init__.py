from .router import router
from .service import SettlementService

__all__ = ["SettlementService", "router"]
