from .router import router
from .service import EarningsService

__all__ = ["EarningsService", "router"]
