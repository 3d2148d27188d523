from .router import router
from .tracker import QuotaTracker

__all__ = ["QuotaTracker", "router"]
