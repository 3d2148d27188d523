import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./telecare.db")

# Connection pool (ignored for SQLite)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
# Seconds before a statement is logged as slow; 0 disables the hook
DB_SLOW_QUERY_SECONDS = float(os.getenv("DB_SLOW_QUERY_SECONDS", "0.5"))

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Payment gateway (Stripe-compatible PaymentIntents API with manual capture)
PAYMENT_GATEWAY_API_KEY = os.getenv("PAYMENT_GATEWAY_API_KEY")
PAYMENT_GATEWAY_URL = os.getenv("PAYMENT_GATEWAY_URL", "https://api.stripe.com/v1")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "brl")
# Seconds before a gateway call is treated as an unknown outcome
PAYMENT_GATEWAY_TIMEOUT = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", "15"))

# Daily.co video rooms
DAILY_API_KEY = os.getenv("DAILY_API_KEY")
DAILY_API_URL = os.getenv("DAILY_API_URL", "https://api.daily.co/v1")
DAILY_ROOM_EXPIRY_MINUTES = int(os.getenv("DAILY_ROOM_EXPIRY_MINUTES", "60"))

# Consultation pricing, all amounts in minor currency units (cents)
EMERGENCY_CONSULTATION_PRICE = int(os.getenv("EMERGENCY_CONSULTATION_PRICE", "9900"))
EMERGENCY_DOCTOR_FEE = int(os.getenv("EMERGENCY_DOCTOR_FEE", "5000"))
EMERGENCY_MIN_BILLABLE_MINUTES = int(os.getenv("EMERGENCY_MIN_BILLABLE_MINUTES", "5"))
EMERGENCY_CONSULTATION_DURATION = int(os.getenv("EMERGENCY_CONSULTATION_DURATION", "30"))

# Emergency quota cycle length (days from subscription start)
QUOTA_CYCLE_DAYS = int(os.getenv("QUOTA_CYCLE_DAYS", "30"))

# Minutes after the scheduled end before an unstarted consultation is expired
STALE_APPOINTMENT_GRACE_MINUTES = int(os.getenv("STALE_APPOINTMENT_GRACE_MINUTES", "60"))

# Frontend base URL for links in notifications
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
