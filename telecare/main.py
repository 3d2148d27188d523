import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_appointment,  # noqa: F401
    models_earnings,  # noqa: F401
    models_notification,  # noqa: F401
)
from .config import FRONTEND_URL
from .database import Base, SessionLocal, engine
from .domain.appointments.router import emergency_router
from .domain.appointments.router import router as appointments_router
from .domain.earnings import router as earnings_router
from .domain.plans import ensure_default_plans
from .domain.plans import router as plans_router
from .domain.quota import router as quota_router
from .domain.settlement import router as settlement_router
from .errors import register_exception_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info("Database tables created successfully")

    db = SessionLocal()
    try:
        created = ensure_default_plans(db)
        if created:
            logger.info(f"Seeded {created} subscription plans")
    finally:
        db.close()

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Telecare Settlement API", version="1.0.0", lifespan=lifespan)

register_exception_handlers(app)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(f"Authentication failed for {request.url.path}: missing Authorization header")
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(plans_router)
app.include_router(quota_router)
app.include_router(appointments_router)
app.include_router(settlement_router)
app.include_router(emergency_router)
app.include_router(earnings_router)


@app.get("/health")
def health():
    return {"status": "healthy"}
