"""Engine, session factory and the FastAPI session dependency"""

import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import (
    DATABASE_URL,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_SLOW_QUERY_SECONDS,
)

logger = logging.getLogger(__name__)


def build_engine(url: str):
    """Pooled engine for server databases; SQLite only needs cross-thread access"""
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        return create_engine(url, connect_args={"check_same_thread": False})
    engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=DB_POOL_RECYCLE,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_timeout=DB_POOL_TIMEOUT,
    )
    logger.info(f"📊 {backend} pool: size={DB_POOL_SIZE}, overflow={DB_MAX_OVERFLOW}")
    return engine


def watch_slow_queries(engine, threshold: float) -> None:
    """Log statements slower than `threshold` seconds"""

    @event.listens_for(engine, "before_cursor_execute")
    def _start(conn, _cursor, _statement, _parameters, _context, _executemany):
        conn.info.setdefault("statement_started", []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _finish(conn, _cursor, statement, _parameters, _context, _executemany):
        elapsed = time.perf_counter() - conn.info["statement_started"].pop()
        if elapsed > threshold:
            logger.warning(f"🐌 Slow statement ({elapsed:.2f}s): {statement[:200]}")


try:
    engine = build_engine(DATABASE_URL)
except Exception as e:
    logger.error(f"❌ Failed to create database engine: {e}")
    raise

if DB_SLOW_QUERY_SECONDS > 0:
    watch_slow_queries(engine, DB_SLOW_QUERY_SECONDS)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
