"""Database connection and session management."""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config.settings import settings
from db.models import Base


def make_engine(database_url: str, production: bool = False) -> Engine:
    """Create an engine for the given URL."""
    if production:
        # Production: PostgreSQL
        return create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
        )
    # Development: SQLite. Writes are dispatched to worker threads.
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Create engine based on environment
engine = make_engine(settings.database_url, production=settings.environment == "production")

# Session factory
SessionLocal = make_session_factory(engine)


def init_db(bind: Engine = None) -> None:
    """Initialize database tables."""
    # Ensure data directory exists for SQLite
    if bind is None and "sqlite" in settings.database_url:
        settings.data_dir.mkdir(parents=True, exist_ok=True)

    # Create all tables
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database session.

    Usage:
        @router.get("/health/db")
        def database_health(db: Session = Depends(get_db)):
            db.execute(text("SELECT 1"))
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
