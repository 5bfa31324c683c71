"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from cemetery.config import get_settings

settings = get_settings()

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Ensure data directory exists for file-backed SQLite
if _is_sqlite and ":memory:" not in settings.DATABASE_URL:
    os.makedirs(os.path.dirname(settings.DATABASE_URL.replace("sqlite:///", "")), exist_ok=True)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},  # Required for SQLite
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """FastAPI dependency: the factory background tasks open their own sessions from."""
    return SessionLocal


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from cemetery.models import member as _member_model        # noqa: F401
    from cemetery.models import catalog as _catalog_model      # noqa: F401
    from cemetery.models import purchase as _purchase_model    # noqa: F401
    from cemetery.models import payment as _payment_model      # noqa: F401
    from cemetery.models import deceased as _deceased_model    # noqa: F401
    from cemetery.models import audit as _audit_model          # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
