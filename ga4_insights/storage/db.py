from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base

from ga4_insights.config import DATABASE_URL

# ---------------------------------------------------------------------------
# Database configuration
# ---------------------------------------------------------------------------

# ``check_same_thread`` must be disabled for SQLite to allow usage from FastAPI
# worker threads and background tasks.
_engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    echo=False,
)

# Thread-local session factory. ``expire_on_commit`` is off so rows returned
# by the CRUD helpers stay readable after their session is closed.
SessionLocal = scoped_session(
    sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=_engine)
)

# Declarative base class that the ORM models should inherit from.
Base = declarative_base()

# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def init_db() -> None:
    """Create tables if they do not yet exist.

    Importing ``ga4_insights.storage.models`` registers all subclasses with the
    Base metadata, after which ``metadata.create_all`` will build the schema.
    """
    # The models import needs to stay **inside** the function to avoid circular
    # imports when other modules use ``SessionLocal`` early during start-up.
    from . import models  # noqa: F401  (side-effect import)

    Base.metadata.create_all(bind=_engine)


def drop_db() -> None:
    """Drop every table (used by the seed script's ``--reset`` and by tests)."""
    from . import models  # noqa: F401

    SessionLocal.remove()
    Base.metadata.drop_all(bind=_engine)
