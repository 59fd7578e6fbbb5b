import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DATABASE_URL, SQL_ECHO

logger = logging.getLogger(__name__)

Base = declarative_base()


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    return kwargs


def build_engine(url: str = DATABASE_URL):
    return create_engine(url, echo=SQL_ECHO, **_engine_kwargs(url))


def make_session_factory(url: str = DATABASE_URL, create_tables: bool = True) -> sessionmaker:
    """
    Build an engine and a session factory bound to it.

    Used by tests (``sqlite://``) and by anything that needs a store isolated
    from the module-level one.
    """
    engine = build_engine(url)
    if create_tables:
        init_db(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = build_engine()

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
)


def init_db(bind=None):
    """
    Create all database tables
    """
    # registers the mapped classes on Base.metadata
    from . import tables  # noqa: F401

    bind = bind or engine
    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=bind)
        logger.info("Database tables ready")
    except Exception:
        logger.error("Failed to create database tables", exc_info=True)
        raise


def check_db_connection(bind=None) -> bool:
    try:
        with (bind or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
