from collections.abc import Iterator
import logging
import threading

from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool
from sqlmodel import Session, SQLModel, create_engine

from burnlink.config import DB_CONNECT_ARGS, DB_URL

logger = logging.getLogger("burnlink.db")

_engine: Engine | None = None
_engine_lock = threading.Lock()


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = create_engine(
                    DB_URL,
                    connect_args=DB_CONNECT_ARGS,
                    poolclass=QueuePool,
                    pool_size=5,
                    max_overflow=10,
                    pool_pre_ping=True,  # Verify connections before use
                    pool_recycle=3600,   # Recycle connections after 1 hour
                    echo=False,
                )
                logger.info("event=engine_initialized url=%s", _engine.url.render_as_string(hide_password=True))
    return _engine


def init_db() -> None:
    # Import for side effect: registers the tables on SQLModel.metadata
    import burnlink.models  # noqa: F401

    SQLModel.metadata.create_all(get_engine())


def dispose_engine() -> None:
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None


def get_session() -> Iterator[Session]:
    with Session(get_engine()) as session:
        yield session
