from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from docshare.config import settings
from docshare.logging import get_logger

logger = get_logger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
    "PRAGMA cache_size=-20000;",
    "PRAGMA wal_autocheckpoint=2000;",
)

Base = declarative_base()


def apply_sqlite_pragmas(dbapi_connection, connection_record=None):
    cursor = dbapi_connection.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            try:
                cursor.execute(pragma)
            except Exception as exc:  # driver-specific error types
                logger.warning("SQLite PRAGMA failed (%s): %s", pragma, exc)
    finally:
        cursor.close()


def build_engine(database_url: str, **kwargs) -> Engine:
    url = make_url(database_url)
    connect_args = kwargs.pop("connect_args", {})
    is_sqlite = url.get_backend_name() == "sqlite"
    if is_sqlite:
        connect_args.setdefault("check_same_thread", False)
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        database_url,
        echo=settings.SQL_LOG_MODE.lower() == "info",
        connect_args=connect_args,
        **kwargs,
    )
    if is_sqlite:
        event.listen(engine, "connect", apply_sqlite_pragmas)
    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None) -> None:
    # Importing models registers their tables on Base.metadata.
    from docshare import models  # noqa: F401

    target = bind or engine
    try:
        Base.metadata.create_all(bind=target)
    except SQLAlchemyError:
        logger.exception("Failed to initialize database at %s", target.url)
        raise
    logger.info("Database initialized successfully")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
