# storefront/data/database.py
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from storefront.utils.settings import DATABASE_URL, DB_POOL_TIMEOUT, DB_STATEMENT_TIMEOUT_MS


class Base(DeclarativeBase):
    pass


def build_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    """Engine with every statement bounded by DB_STATEMENT_TIMEOUT_MS."""
    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            # busy timeout in seconds
            "timeout": DB_STATEMENT_TIMEOUT_MS / 1000,
        }
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    connect_args = {"options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"}
    return create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_timeout=DB_POOL_TIMEOUT,
        **kwargs,
    )


engine = build_engine()

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = engine) -> None:
    # import modeli, zeby zarejestrowac tabele w Base.metadata
    import storefront.data.models  # noqa: F401

    Base.metadata.create_all(bind=bind)
