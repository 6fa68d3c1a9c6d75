from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker


def _connect_args(db_url: str) -> dict:
    if db_url.startswith("sqlite"):
        # Request threads share the pool; SQLite waits on the write lock instead of failing fast.
        return {"check_same_thread": False, "timeout": 30}
    return {}


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def build_engine(db_url: str):
    engine = create_engine(
        db_url,
        pool_pre_ping=True,
        future=True,
        connect_args=_connect_args(db_url),
    )
    if db_url.startswith("sqlite"):
        # SQLite leaves foreign keys unenforced unless every connection asks.
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
