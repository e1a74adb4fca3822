from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from circulation.core import config

Base = declarative_base()


def make_engine(url=None):
    """
    Build an engine for ``url`` (defaults to CIRCULATION_DB).

    SQLite gets three connection tweaks: foreign keys are enforced, pysqlite's
    own BEGIN handling is switched off so savepoints work, and every
    transaction starts with BEGIN IMMEDIATE so the write lock is held from the
    first statement until commit.
    """
    url = url or config.DATABASE_URL
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": config.SQLITE_TIMEOUT})

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


engine = make_engine()
SessionLocal = make_session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
