from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from .settings import settings

Base = declarative_base()

SQLITE_BUSY_TIMEOUT = 30


def create_db_engine(url: str, **kwargs):
    """Create an engine.

    SQLite gets an explicit ``BEGIN IMMEDIATE`` so SAVEPOINTs nest properly and
    writers queue on the database lock instead of failing with "database is
    locked" when two of them upgrade from a shared lock at once. SQLite has no
    row locks, so ``with_for_update`` is a no-op there and this is what keeps
    version numbering and share upserts serialized.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    connect_args.setdefault("timeout", SQLITE_BUSY_TIMEOUT)
    eng = create_engine(url, connect_args=connect_args, **kwargs)

    @event.listens_for(eng, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(eng, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return eng


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
