from sqlalchemy import JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker

from automation_runner.core.config import get_database_url

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()

# JSON everywhere, JSONB on Postgres.
JsonType = JSON().with_variant(JSONB(), "postgresql")

DATABASE_URL = ""
engine = None
_configured_database_url = None


def _enable_sqlite_savepoints(sqlite_engine) -> None:
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit it ourselves.
    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        # readers must not block the runner's commits
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def configure_database() -> None:
    global DATABASE_URL, engine, _configured_database_url

    database_url = get_database_url()

    if engine is not None and _configured_database_url == database_url:
        return

    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        _enable_sqlite_savepoints(engine)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)

    SessionLocal.configure(bind=engine)
    DATABASE_URL = database_url
    _configured_database_url = database_url


configure_database()


def get_db():
    configure_database()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
