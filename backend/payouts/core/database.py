from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from payouts.core.config import settings

IMMEDIATE_OPTION = "sqlite_begin_immediate"


def normalize_database_url(url: str) -> str:
    """Render uses postgres:// but SQLAlchemy + psycopg3 needs postgresql+psycopg://"""
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://") and "+psycopg" not in url:
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def make_engine(url: str, echo: bool = False):
    """Create an engine; SQLite gets thread-shareable connections instead of pool sizing."""
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo,
        )

        # pysqlite defers BEGIN until the first write, which breaks SAVEPOINT.
        # Emit BEGIN ourselves so nested transactions work. WAL keeps open
        # readers from blocking a writer's commit. Ledger writers ask for
        # BEGIN IMMEDIATE so they queue on the busy timeout instead of
        # failing on a stale read snapshot.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            if conn.get_execution_options().get(IMMEDIATE_OPTION):
                conn.exec_driver_sql("BEGIN IMMEDIATE")
            else:
                conn.exec_driver_sql("BEGIN")

        return engine
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=echo,
    )


# Create engine
engine = make_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def begin_ledger_transaction(db):
    """
    End whatever the session has open and start a transaction that holds the
    write lock from its first statement. On PostgreSQL the row locks taken by
    settlement do the same job and the option is ignored.
    """
    if db.in_transaction():
        db.commit()
    db.connection(execution_options={IMMEDIATE_OPTION: True})


# Dependency for FastAPI routes
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
