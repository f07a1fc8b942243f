from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import settings

# Base para modelos (lo importa tile_erp.main)
Base = declarative_base()

SQLALCHEMY_DATABASE_URL = settings.database_url
IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

_connect_args = (
    {"check_same_thread": False, "timeout": settings.db_busy_timeout} if IS_SQLITE else {}
)

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=_connect_args,
    pool_pre_ping=True,
)

if IS_SQLITE:

    # PRAGMAs por conexión
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute(f"PRAGMA busy_timeout={settings.db_busy_timeout * 1000};")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.execute("PRAGMA synchronous=NORMAL;")
        finally:
            cur.close()
        # sin BEGIN implícito: las lecturas sueltas no abren transacción
        dbapi_conn.isolation_level = None


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependencia FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """
    Commit on success; roll back on any exception and re-raise it.

    On SQLite the unit of work opens with BEGIN IMMEDIATE, so a read-then-write
    sequence holds the write lock from its first read. Reads made outside a
    transaction() block run in autocommit and take no lock.
    """
    if IS_SQLITE:
        conn = db.connection()
        if not conn.connection.dbapi_connection.in_transaction:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
