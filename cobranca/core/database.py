"""
Engine and session wiring for the ledger store.
SQLite for local runs and tests, PostgreSQL when DATABASE_URL points to it.
"""
from typing import Any, Generator, List
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base
from sqlalchemy.orm import sessionmaker
from cobranca.core.config import settings
from cobranca.core.logger import logger

IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    # Request handlers run in a threadpool; pysqlite must accept cross-thread use
    connect_args={"check_same_thread": False} if IS_SQLITE else {}
)

if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        # WAL lets overdue reports read while payments are being written
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Creates the customer, contract, installment and payment tables when missing."""
    import cobranca.contratos.models  # noqa: F401
    import cobranca.parcelas.models  # noqa: F401

    logger.info("Creating ledger tables")
    Base.metadata.create_all(bind=engine)
    logger.info("Ledger tables ready")


def get_enum_values(enum_cls: Any) -> List[str]:
    """Stores enum members by value (ABERTA, PAGA, ...) instead of by name."""
    return [e.value for e in enum_cls]
