"""
Database connection, session management and the unit of work
"""
import logging

from sqlalchemy import create_engine, pool
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from pharmaledger.config import settings
from pharmaledger.exceptions import PharmaLedgerError

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    """Pool and driver options per backend (PostgreSQL in production, SQLite for local/tests)."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = pool.StaticPool
        return kwargs
    return {
        "poolclass": pool.QueuePool,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,  # Verify connections before using
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "connect_args": {
            "connect_timeout": 10,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        },
    }


def create_app_engine(url: str):
    return create_engine(url, echo=settings.DEBUG, **_engine_kwargs(url))


engine = create_app_engine(settings.database_connection_string)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """
    Dependency for FastAPI to get database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create all tables that do not exist yet."""
    # Registers every model on Base.metadata
    import pharmaledger.models
    Base.metadata.create_all(bind=bind or engine)


class UnitOfWork:
    """
    All-or-nothing boundary for one engine operation.

    Usage::

        with UnitOfWork(db) as uow:
            BatchLedgerService.adjust(uow, batch_id, -3, "sale")
            PrescriptionService.reconcile_prescription(uow, prescription)

    Every mutating step receives the same handle and works through ``uow.db``.
    Leaving the block normally commits once; any exception rolls back every
    change made inside the block and propagates to the caller.
    """

    def __init__(self, db: Session):
        self.db = db
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.commit()
            return False
        self.rollback()
        if not isinstance(exc, PharmaLedgerError):
            logger.exception(f"Unit of work failed and was rolled back: {exc}")
        return False

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.committed = True

    def rollback(self) -> None:
        self.db.rollback()
