from contextlib import contextmanager
import logging
import os

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .errors import ConflictError, DynTableError, InternalError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dyntables.db")


def _configure_sqlite(engine: Engine) -> None:
    # pysqlite only opens transactions before DML; emit BEGIN ourselves so DDL
    # issued inside a unit rolls back with it
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    else:
        connect_args = {}
    built = create_engine(url, connect_args=connect_args)
    if built.dialect.name == "sqlite":
        _configure_sqlite(built)
    return built


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """All-or-nothing unit: yields the session connection, commits or rolls back."""

    try:
        yield db.connection()
        db.commit()
    except Exception:
        db.rollback()
        raise


def supports_namespaces(bind: Engine | Connection | Session) -> bool:
    if isinstance(bind, Session):
        bind = bind.get_bind()
    return bind.dialect.name != "sqlite"


def tenant_namespace(tenant_id: str) -> str:
    return f"company_{str(tenant_id).replace('-', '_')}"


@contextmanager
def unit_of_work(db: Session, action: str):
    """Run ``action`` as one transaction, surfacing store failures as service errors."""

    try:
        with transaction(db) as conn:
            yield conn
    except DynTableError:
        raise
    except IntegrityError as exc:
        raise ConflictError(f"Cannot {action}: conflicting data") from exc
    except SQLAlchemyError as exc:
        logger.exception("Store failure while trying to %s", action)
        raise InternalError(f"Failed to {action}") from exc
