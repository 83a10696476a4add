"""Database bootstrap helpers and bounded transaction scopes."""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import JSON, create_engine, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from debitrecon.common.config import settings


def _engine_options(dsn: str) -> dict:
    if dsn.startswith("sqlite"):
        return {"pool_pre_ping": True}
    # Waiting for a pooled connection counts against the transaction max-wait budget.
    return {"pool_pre_ping": True, "pool_timeout": settings.pd_tx_max_wait_ms / 1000}


# Single SQLAlchemy engine per process.
engine = create_engine(settings.postgres_dsn, **_engine_options(settings.postgres_dsn))
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

# JSONB on PostgreSQL, plain JSON on every other dialect.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


@contextmanager
def bounded_transaction(
    session_factory,
    timeout_ms: int | None = None,
    max_wait_ms: int | None = None,
) -> Iterator[Session]:
    """Open a session + transaction that commits on exit and rolls back on error.

    On PostgreSQL the transaction gets `statement_timeout` and `lock_timeout`
    budgets so a stuck lock cannot hang the caller indefinitely.
    """

    timeout_ms = settings.pd_tx_timeout_ms if timeout_ms is None else timeout_ms
    max_wait_ms = settings.pd_tx_max_wait_ms if max_wait_ms is None else max_wait_ms
    with session_factory() as db:
        with db.begin():
            if db.get_bind().dialect.name == "postgresql":
                db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
                db.execute(text(f"SET LOCAL lock_timeout = {int(max_wait_ms)}"))
            yield db
