"""Storage backend shared by the CNBBuild and Knative Build stores.

Both stores run on one engine. Every store call gets its own short
session, so a reconcile pass never holds a transaction open while it
talks to a registry.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, MetaData, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from cnb_controller.config import get_settings

# Names for indexes and foreign keys declared without one
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base of the resource tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def _is_sqlite(db_url: str) -> bool:
    return make_url(db_url).get_backend_name() == "sqlite"


def _ensure_sqlite_dir(db_url: str) -> None:
    database = make_url(db_url).database
    if not database or database == ":memory:":
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


def get_engine(db_url: str | None = None) -> Engine:
    """Create the engine backing the resource stores.

    Args:
        db_url: Database URL. Defaults to the configured ``db_url``.

    Returns:
        SQLAlchemy Engine.
    """
    if db_url is None:
        db_url = get_settings().db_url

    connect_args: dict[str, object] = {}
    if _is_sqlite(db_url):
        # Store calls may run on a thread other than the one that connected
        connect_args["check_same_thread"] = False
        _ensure_sqlite_dir(db_url)

    return create_engine(db_url, connect_args=connect_args)


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Create the session factory handed to the stores.

    Loaded attributes survive commit, so stores can convert records into
    resources after their transaction has ended.

    Args:
        engine: Engine to bind. Defaults to one built from settings.

    Returns:
        Session factory.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def get_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Run one store call in its own transaction.

    The transaction commits when the block exits normally and rolls back
    when it raises; the exception is re-raised either way.

    Args:
        session_factory: Factory from get_session_factory.

    Yields:
        Session bound to an open transaction.
    """
    with session_factory() as session, session.begin():
        yield session


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the resource tables that do not exist yet.

    Args:
        engine: Engine to create tables on. Defaults to one built from settings.
    """
    # Registers both record classes on Base.metadata
    from cnb_controller.builds import models as builds_models  # noqa: F401
    from cnb_controller.knative import models as knative_models  # noqa: F401

    Base.metadata.create_all(bind=engine if engine is not None else get_engine())


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
]
