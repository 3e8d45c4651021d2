from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.types import DateTime, TypeDecorator
from sqlmodel import SQLModel, create_engine

from labsync.config import Settings


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes over SQLite's tz-less DATETIME storage."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:  # noqa: ANN001
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:  # noqa: ANN001
        if value is None:
            return None
        return as_utc(value)


def enable_foreign_keys(engine: Engine) -> None:
    # SQLite only enforces FOREIGN KEY clauses when asked to, per connection
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()


def make_engine(settings: Settings) -> Engine:
    # SQLite with WAL enabled
    engine = create_engine(
        f"sqlite:///{settings.database_path}", connect_args={"check_same_thread": False}
    )
    enable_foreign_keys(engine)
    return engine


def init_db(engine: Engine) -> None:
    import labsync.models  # noqa: F401  register tables

    if engine.dialect.name == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        with engine.begin() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
            conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
    SQLModel.metadata.create_all(engine)
