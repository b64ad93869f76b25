"""SQLAlchemy-backed target store."""

import asyncio
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from feedsync.models.descriptor import MODIFIED_FIELD, TIMESTAMP_FIELD, ModelDescriptor
from feedsync.storage.memory import normalize_key_part, record_key
from feedsync.sync.cancellation import CancellationToken

log = structlog.stdlib.get_logger()

KEY_SEPARATOR = "|"


class Base(DeclarativeBase):
    """Base class for target store tables."""

    pass


class EntityRecord(Base):
    """One synchronized record of any model, stored as a JSON payload."""

    __tablename__ = "entity_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    record_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    # Leading identifier, matched by deletion-log entity keys
    lead_key: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    modified: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("model", "record_key", name="uq_entity_records_model_key"),
        Index("ix_entity_records_model_lead_key", "model", "lead_key"),
    )


def _to_utc_naive(value: Any) -> datetime | None:
    """Normalize a modified value for storage as naive UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _create_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # One shared connection, so worker threads of the async methods see the same database
        return create_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(url, echo=False)


class SqlTargetController:
    """Target operations for one model against the entity_records table."""

    def __init__(self, descriptor: ModelDescriptor, session_factory: sessionmaker[Session]):
        self._descriptor = descriptor
        self._session_factory = session_factory

    def max_timestamp(self) -> int:
        with self._session_factory() as session:
            value = session.scalar(
                select(func.max(EntityRecord.timestamp)).where(
                    EntityRecord.model == self._descriptor.name
                )
            )
        return value or 0

    def max_modified(self) -> datetime | None:
        with self._session_factory() as session:
            value = session.scalar(
                select(func.max(EntityRecord.modified)).where(
                    EntityRecord.model == self._descriptor.name
                )
            )
        # SQLite drops the offset; values are stored as UTC
        return value.replace(tzinfo=timezone.utc) if value is not None else None

    def upsert(self, records: Sequence[Mapping[str, Any]], fields: Sequence[str] = ()) -> int:
        """
        Insert or update records in one transaction.

        Args:
            records: Records to write
            fields: Fields to write besides identifier and watermark fields; empty writes all

        Returns:
            Number of records inserted or changed
        """
        written_fields = set(fields) | set(self._descriptor.system_fields) if fields else None
        changed = 0
        # Rows seen in this batch, pending inserts included
        rows: dict[str, EntityRecord] = {}

        with self._session_factory.begin() as session:
            for record in records:
                key = record_key(self._descriptor, record)
                joined_key = KEY_SEPARATOR.join(key)
                incoming = to_jsonable_python(
                    {k: v for k, v in record.items() if written_fields is None or k in written_fields}
                )
                row = rows.get(joined_key)
                if row is None:
                    row = session.scalar(
                        select(EntityRecord).where(
                            EntityRecord.model == self._descriptor.name,
                            EntityRecord.record_key == joined_key,
                        )
                    )

                if row is None:
                    rows[joined_key] = EntityRecord(
                        model=self._descriptor.name,
                        record_key=joined_key,
                        lead_key=key[0],
                        timestamp=incoming.get(TIMESTAMP_FIELD),
                        modified=_to_utc_naive(incoming.get(MODIFIED_FIELD)),
                        payload=incoming,
                    )
                    session.add(rows[joined_key])
                    changed += 1
                    continue

                rows[joined_key] = row

                merged = {**row.payload, **incoming}
                if merged != row.payload:
                    row.payload = merged
                    row.timestamp = merged.get(TIMESTAMP_FIELD)
                    row.modified = _to_utc_naive(merged.get(MODIFIED_FIELD))
                    changed += 1

        log.debug("sql_target_upserted", model=self._descriptor.name, records=len(records), changed=changed)
        return changed

    def delete(self, keys: Sequence[UUID]) -> int:
        """Delete records whose leading identifier matches one of the keys."""
        wanted = sorted({normalize_key_part(k) for k in keys})
        if not wanted:
            return 0

        with self._session_factory.begin() as session:
            result = session.execute(
                delete(EntityRecord).where(
                    EntityRecord.model == self._descriptor.name,
                    EntityRecord.lead_key.in_(wanted),
                )
            )
            deleted = result.rowcount or 0

        log.debug("sql_target_deleted", model=self._descriptor.name, keys=len(wanted), deleted=deleted)
        return deleted

    async def max_timestamp_async(self, cancel_token: CancellationToken | None = None) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return await asyncio.to_thread(self.max_timestamp)

    async def max_modified_async(
        self, cancel_token: CancellationToken | None = None
    ) -> datetime | None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return await asyncio.to_thread(self.max_modified)

    async def upsert_async(
        self,
        records: Sequence[Mapping[str, Any]],
        fields: Sequence[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return await asyncio.to_thread(self.upsert, records, fields)

    async def delete_async(
        self, keys: Sequence[UUID], cancel_token: CancellationToken | None = None
    ) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return await asyncio.to_thread(self.delete, keys)


class SqlSyncTarget:
    """Target store persisting every model into a single SQL table."""

    def __init__(self, database_url: str = "sqlite:///feedsync.db", engine: Engine | None = None):
        """
        Initialize the SQL target and create its table if needed.

        Args:
            database_url: SQLAlchemy database URL, ignored when engine is given
            engine: Optional pre-built engine
        """
        self.engine: Engine = engine if engine is not None else _create_engine(database_url)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(bind=self.engine)

        log.info("sql_target_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def controller_for(self, descriptor: ModelDescriptor) -> SqlTargetController:
        return SqlTargetController(descriptor, self._session_factory)

    def count(self, model: str) -> int:
        """Number of stored records for a model."""
        with self._session_factory() as session:
            return session.scalar(
                select(func.count()).select_from(EntityRecord).where(EntityRecord.model == model)
            ) or 0

    def records(self, model: str) -> list[dict[str, Any]]:
        """Stored payloads of a model, in insertion order."""
        with self._session_factory() as session:
            rows = session.scalars(
                select(EntityRecord).where(EntityRecord.model == model).order_by(EntityRecord.id)
            )
            return [dict(row.payload) for row in rows]
