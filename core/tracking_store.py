from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text, create_engine, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from core.errors import ConflictError, NotFoundError, StoreError
from models.problem import (
    DeliveryHistoryEntry,
    DeliveryOutcome,
    StoreStats,
    TrackedProblem,
)

log = logging.getLogger(__name__)

OPEN_STATUS = "OPEN"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TrackedProblemRow(Base):
    __tablename__ = "tracked_problems"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    problem_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    severity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_forwarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    last_status_change_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    forward_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class DeliveryHistoryRow(Base):
    __tablename__ = "delivery_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    problem_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    connector_name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def sqlite_url(path: str) -> str:
    return f"sqlite:///{path}"


class TrackingStore:
    """Durable record of which problems have been seen, and in which status,
    plus an append-only ledger of delivery attempts.

    Backed by SQLAlchemy over SQLite.  Every public method opens its own
    short-lived session, so one store instance may be shared by the engine
    and all concurrent delivery tasks (including from worker threads).

    Methods are synchronous; async callers go through ``asyncio.to_thread``.
    """

    def __init__(self, database_url: str) -> None:
        self._url = database_url
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 30}
        self._engine = create_engine(database_url, echo=False, connect_args=connect_args)
        self._session = sessionmaker(bind=self._engine, expire_on_commit=False)

    @classmethod
    def open(cls, path: str) -> "TrackingStore":
        """Open (creating if needed) the SQLite store at ``path`` and apply
        the schema."""
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
        store = cls(sqlite_url(path))
        store.migrate()
        return store

    def migrate(self) -> None:
        """Create missing tables and indexes.  Safe to re-run."""
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StoreError("Schema migration failed", cause=exc) from exc

    def close(self) -> None:
        self._engine.dispose()

    # -- tracked problems -------------------------------------------------

    def lookup(self, problem_id: str) -> TrackedProblem | None:
        try:
            with self._session() as session:
                row = session.scalar(
                    select(TrackedProblemRow).where(TrackedProblemRow.problem_id == problem_id)
                )
                return _to_tracked(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Lookup of {problem_id} failed", cause=exc) from exc

    def insert(self, problem: TrackedProblem) -> int:
        """Insert a first-seen problem and return its row id."""
        now = _utcnow()
        row = TrackedProblemRow(
            problem_id=problem.problem_id,
            status=problem.status,
            severity=problem.severity,
            title=problem.title,
            first_seen_at=problem.first_seen_at,
            last_forwarded_at=problem.last_forwarded_at,
            last_status_change_at=problem.last_status_change_at,
            forward_count=problem.forward_count,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._session() as session:
                session.add(row)
                session.commit()
                return row.id
        except IntegrityError as exc:
            raise ConflictError(f"Problem {problem.problem_id} is already tracked", cause=exc) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Insert of {problem.problem_id} failed", cause=exc) from exc

    def update_status(self, problem_id: str, new_status: str) -> None:
        """Record a status transition and bump ``forward_count``."""
        now = _utcnow()
        stmt = (
            update(TrackedProblemRow)
            .where(TrackedProblemRow.problem_id == problem_id)
            .values(
                status=new_status,
                last_forwarded_at=now,
                last_status_change_at=now,
                forward_count=TrackedProblemRow.forward_count + 1,
                updated_at=now,
            )
        )
        try:
            with self._session() as session:
                result = session.execute(stmt)
                if result.rowcount == 0:
                    session.rollback()
                    raise NotFoundError(f"Problem {problem_id} is not tracked")
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"Status update of {problem_id} failed", cause=exc) from exc

    def clear_all(self) -> int:
        """Delete every tracked problem.  History is kept."""
        try:
            with self._session() as session:
                result = session.execute(delete(TrackedProblemRow))
                session.commit()
                return result.rowcount
        except SQLAlchemyError as exc:
            raise StoreError("Clearing tracked problems failed", cause=exc) from exc

    # -- delivery history -------------------------------------------------

    def append_history(self, entry: DeliveryHistoryEntry) -> None:
        """Best-effort audit write.

        The only store operation that never raises: failures are logged and
        dropped, since the ledger plays no part in delivery decisions.
        """
        row = DeliveryHistoryRow(
            problem_id=entry.problem_id,
            connector_name=entry.connector_name,
            outcome=DeliveryOutcome(entry.outcome).value,
            response_code=entry.response_code,
            error_message=entry.error_message,
            attempted_at=entry.attempted_at,
        )
        try:
            with self._session() as session:
                session.add(row)
                session.commit()
        except Exception:
            log.exception(
                "Failed to record delivery history for %s -> %s",
                entry.problem_id,
                entry.connector_name,
            )

    def history_for(self, problem_id: str) -> list[DeliveryHistoryEntry]:
        """Audit read of every recorded attempt for one problem, oldest first."""
        try:
            with self._session() as session:
                rows = session.scalars(
                    select(DeliveryHistoryRow)
                    .where(DeliveryHistoryRow.problem_id == problem_id)
                    .order_by(DeliveryHistoryRow.id)
                ).all()
        except SQLAlchemyError as exc:
            raise StoreError(f"History read for {problem_id} failed", cause=exc) from exc
        return [
            DeliveryHistoryEntry(
                problem_id=r.problem_id,
                connector_name=r.connector_name,
                outcome=DeliveryOutcome(r.outcome),
                attempted_at=r.attempted_at,
                response_code=r.response_code,
                error_message=r.error_message,
            )
            for r in rows
        ]

    # -- reporting ----------------------------------------------------------

    def stats(self) -> StoreStats:
        """Aggregate counts.  Not a consistent snapshot under concurrent writes."""

        def count(session, model, *where) -> int:
            stmt = select(func.count()).select_from(model)
            if where:
                stmt = stmt.where(*where)
            return session.scalar(stmt) or 0

        try:
            with self._session() as session:
                return StoreStats(
                    total=count(session, TrackedProblemRow),
                    open_count=count(session, TrackedProblemRow, TrackedProblemRow.status == OPEN_STATUS),
                    closed_count=count(session, TrackedProblemRow, TrackedProblemRow.status != OPEN_STATUS),
                    total_deliveries=count(session, DeliveryHistoryRow),
                    success_count=count(
                        session,
                        DeliveryHistoryRow,
                        DeliveryHistoryRow.outcome == DeliveryOutcome.SUCCESS.value,
                    ),
                    failure_count=count(
                        session,
                        DeliveryHistoryRow,
                        DeliveryHistoryRow.outcome == DeliveryOutcome.FAILED.value,
                    ),
                )
        except SQLAlchemyError as exc:
            raise StoreError("Reading statistics failed", cause=exc) from exc


def _to_tracked(row: TrackedProblemRow) -> TrackedProblem:
    return TrackedProblem(
        id=row.id,
        problem_id=row.problem_id,
        status=row.status,
        title=row.title,
        severity=row.severity,
        first_seen_at=row.first_seen_at,
        last_forwarded_at=row.last_forwarded_at,
        last_status_change_at=row.last_status_change_at,
        forward_count=row.forward_count,
    )
