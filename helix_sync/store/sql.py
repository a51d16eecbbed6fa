"""
SQL-backed record store.

Compare-and-set is a single conditional UPDATE (WHERE version = expected),
so concurrent writers on any SQLAlchemy backend serialize on the row. Each
successful write also appends a user_state_history row in the same
transaction.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import Engine, create_engine, delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from helix_sync.core.errors import (
    PermanentStoreError,
    RecordAlreadyExists,
    TransportError,
    VersionConflict,
)
from helix_sync.core.state import SyncSource, UserState
from helix_sync.store.models import Base, UserStateHistory, UserStateRecord


@dataclass
class StateHistoryEntry:
    """Summary of one audited write."""

    change_type: str
    version_from: int | None
    version_to: int
    sync_source: str
    created_at: datetime | None


class SqlRecordStore:
    """Record store over any SQLAlchemy engine."""

    def __init__(self, database_url: str | None = None, engine: Engine | None = None):
        """
        Initialize the store and create its tables if needed.

        Args:
            database_url: SQLAlchemy URL (ignored when engine is given)
            engine: Pre-built engine, e.g. an in-memory SQLite for tests
        """
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_engine(database_url, pool_pre_ping=True)
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        Base.metadata.create_all(bind=engine)
        logger.debug("SQL record store ready on {}", engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Transactional scope; commits on success, rolls back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _translate_errors(self) -> Generator[None, None, None]:
        try:
            yield
        except OperationalError as exc:
            raise TransportError(f"database unavailable: {exc}") from exc
        except SQLAlchemyError as exc:
            raise PermanentStoreError(f"database error: {exc}") from exc

    # ========================================
    # RecordStore
    # ========================================

    def get(self, user_id: str) -> UserState | None:
        with self._translate_errors(), self.session_scope() as session:
            record = session.get(UserStateRecord, user_id)
            if record is None:
                return None
            payload = record.state
        try:
            return UserState.from_wire(payload)
        except ValidationError as exc:
            raise PermanentStoreError(f"stored state for {user_id} is malformed: {exc}") from exc

    def insert(self, state: UserState) -> None:
        payload = state.to_wire()
        change_type = "migration" if state.sync_source is SyncSource.MIGRATION else "creation"
        try:
            with self._translate_errors(), self.session_scope() as session:
                if session.get(UserStateRecord, state.user_id) is not None:
                    raise RecordAlreadyExists(state.user_id)
                session.add(
                    UserStateRecord(
                        user_id=state.user_id,
                        version=state.version,
                        state=payload,
                        sync_source=SyncSource(state.sync_source).value,
                        last_sync_time=state.last_sync_time,
                    )
                )
                session.flush()
                self._audit(session, state, payload, change_type, version_from=None)
        except PermanentStoreError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise RecordAlreadyExists(state.user_id) from exc
            raise
        logger.debug("Inserted state for {} at v{}", state.user_id, state.version)

    def compare_and_set(self, user_id: str, expected_version: int, new_state: UserState) -> None:
        if new_state.version <= expected_version:
            raise PermanentStoreError(
                f"new version {new_state.version} must exceed expected {expected_version}"
            )
        payload = new_state.to_wire()
        with self._translate_errors(), self.session_scope() as session:
            result = session.execute(
                update(UserStateRecord)
                .where(
                    UserStateRecord.user_id == user_id,
                    UserStateRecord.version == expected_version,
                )
                .values(
                    version=new_state.version,
                    state=payload,
                    sync_source=SyncSource(new_state.sync_source).value,
                    last_sync_time=new_state.last_sync_time,
                )
            )
            if result.rowcount != 1:
                actual = session.scalar(
                    select(UserStateRecord.version).where(UserStateRecord.user_id == user_id)
                )
                raise VersionConflict(user_id, expected_version, actual)
            self._audit(session, new_state, payload, "update", version_from=expected_version)
        logger.debug("Committed {} v{} -> v{}", user_id, expected_version, new_state.version)

    def delete(self, user_id: str) -> None:
        with self._translate_errors(), self.session_scope() as session:
            session.execute(delete(UserStateRecord).where(UserStateRecord.user_id == user_id))
        logger.info("Deleted state record for {}", user_id)

    # ========================================
    # History
    # ========================================

    def _audit(
        self,
        session: Session,
        state: UserState,
        payload: dict,
        change_type: str,
        version_from: int | None,
    ) -> None:
        session.add(
            UserStateHistory(
                user_id=state.user_id,
                change_type=change_type,
                version_from=version_from,
                version_to=state.version,
                sync_source=SyncSource(state.sync_source).value,
                new_state=payload,
            )
        )

    def history(self, user_id: str, limit: int = 20) -> list[StateHistoryEntry]:
        """Audited writes for a learner, newest first."""
        with self._translate_errors(), self.session_scope() as session:
            rows = session.scalars(
                select(UserStateHistory)
                .where(UserStateHistory.user_id == user_id)
                .order_by(UserStateHistory.id.desc())
                .limit(limit)
            ).all()
            return [
                StateHistoryEntry(
                    change_type=row.change_type,
                    version_from=row.version_from,
                    version_to=row.version_to,
                    sync_source=row.sync_source,
                    created_at=row.created_at,
                )
                for row in rows
            ]

    def close(self) -> None:
        self.engine.dispose()
