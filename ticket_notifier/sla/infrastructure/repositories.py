"""
SLA Infrastructure Repositories
=================================

Concrete implementations of the tracking repository interfaces.

Durable storage is a key -> JSON document table, either a single JSON
file or a SQLAlchemy table. The stores keep an in-memory index over the
table and write through on every change; during a live process the
index, not the table, is what reads are served from.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Generic, List, Optional, Set, Type, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from ticket_notifier.core import RepositoryException
from ticket_notifier.infrastructure.database import get_session_context
from ticket_notifier.sla.application.services import (
    IAssignmentTrackingRepository,
    ISLATrackingRepository,
)
from ticket_notifier.sla.domain import AssignmentTrackingRecord, SLARecord
from ticket_notifier.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# ========== Tables ==========

class KeyValueTable(ABC):
    """Durable key -> JSON object map."""

    @abstractmethod
    async def load_all(self) -> Dict[str, dict]:
        """Read every row. A missing or unreadable table reads as empty."""

    @abstractmethod
    async def put(self, key: str, value: dict) -> None:
        """
        Insert or replace a row.

        Raises:
            RepositoryException: If the write failed
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete a row if present.

        Raises:
            RepositoryException: If the write failed
        """


class JSONFileTable(KeyValueTable):
    """
    Table stored as one JSON object in a file.

    Writes replace the file atomically (temp file + rename), so a crash
    mid-write leaves the previous version in place. A corrupt file is
    moved aside to '<name>.corrupt' and the table starts empty.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._rows: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def load_all(self) -> Dict[str, dict]:
        async with self._lock:
            self._rows = await asyncio.to_thread(self._read)
            return dict(self._rows)

    async def put(self, key: str, value: dict) -> None:
        async with self._lock:
            self._rows[key] = value
            await self._flush()

    async def delete(self, key: str) -> None:
        async with self._lock:
            if self._rows.pop(key, None) is not None:
                await self._flush()

    async def _flush(self) -> None:
        try:
            await asyncio.to_thread(self._write, dict(self._rows))
        except (OSError, TypeError, ValueError) as e:
            raise RepositoryException(
                f"Failed to write {self.path}",
                {"path": str(self.path), "error": str(e)}
            ) from e

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            logger.info("State file not found, starting empty", extra={"path": str(self.path)})
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            self._quarantine(str(e))
            return {}

        if not isinstance(data, dict):
            self._quarantine("top-level value is not an object")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, dict)}

    def _quarantine(self, reason: str) -> None:
        corrupt = self.path.with_name(self.path.name + ".corrupt")
        logger.warning(
            "State file unreadable, starting empty",
            extra={"path": str(self.path), "moved_to": str(corrupt), "error": reason}
        )
        try:
            os.replace(self.path, corrupt)
        except OSError as e:
            logger.error("Could not move corrupt state file aside", extra={"path": str(self.path), "error": str(e)})

    def _write(self, rows: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(rows, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)


class SQLAlchemyKeyValueTable(KeyValueTable):
    """
    Table stored as rows of (ticket_id, data JSON, updated_at).

    Args:
        model: SQLAlchemy model with ticket_id, data and updated_at columns
    """

    def __init__(self, model: Type):
        self._model = model

    async def load_all(self) -> Dict[str, dict]:
        try:
            async with get_session_context() as session:
                result = await session.execute(select(self._model))
                return {row.ticket_id: row.data for row in result.scalars().all()}
        except SQLAlchemyError as e:
            logger.error(
                "Failed to read tracking table, starting empty",
                extra={"table": self._model.__tablename__, "error": str(e)}
            )
            return {}

    async def put(self, key: str, value: dict) -> None:
        try:
            async with get_session_context() as session:
                await session.merge(self._model(
                    ticket_id=key,
                    data=value,
                    updated_at=datetime.now(timezone.utc),
                ))
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to write {self._model.__tablename__} row",
                {"ticket_id": key, "error": str(e)}
            ) from e

    async def delete(self, key: str) -> None:
        try:
            async with get_session_context() as session:
                await session.execute(delete(self._model).where(self._model.ticket_id == key))
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to delete {self._model.__tablename__} row",
                {"ticket_id": key, "error": str(e)}
            ) from e


# ========== Stores ==========

class _TrackingStore(Generic[T]):
    """
    In-memory index over a table, written through on every change.

    A failed durable write is logged and the in-memory state kept, so the
    next successful write persists it. A reload keeps such records and
    tries to write them again.
    """

    entity_name = "record"

    def __init__(self, table: KeyValueTable, from_dict: Callable[[str, dict], T]):
        self._table = table
        self._from_dict = from_dict
        self._records: Dict[str, T] = {}
        self._unsaved: Set[str] = set()
        self._undeleted: Set[str] = set()

    async def load(self) -> int:
        rows = await self._table.load_all()
        records = {}
        for ticket_id, data in rows.items():
            try:
                records[ticket_id] = self._from_dict(ticket_id, data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    f"Skipping unreadable {self.entity_name}",
                    extra={"ticket_id": ticket_id, "error": str(e)}
                )
        self._records = records
        return len(self._records)

    async def reload(self) -> int:
        """Load again, keeping records whose durable write or delete failed."""
        pending = {key: self._records[key] for key in self._unsaved if key in self._records}
        undeleted = set(self._undeleted)

        await self.load()
        for key in undeleted:
            self._records.pop(key, None)
        self._undeleted = set()
        self._unsaved = set()

        for record in pending.values():
            await self.save(record)
        for key in undeleted:
            await self._delete_row(key)

        if pending or undeleted:
            logger.info(
                f"Reapplied unsaved {self.entity_name} changes after reload",
                extra={"saved": len(pending), "deleted": len(undeleted)}
            )
        return len(self._records)

    @property
    def pending_writes(self) -> int:
        return len(self._unsaved) + len(self._undeleted)

    def get(self, ticket_id: str) -> Optional[T]:
        return self._records.get(ticket_id)

    def all(self) -> List[T]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    async def save(self, record) -> bool:
        self._records[record.ticket_id] = record
        self._undeleted.discard(record.ticket_id)
        try:
            await self._table.put(record.ticket_id, record.to_dict())
        except RepositoryException as e:
            self._unsaved.add(record.ticket_id)
            logger.error(
                f"Failed to persist {self.entity_name}, kept in memory",
                extra={"ticket_id": record.ticket_id, "error": e.message}
            )
            return False
        self._unsaved.discard(record.ticket_id)
        return True

    async def delete(self, ticket_id: str) -> bool:
        if self._records.pop(ticket_id, None) is None:
            return False
        self._unsaved.discard(ticket_id)
        await self._delete_row(ticket_id)
        return True

    async def _delete_row(self, ticket_id: str) -> None:
        try:
            await self._table.delete(ticket_id)
        except RepositoryException as e:
            self._undeleted.add(ticket_id)
            logger.error(
                f"Failed to delete {self.entity_name}",
                extra={"ticket_id": ticket_id, "error": e.message}
            )
            return
        self._undeleted.discard(ticket_id)


class SLATrackingStore(_TrackingStore[SLARecord], ISLATrackingRepository):
    """SLA tracking records keyed by ticket id."""

    entity_name = "SLA record"

    def __init__(self, table: KeyValueTable):
        super().__init__(table, SLARecord.from_dict)


class AssignmentTrackingStore(_TrackingStore[AssignmentTrackingRecord], IAssignmentTrackingRepository):
    """Assignment tracking records keyed by ticket id."""

    entity_name = "assignment record"

    def __init__(self, table: KeyValueTable):
        super().__init__(table, AssignmentTrackingRecord.from_dict)
