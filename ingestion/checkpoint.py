"""
Checkpoint management for resume-on-failure.

Checkpoints are written every N processed records under a logical key
derived from the source and configuration, so a later run against the
same source finds the position an interrupted run reached.
"""

import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import ImportConfig
from core.exceptions import CheckpointError
from ingestion.decoder import StreamingDecoder
from models.checkpoint import ImportCheckpoint

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 3

# Configuration fields that change what a resumed run would produce
_FINGERPRINT_FIELDS = ("record_type", "record_status", "required_columns", "skip_duplicates", "template")


def checkpoint_key(descriptor: str, config: ImportConfig) -> str:
    """Stable key for a source + configuration pair"""
    payload = json.dumps(
        {"source": descriptor, "config": config.model_dump(include=set(_FINGERPRINT_FIELDS))},
        sort_keys=True,
    )
    return "csv_import_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


def server_info(memory: Optional[Dict[str, Any]] = None, time_limit: int = 0) -> Dict[str, Any]:
    """Host resource snapshot stored alongside a checkpoint"""
    try:
        load = os.getloadavg()[0]
    except (OSError, AttributeError):
        load = None
    return {
        "memory": memory or {},
        "time_limit": time_limit,
        "load_average": load,
    }


@dataclass
class Checkpoint:
    """
    Snapshot of how far a run has progressed.

    ``processed`` is the number of data rows consumed from the source
    (created, skipped or failed), i.e. the resume position. The per-outcome
    counts restore the running totals of a resumed run.
    """
    run_id: str
    processed: int
    total: int
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    created: int = 0
    skipped: int = 0
    errors: int = 0
    last_data_sample: List[Any] = field(default_factory=list)
    server_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "processed": self.processed,
            "total": self.total,
            "timestamp": self.timestamp,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "last_data_sample": self.last_data_sample,
            "server_info": self.server_info,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            run_id=data.get("run_id", ""),
            processed=int(data["processed"]),
            total=int(data.get("total", 0)),
            timestamp=data.get("timestamp") or datetime.utcnow().isoformat(),
            created=int(data.get("created", 0)),
            skipped=int(data.get("skipped", 0)),
            errors=int(data.get("errors", 0)),
            last_data_sample=list(data.get("last_data_sample") or []),
            server_info=dict(data.get("server_info") or {}),
        )


class KeyValueStore(ABC):
    """Durable key-value persistence that survives process restarts"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any]):
        pass

    @abstractmethod
    async def delete(self, key: str):
        pass


class SQLKeyValueStore(KeyValueStore):
    """Key-value persistence on the ``import_checkpoints`` table"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            row = await session.get(ImportCheckpoint, key)
            return dict(row.data) if row else None

    async def set(self, key: str, value: Dict[str, Any]):
        async with self.session_factory() as session:
            row = await session.get(ImportCheckpoint, key)
            if row is None:
                row = ImportCheckpoint(key=key)
                session.add(row)
            row.run_id = value.get("run_id", "")
            row.processed = value.get("processed", 0)
            row.total = value.get("total", 0)
            row.data = value
            row.updated_at = datetime.utcnow()
            await session.commit()

    async def delete(self, key: str):
        async with self.session_factory() as session:
            row = await session.get(ImportCheckpoint, key)
            if row is not None:
                await session.delete(row)
                await session.commit()


class CheckpointStore:
    """
    Save, load and replay checkpoints.

    Storage failures are raised as CheckpointError with the key and the
    failed operation in the context.
    """

    def __init__(self, backend: KeyValueStore):
        self.backend = backend

    async def save(
        self,
        key: str,
        run_id: str,
        processed: int,
        total: int,
        created: int = 0,
        skipped: int = 0,
        errors: int = 0,
        last_data: Optional[Dict[str, Any]] = None,
        info: Optional[Dict[str, Any]] = None
    ) -> Checkpoint:
        """Upsert the checkpoint for ``key``. ``total`` never ends up below ``processed``."""
        sample = list((last_data or {}).items())[:SAMPLE_SIZE]
        checkpoint = Checkpoint(
            run_id=run_id,
            processed=processed,
            total=max(total, processed),
            created=created,
            skipped=skipped,
            errors=errors,
            last_data_sample=[list(item) for item in sample],
            server_info=info or server_info(),
        )

        try:
            await self.backend.set(key, checkpoint.to_dict())
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to save checkpoint",
                context={"key": key, "operation": "save"},
                original_exception=e
            )

        percent = round(processed / checkpoint.total * 100, 1) if checkpoint.total else 0
        logger.debug(
            "Import checkpoint saved",
            extra={"context": {"key": key, "run_id": run_id, "progress": f"{percent}%"}}
        )
        return checkpoint

    async def load(self, key: str) -> Optional[Checkpoint]:
        try:
            data = await self.backend.get(key)
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to load checkpoint",
                context={"key": key, "operation": "load"},
                original_exception=e
            )
        if not data or "processed" not in data:
            return None
        return Checkpoint.from_dict(data)

    async def can_resume(self, key: str) -> bool:
        """True iff a checkpoint with a processed count exists"""
        return await self.load(key) is not None

    async def resume_position(self, decoder: StreamingDecoder, checkpoint: Checkpoint) -> int:
        """
        Fast-forward ``decoder`` past the rows a checkpoint already covers.

        The stream is not assumed to be seekable, so this replays read_row
        and discards the results. The header must already have been read.

        Returns:
            Number of rows skipped (less than requested if the source is shorter)
        """
        skipped = 0
        while skipped < checkpoint.processed:
            if await decoder.read_row() is None:
                break
            skipped += 1

        logger.info(
            "Import resumed from checkpoint",
            extra={"context": {"run_id": checkpoint.run_id, "resume_line": skipped}}
        )
        return skipped

    async def clear(self, key: str):
        try:
            await self.backend.delete(key)
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to clear checkpoint",
                context={"key": key, "operation": "clear"},
                original_exception=e
            )
