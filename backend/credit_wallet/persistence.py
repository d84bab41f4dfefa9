"""
Snapshot Persistence

Write-behind durability for the in-memory wallet stores.

In-memory state is authoritative for the life of the process. After each
mutation a store schedules a snapshot of its whole map; the SnapshotWriter
writes it in the background, coalescing bursts of writes to the same
document. Backend failures are logged and swallowed: they never roll back or
fail the mutation that triggered them.

Backends:
- JsonFileBackend: one <name>.json file per document under a directory
- MongoSnapshotBackend: one document per name in the credit_snapshots collection
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Set

from .config import SNAPSHOT_COLLECTION

logger = logging.getLogger(__name__)


class SnapshotBackend:
    """Durable home for snapshot documents (dicts keyed by record key)."""

    name = "none"

    async def load(self, document: str) -> Dict[str, dict]:
        raise NotImplementedError

    async def save(self, document: str, records: Dict[str, dict]) -> None:
        raise NotImplementedError


class JsonFileBackend(SnapshotBackend):
    """Stores each document as a JSON object in <directory>/<document>.json."""

    name = "json"

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, document: str) -> Path:
        return self.directory / f"{document}.json"

    def _read(self, document: str) -> Dict[str, dict]:
        path = self._path(document)
        if not path.exists():
            return {}
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Snapshot {path} is not a JSON object")
        return data

    def _write(self, document: str, records: Dict[str, dict]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(document)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, sort_keys=True)
        os.replace(tmp_path, path)

    async def load(self, document: str) -> Dict[str, dict]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, document)

    async def save(self, document: str, records: Dict[str, dict]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, document, records)


class MongoSnapshotBackend(SnapshotBackend):
    """
    Stores each document in MongoDB as {_id: <document>, items: [...]}.

    Keys are kept inside the items list because tokens and origins
    (IP addresses) may contain dots.
    """

    name = "mongo"

    def __init__(self, db):
        self.collection = db[SNAPSHOT_COLLECTION]

    async def load(self, document: str) -> Dict[str, dict]:
        doc = await self.collection.find_one({"_id": document})
        if not doc:
            return {}
        return {item["key"]: item["value"] for item in doc.get("items", [])}

    async def save(self, document: str, records: Dict[str, dict]) -> None:
        await self.collection.replace_one(
            {"_id": document},
            {
                "_id": document,
                "items": [{"key": key, "value": value} for key, value in records.items()],
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            upsert=True
        )


class SnapshotWriter:
    """
    Schedules background snapshot writes.

    schedule() takes a callable rather than the data so that a burst of
    mutations produces one write of the latest state.
    """

    def __init__(self, backend: Optional[SnapshotBackend] = None):
        self.backend = backend
        self._pending: Dict[str, Callable[[], Dict[str, dict]]] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    async def load(self, document: str) -> Dict[str, dict]:
        """Load a document; any backend failure degrades to an empty start."""
        if not self.enabled:
            return {}
        try:
            records = await self.backend.load(document)
            logger.info(f"Loaded {len(records)} records from snapshot '{document}' ({self.backend.name})")
            return records
        except Exception as e:
            logger.error(f"Failed to load snapshot '{document}', starting empty: {e}")
            return {}

    def schedule(self, document: str, dump: Callable[[], Dict[str, dict]]) -> None:
        if not self.enabled:
            return
        self._pending[document] = dump
        task = self._tasks.get(document)
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._drain(document))
            self._tasks[document] = task
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _drain(self, document: str) -> None:
        while document in self._pending:
            dump = self._pending.pop(document)
            try:
                await self.backend.save(document, dump())
            except Exception as e:
                logger.error(f"Snapshot write failed for '{document}' ({self.backend.name}): {e}")

    async def flush(self) -> None:
        """Wait for every scheduled write. Used at shutdown and in tests."""
        while self._background:
            await asyncio.gather(*list(self._background))
