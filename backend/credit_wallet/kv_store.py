"""
Keyed Record Store

Process-local map of pydantic records with per-key locking.

All wallet stores sit on top of this class. Callers mutate a key only
while holding lock(key), which serializes check-then-act sequences for that
key (deduct, redeem, claim) without blocking other keys. compare_and_swap()
gives the same guarantee for single-step state transitions.

A transactional database could replace this class without changing callers:
get / fetch / put / compare_and_swap / lock are the whole contract.
Reads inside a lock-held section go through the async fetch().
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .persistence import SnapshotWriter

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class _KeyLock:
    """A lock plus the number of tasks holding or waiting for it."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedStore(Generic[RecordT]):

    def __init__(
        self,
        document: str,
        record_type: Type[RecordT],
        writer: Optional[SnapshotWriter] = None
    ):
        self.document = document
        self.record_type = record_type
        self.writer = writer or SnapshotWriter()
        self._records: Dict[str, RecordT] = {}
        self._locks: Dict[str, _KeyLock] = {}

    # ==================== LIFECYCLE ====================

    async def initialize(self) -> int:
        """Load the durable snapshot, or start empty. Returns record count."""
        self._records.clear()
        raw = await self.writer.load(self.document)
        for key, value in raw.items():
            try:
                self._records[key] = self.record_type.model_validate(value)
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid '{self.document}' record {key!r}: {e}")
        return len(self._records)

    # ==================== ACCESS ====================

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for key.

        The lock is dropped once no task holds or waits for it, so keys that
        never get a record (unknown tokens, bad codes) leave nothing behind.
        """
        key_lock = self._locks.get(key)
        if key_lock is None:
            key_lock = self._locks[key] = _KeyLock()
        key_lock.users += 1
        try:
            async with key_lock.lock:
                yield
        finally:
            key_lock.users -= 1
            if key_lock.users == 0:
                del self._locks[key]

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, key: str) -> Optional[RecordT]:
        return self._records.get(key)

    async def fetch(self, key: str) -> Optional[RecordT]:
        """Read a record from inside a lock-held section."""
        return self._records.get(key)

    def values(self) -> List[RecordT]:
        return list(self._records.values())

    # ==================== MUTATION ====================

    def put(self, key: str, record: RecordT) -> RecordT:
        self._records[key] = record
        self._persist()
        return record

    def compare_and_swap(self, key: str, expected: Optional[RecordT], new: RecordT) -> bool:
        """
        Replace the record at key with new only if it still equals expected.

        expected=None means "key must be absent".
        """
        current = self._records.get(key)
        if current != expected:
            return False
        self._records[key] = new
        self._persist()
        return True

    def _dump(self) -> Dict[str, dict]:
        return {key: record.model_dump(mode="json") for key, record in self._records.items()}

    def _persist(self) -> None:
        self.writer.schedule(self.document, self._dump)

    def update(self, key: str, **changes) -> RecordT:
        """Copy-on-write field update for an existing record."""
        record = self._records[key].model_copy(update=changes)
        return self.put(key, record)
