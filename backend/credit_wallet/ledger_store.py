"""
Ledger Store

Per-token credit balances. Source of truth for spend authorization.

CRITICAL: every read-modify-write of a balance happens under the per-token
lock, so concurrent deductions for one token can never drive the balance
negative or lose an update. Deductions for different tokens do not contend.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from .config import LEDGER_DOCUMENT
from .errors import InsufficientCredits, ValidationError
from .kv_store import KeyedStore
from .models import LedgerEntry
from .persistence import SnapshotWriter

logger = logging.getLogger(__name__)


class LedgerStore:
    """Balances keyed by identity token."""

    def __init__(self, writer: Optional[SnapshotWriter] = None):
        self.entries: KeyedStore[LedgerEntry] = KeyedStore(LEDGER_DOCUMENT, LedgerEntry, writer)

    async def initialize(self) -> int:
        return await self.entries.initialize()

    def get(self, token: str) -> Optional[LedgerEntry]:
        return self.entries.get(token)

    def balance(self, token: str) -> int:
        entry = self.entries.get(token)
        return entry.balance if entry else 0

    async def get_or_create(self, token: str, initial_balance: int = 0) -> LedgerEntry:
        """
        Get existing entry or create one lazily.

        Concurrent creators for the same token serialize on the token lock;
        the second caller observes the first caller's entry and its
        initial_balance is ignored.
        """
        if not token:
            raise ValidationError("Missing token")
        if initial_balance < 0:
            raise ValidationError("Initial balance cannot be negative")

        async with self.entries.lock(token):
            return await self._get_or_create_locked(token, initial_balance)

    async def _get_or_create_locked(self, token: str, initial_balance: int) -> LedgerEntry:
        entry = await self.entries.fetch(token)
        if entry:
            return entry

        now = datetime.now(timezone.utc).isoformat()
        entry = LedgerEntry(token=token, balance=initial_balance, created_at=now, updated_at=now)
        self.entries.put(token, entry)
        logger.info(f"Created ledger entry {token} with {initial_balance} credits")
        return entry

    async def deduct(self, token: str, amount: int) -> int:
        """
        Atomically deduct credits.

        Raises:
            InsufficientCredits: amount exceeds the balance (balance unchanged)

        Returns:
            New balance
        """
        if amount <= 0:
            raise ValidationError("Deduction amount must be positive")

        async with self.entries.lock(token):
            entry = await self.entries.fetch(token)
            balance = entry.balance if entry else 0

            if amount > balance:
                raise InsufficientCredits(balance=balance)

            new_balance = balance - amount
            self.entries.update(
                token,
                balance=new_balance,
                updated_at=datetime.now(timezone.utc).isoformat()
            )
            return new_balance

    async def credit(self, token: str, amount: int) -> int:
        """Atomically add credits, creating the entry if needed. Returns new balance."""
        if amount <= 0:
            raise ValidationError("Credit amount must be positive")

        async with self.entries.lock(token):
            entry = await self._get_or_create_locked(token, 0)
            new_balance = entry.balance + amount
            self.entries.update(
                token,
                balance=new_balance,
                updated_at=datetime.now(timezone.utc).isoformat()
            )
            return new_balance

    def snapshot(self) -> List[LedgerEntry]:
        """All entries, oldest first. Diagnostics only."""
        return sorted(self.entries.values(), key=lambda e: e.created_at)
