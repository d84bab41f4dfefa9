"""
Free-Trial Registry

One free-credit grant per origin (client IP). A repeat claim returns the
existing token and its current balance without granting anything.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from .config import ERROR_MESSAGES, FREE_TRIAL_TOKEN_PREFIX, FREE_TRIALS_DOCUMENT, INITIAL_FREE_CREDITS
from .errors import ValidationError
from .kv_store import KeyedStore
from .ledger_store import LedgerStore
from .models import ClaimResult, FreeTrialClaim
from .persistence import SnapshotWriter

logger = logging.getLogger(__name__)


def new_trial_token() -> str:
    return f"{FREE_TRIAL_TOKEN_PREFIX}{uuid.uuid4().hex}"


class FreeTrialRegistry:

    def __init__(
        self,
        ledger: LedgerStore,
        free_credits: int = INITIAL_FREE_CREDITS,
        writer: Optional[SnapshotWriter] = None
    ):
        self.ledger = ledger
        self.free_credits = free_credits
        self.claims: KeyedStore[FreeTrialClaim] = KeyedStore(FREE_TRIALS_DOCUMENT, FreeTrialClaim, writer)

    async def initialize(self) -> int:
        return await self.claims.initialize()

    async def claim(self, origin_key: Optional[str]) -> ClaimResult:
        origin_key = (origin_key or "").strip()
        if not origin_key:
            raise ValidationError(ERROR_MESSAGES["MISSING_ORIGIN"])

        # Held across token generation, ledger creation and claim recording so
        # two first-time requests from one origin cannot both be granted.
        async with self.claims.lock(origin_key):
            existing = await self.claims.fetch(origin_key)
            if existing:
                return ClaimResult(
                    token=existing.token,
                    balance=self.ledger.balance(existing.token),
                    already_claimed=True
                )

            token = new_trial_token()
            entry = await self.ledger.get_or_create(token, self.free_credits)
            self.claims.put(origin_key, FreeTrialClaim(
                origin_key=origin_key,
                token=token,
                claimed_at=datetime.now(timezone.utc).isoformat()
            ))

        logger.info(f"Granted {self.free_credits} free credits to {token} (origin={origin_key})")
        return ClaimResult(token=token, balance=entry.balance, already_claimed=False)
