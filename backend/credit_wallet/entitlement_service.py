"""
Entitlement Service

The only mutation surface of the credit wallet. Orchestrates balance
queries, deductions, free-trial grants, code redemption and payment
reconciliation over the stores it is given.

Usage:
    service = EntitlementService.create(writer=SnapshotWriter(backend))
    await service.initialize()

    balance = await service.deduct(token, CREDIT_COSTS["VIRTUAL_TRYON"], "VIRTUAL_TRYON")
    # ... only now call the generation gateway

IMPORTANT: deduct() must run before any costed call to a collaborator.
Nothing is refunded automatically when that call fails; callers opt in with
refund() (see REFUND_ON_FAILURE).
"""

import logging
from typing import Any, Dict, List, Optional

from .code_registry import CodeRegistry
from .config import ERROR_MESSAGES, INITIAL_FREE_CREDITS, LEGACY_FREE_TRIAL_TOKEN
from .errors import ValidationError
from .free_trial import FreeTrialRegistry
from .ledger_store import LedgerStore
from .models import ClaimResult, LedgerEntry, ReconcileResult, RedeemResult, RedemptionCode, SyncResult
from .payments import PaymentRegistry, StripeCheckoutService
from .persistence import SnapshotWriter

logger = logging.getLogger(__name__)


class EntitlementService:

    def __init__(
        self,
        ledger: LedgerStore,
        codes: CodeRegistry,
        free_trials: FreeTrialRegistry,
        payments: PaymentRegistry,
        writer: Optional[SnapshotWriter] = None
    ):
        self.ledger = ledger
        self.codes = codes
        self.free_trials = free_trials
        self.payments = payments
        self.writer = writer or SnapshotWriter()

    @classmethod
    def create(
        cls,
        writer: Optional[SnapshotWriter] = None,
        free_credits: int = INITIAL_FREE_CREDITS,
        checkout: Optional[StripeCheckoutService] = None
    ) -> "EntitlementService":
        """Wire the four stores around one snapshot writer."""
        writer = writer or SnapshotWriter()
        ledger = LedgerStore(writer)
        return cls(
            ledger=ledger,
            codes=CodeRegistry(ledger, writer),
            free_trials=FreeTrialRegistry(ledger, free_credits, writer),
            payments=PaymentRegistry(ledger, checkout or StripeCheckoutService(None), writer),
            writer=writer
        )

    async def initialize(self) -> Dict[str, int]:
        """Load every store from its durable snapshot (or start empty)."""
        counts = {
            "ledger": await self.ledger.initialize(),
            "codes": await self.codes.initialize(),
            "free_trials": await self.free_trials.initialize(),
            "payments": await self.payments.initialize(),
        }
        logger.info(f"Credit wallet initialized: {counts}")
        return counts

    async def shutdown(self):
        await self.writer.flush()

    # ==================== BALANCES ====================

    async def request_free_credits(self, origin_key: Optional[str]) -> ClaimResult:
        return await self.free_trials.claim(origin_key)

    async def sync(self, token: Optional[str], origin_key: Optional[str] = None) -> SyncResult:
        """
        Current balance for a token.

        An empty token, or the legacy shared free-trial token, is resolved
        through the caller's free-trial claim. Any other unknown token gets a
        zero-balance entry; credits are never fabricated for it.
        """
        token = (token or "").strip()
        if not token or token == LEGACY_FREE_TRIAL_TOKEN:
            if not origin_key:
                raise ValidationError(ERROR_MESSAGES["MISSING_TOKEN"])
            claim = await self.free_trials.claim(origin_key)
            return SyncResult(token=claim.token, balance=claim.balance)

        entry = await self.ledger.get_or_create(token)
        return SyncResult(token=token, balance=entry.balance)

    async def deduct(self, token: Optional[str], amount: Any, action: Optional[str] = None) -> int:
        """
        Spend credits. Returns the new balance.

        Raises:
            ValidationError: missing token or non-positive amount
            InsufficientCredits: balance too low (balance unchanged)
        """
        if not token or amount is None:
            raise ValidationError(ERROR_MESSAGES["MISSING_FIELDS"])
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("Amount must be a positive integer")

        new_balance = await self.ledger.deduct(token, amount)
        logger.info(f"Deducted {amount} credits for {action or 'unspecified'}. Token: {token}. New balance: {new_balance}")
        return new_balance

    async def refund(self, token: str, amount: int, action: Optional[str] = None) -> int:
        """Give back a deduction whose costed call failed."""
        new_balance = await self.ledger.credit(token, amount)
        logger.info(f"Refunded {amount} credits for failed {action or 'action'}. Token: {token}. New balance: {new_balance}")
        return new_balance

    def balances(self) -> List[LedgerEntry]:
        return self.ledger.snapshot()

    # ==================== CODES ====================

    async def redeem_code(self, code: Optional[str], token: Optional[str], email: Optional[str]) -> RedeemResult:
        return await self.codes.redeem(code, token, email)

    async def generate_code(
        self,
        credits: Optional[int],
        code: Optional[str] = None,
        email: Optional[str] = None
    ) -> RedemptionCode:
        return await self.codes.issue(credits, code, email)

    def list_codes(self) -> Dict[str, Any]:
        return {
            **self.codes.stats(),
            "codes": self.codes.list_codes(),
        }

    # ==================== PAYMENTS ====================

    @property
    def payments_configured(self) -> bool:
        return self.payments.checkout.configured

    async def create_checkout(
        self,
        package_id: str,
        token: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.payments.checkout.create_session(package_id, token, success_url, cancel_url)

    async def reconcile_payment(
        self,
        session_id: Optional[str],
        token: Optional[str] = None,
        credits: Optional[int] = None
    ) -> ReconcileResult:
        return await self.payments.reconcile(session_id, token, credits)
