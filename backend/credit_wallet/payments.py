"""
Stripe Checkout for Credit Packages

Implements one-time credit package purchases with Stripe Checkout Sessions
and idempotent reconciliation of paid sessions into the ledger.

Flow:
1. create_checkout() opens a session with metadata {token, credits, package_id}
2. The browser returns to success_url with ?session_id=...
3. reconcile() verifies the session is paid and credits the ledger once

Required Environment Variables:
- STRIPE_SECRET_KEY
- PUBLIC_APP_URL (return URLs when the client does not supply them)
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from .config import CREDIT_PACKAGES, ERROR_MESSAGES, PAYMENTS_DOCUMENT
from .errors import (
    CreditGrantFailed,
    PaymentNotCompleted,
    PaymentNotConfigured,
    PaymentProviderError,
    ValidationError,
)
from .kv_store import KeyedStore
from .ledger_store import LedgerStore
from .models import PaymentRecord, ReconcileResult
from .persistence import SnapshotWriter

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    try:
        return obj[name]
    except (KeyError, TypeError):
        return getattr(obj, name, None)


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class StripeCheckoutService:
    """Thin async wrapper over the Stripe Checkout Session API."""

    def __init__(self, secret_key: Optional[str], public_app_url: str = "http://localhost:3000"):
        self.secret_key = secret_key
        self.public_app_url = public_app_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def _require_key(self):
        if not self.configured:
            raise PaymentNotConfigured()
        stripe.api_key = self.secret_key

    async def create_session(
        self,
        package_id: str,
        token: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a Checkout Session for a credit package.

        Returns:
            Dict with session_id and url
        """
        pack = CREDIT_PACKAGES.get(package_id)
        if not pack:
            raise ValidationError(
                f"{ERROR_MESSAGES['UNKNOWN_PACKAGE']}. Valid options: {list(CREDIT_PACKAGES.keys())}"
            )
        if not token:
            raise ValidationError(ERROR_MESSAGES["MISSING_TOKEN"])

        self._require_key()

        checkout_params = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": "usd",
                    "unit_amount": int(round(pack["price_usd"] * 100)),
                    "product_data": {"name": f"{pack['name']} - {pack['credits']} credits"},
                },
                "quantity": 1,
            }],
            "metadata": {
                "token": token,
                "credits": str(pack["credits"]),
                "package_id": package_id,
            },
            "success_url": success_url or f"{self.public_app_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": cancel_url or f"{self.public_app_url}/?payment=cancelled",
        }

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **checkout_params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout creation failed: {e}")
            raise PaymentProviderError(f"Failed to create checkout session: {e}")

        logger.info(f"Created checkout session {_field(session, 'id')} for {package_id} (token={token})")
        return {"session_id": _field(session, "id"), "url": _field(session, "url")}

    async def retrieve_session(self, session_id: str) -> Any:
        self._require_key()
        try:
            return await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup failed for {session_id}: {e}")
            raise PaymentProviderError(f"Failed to verify checkout session: {e}")


class PaymentRegistry:
    """
    Reconciled checkout sessions, keyed by session id.

    A paid session is recorded first, then credited, then flagged
    credited=True, all under the session lock. A verification that finds a
    credited record returns it unchanged; one that finds an uncredited record
    (an earlier credit failed) completes the credit. Either way a session is
    credited once.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        checkout: StripeCheckoutService,
        writer: Optional[SnapshotWriter] = None
    ):
        self.ledger = ledger
        self.checkout = checkout
        self.records: KeyedStore[PaymentRecord] = KeyedStore(PAYMENTS_DOCUMENT, PaymentRecord, writer)

    async def initialize(self) -> int:
        return await self.records.initialize()

    async def reconcile(
        self,
        session_id: Optional[str],
        token: Optional[str] = None,
        credits: Optional[int] = None
    ) -> ReconcileResult:
        if not session_id:
            raise ValidationError("Missing sessionId")

        async with self.records.lock(session_id):
            existing = await self.records.fetch(session_id)
            if existing and existing.credited:
                logger.info(f"Checkout session {session_id} already reconciled")
                return ReconcileResult(
                    session_id=session_id,
                    token=existing.token,
                    credits_added=existing.credits,
                    new_balance=self.ledger.balance(existing.token),
                    already_processed=True
                )

            if existing:
                # Recorded by an earlier call whose ledger credit failed
                logger.info(f"Completing credit for checkout session {session_id}")
                record = existing
            else:
                record = await self._record_paid_session(session_id, token, credits)

            # Credit and flag are settled under the session lock, so a
            # session is credited at most once.
            try:
                new_balance = await self.ledger.credit(record.token, record.credits)
            except Exception as e:
                logger.error(f"Session {session_id} recorded but crediting {record.token} failed: {e}")
                raise CreditGrantFailed()
            self.records.put(session_id, record.model_copy(update={"credited": True}))

        logger.info(f"Credited {record.credits} credits to {record.token} for checkout session {session_id}")
        return ReconcileResult(
            session_id=session_id,
            token=record.token,
            credits_added=record.credits,
            new_balance=new_balance
        )

    async def _record_paid_session(
        self,
        session_id: str,
        token: Optional[str],
        credits: Optional[int]
    ) -> PaymentRecord:
        """Verify the session is paid and store its (not yet credited) record."""
        session = await self.checkout.retrieve_session(session_id)
        payment_status = _field(session, "payment_status")
        if payment_status != "paid":
            logger.info(f"Checkout session {session_id} not paid (status={payment_status})")
            raise PaymentNotCompleted(payment_status=payment_status)

        # Session metadata was written by create_session and wins over
        # values supplied by the browser.
        metadata = _field(session, "metadata") or {}
        target_token = _field(metadata, "token") or token
        amount = _int_or_none(_field(metadata, "credits")) or credits
        if not target_token:
            raise ValidationError(ERROR_MESSAGES["MISSING_TOKEN"])
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError(ERROR_MESSAGES["INVALID_AMOUNT"])

        return self.records.put(session_id, PaymentRecord(
            session_id=session_id,
            token=target_token,
            credits=amount,
            package_id=_field(metadata, "package_id"),
            reconciled_at=datetime.now(timezone.utc).isoformat()
        ))
