"""
Code Registry

Issued redemption codes and their redemption state.

Codes are normalized (trim + upper-case) at the boundary, so the registry
key space is case-canonical and lookups never scan.

Redemption is a two-step transaction: the used:false -> true transition is
the gate, and the ledger is credited only after the gate is won. A failure
while crediting leaves the code consumed rather than risking a double grant
on retry.
"""

import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .config import (
    CODES_DOCUMENT,
    EMAIL_PATTERN,
    ERROR_MESSAGES,
    GENERATED_CODE_ALPHABET,
    GENERATED_CODE_LENGTH,
    MAX_CODE_GENERATION_ATTEMPTS,
)
from .errors import (
    CodeAlreadyUsed,
    CodeNotFound,
    CreditGrantFailed,
    DuplicateCode,
    EmailMismatch,
    InvalidEmailFormat,
    ValidationError,
)
from .kv_store import KeyedStore
from .ledger_store import LedgerStore
from .models import RedeemResult, RedemptionCode
from .persistence import SnapshotWriter

logger = logging.getLogger(__name__)

_email_re = re.compile(EMAIL_PATTERN)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> str:
    """Normalize and check a local@domain.tld address."""
    normalized = normalize_email(email)
    if not _email_re.match(normalized):
        raise InvalidEmailFormat()
    return normalized


def generate_code() -> str:
    return "".join(secrets.choice(GENERATED_CODE_ALPHABET) for _ in range(GENERATED_CODE_LENGTH))


class CodeRegistry:

    def __init__(self, ledger: LedgerStore, writer: Optional[SnapshotWriter] = None):
        self.ledger = ledger
        self.codes: KeyedStore[RedemptionCode] = KeyedStore(CODES_DOCUMENT, RedemptionCode, writer)

    async def initialize(self) -> int:
        return await self.codes.initialize()

    def get(self, code: str) -> Optional[RedemptionCode]:
        return self.codes.get(normalize_code(code))

    # ==================== ISSUANCE ====================

    async def issue(
        self,
        credits: Optional[int],
        code: Optional[str] = None,
        restricted_email: Optional[str] = None
    ) -> RedemptionCode:
        """
        Issue a new redemption code.

        Explicit codes are rejected on collision; generated codes are retried.
        """
        if not isinstance(credits, int) or isinstance(credits, bool) or credits <= 0:
            raise ValidationError(ERROR_MESSAGES["INVALID_AMOUNT"])

        email = validate_email(restricted_email) if restricted_email else None

        if code is not None and normalize_code(code):
            return await self._insert(normalize_code(code), credits, email)

        for attempt in range(MAX_CODE_GENERATION_ATTEMPTS):
            try:
                return await self._insert(generate_code(), credits, email)
            except DuplicateCode:
                logger.warning(f"Generated code collided, retrying (attempt {attempt + 1})")
        raise DuplicateCode("Could not generate a unique code. Please try again.")

    async def _insert(self, code: str, credits: int, email: Optional[str]) -> RedemptionCode:
        record = RedemptionCode(
            code=code,
            credits=credits,
            restricted_email=email,
            created_at=datetime.now(timezone.utc).isoformat()
        )
        async with self.codes.lock(code):
            if not self.codes.compare_and_swap(code, None, record):
                raise DuplicateCode()

        restriction = f" (restricted to: {email})" if email else ""
        logger.info(f"Generated credit code: {code} for {credits} credits{restriction}")
        return record

    # ==================== REDEMPTION ====================

    async def redeem(self, code: Optional[str], token: Optional[str], email: Optional[str]) -> RedeemResult:
        """
        Redeem a code for the given token.

        Failure modes, checked in order:
            ValidationError / InvalidEmailFormat, CodeNotFound,
            CodeAlreadyUsed, EmailMismatch, CreditGrantFailed
        """
        normalized_code = normalize_code(code)
        if not normalized_code or not token:
            raise ValidationError(ERROR_MESSAGES["MISSING_CODE_OR_TOKEN"])
        if not normalize_email(email):
            raise ValidationError(ERROR_MESSAGES["EMAIL_REQUIRED"])
        normalized_email = validate_email(email)

        logger.info(f"Attempting to redeem code: {normalized_code} with email: {normalized_email}")

        async with self.codes.lock(normalized_code):
            record = await self.codes.fetch(normalized_code)
            if record is None:
                logger.info(f"Code {normalized_code} not found")
                raise CodeNotFound()

            if record.used:
                logger.info(f"Code {normalized_code} has already been used by email: {record.used_by_email}")
                raise CodeAlreadyUsed()

            if record.restricted_email and record.restricted_email != normalized_email:
                logger.info(f"Email mismatch. Code email: {record.restricted_email}, provided email: {normalized_email}")
                raise EmailMismatch()

            consumed = record.model_copy(update={
                "used": True,
                "used_by_token": token,
                "used_by_email": normalized_email,
                "used_at": datetime.now(timezone.utc).isoformat(),
            })
            if not self.codes.compare_and_swap(normalized_code, record, consumed):
                raise CodeAlreadyUsed()

        try:
            new_balance = await self.ledger.credit(token, record.credits)
        except Exception as e:
            logger.error(f"Code {normalized_code} consumed but crediting token {token} failed: {e}")
            raise CreditGrantFailed()

        logger.info(
            f"Redeemed code {normalized_code} for {record.credits} credits. "
            f"Email: {normalized_email}. Token: {token}. New balance: {new_balance}"
        )
        return RedeemResult(token=token, credits_added=record.credits, new_balance=new_balance)

    # ==================== LISTING ====================

    def list_codes(self) -> List[RedemptionCode]:
        """All codes, newest first."""
        codes = self.codes.values()
        codes.reverse()
        return sorted(codes, key=lambda c: c.created_at, reverse=True)

    def stats(self) -> Dict[str, int]:
        codes = self.codes.values()
        used = sum(1 for c in codes if c.used)
        return {"total": len(codes), "used": used, "unused": len(codes) - used}
