"""
Unit Tests for the Code Registry
================================

Tests:
1. Issuance: explicit / generated codes, duplicates, bad amounts
2. Redemption: success, already used, email restriction, not found
3. Gate-before-credit: a failed ledger credit leaves the code consumed
4. Concurrent redemption of one code grants exactly once
5. Listing order and stats
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from credit_wallet.config import GENERATED_CODE_ALPHABET, GENERATED_CODE_LENGTH
from credit_wallet.code_registry import CodeRegistry, normalize_code, validate_email
from credit_wallet.errors import (
    CodeAlreadyUsed,
    CodeNotFound,
    CreditGrantFailed,
    DuplicateCode,
    EmailMismatch,
    InvalidEmailFormat,
    ValidationError,
)
from credit_wallet.ledger_store import LedgerStore



@pytest.fixture
def ledger():
    return LedgerStore()


@pytest.fixture
def registry(ledger):
    return CodeRegistry(ledger)


class TestNormalization:

    def test_code_trimmed_and_uppercased(self):
        assert normalize_code("  welcome50 ") == "WELCOME50"
        assert normalize_code(None) == ""

    def test_email_lowercased(self):
        assert validate_email(" User@Example.COM ") == "user@example.com"

    @pytest.mark.parametrize("email", ["plainaddress", "a@b", "a b@c.com", "@c.com"])
    def test_invalid_email_rejected(self, email):
        with pytest.raises(InvalidEmailFormat):
            validate_email(email)


class TestIssue:

    @pytest.mark.asyncio
    async def test_explicit_code_is_normalized(self, registry):
        record = await registry.issue(50, "welcome50")

        assert record.code == "WELCOME50"
        assert record.credits == 50
        assert record.used is False
        assert registry.get("Welcome50") == record

    @pytest.mark.asyncio
    async def test_generated_code_shape(self, registry):
        record = await registry.issue(25)

        assert len(record.code) == GENERATED_CODE_LENGTH
        assert all(ch in GENERATED_CODE_ALPHABET for ch in record.code)

    @pytest.mark.asyncio
    async def test_blank_code_means_generated(self, registry):
        record = await registry.issue(25, "   ")

        assert len(record.code) == GENERATED_CODE_LENGTH

    @pytest.mark.asyncio
    async def test_duplicate_explicit_code_rejected(self, registry):
        await registry.issue(50, "WELCOME50")

        with pytest.raises(DuplicateCode) as exc_info:
            await registry.issue(10, "welcome50")

        assert exc_info.value.to_dict() == {"error": "Code already exists"}
        assert registry.get("WELCOME50").credits == 50

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credits", [0, -5, None, True, "10"])
    async def test_invalid_credits_rejected(self, registry, credits):
        with pytest.raises(ValidationError) as exc_info:
            await registry.issue(credits)

        assert exc_info.value.message == "Invalid credits amount"

    @pytest.mark.asyncio
    async def test_restricted_email_is_normalized(self, registry):
        record = await registry.issue(50, "VIP50", "VIP@Example.com")

        assert record.restricted_email == "vip@example.com"


class TestRedeem:

    @pytest.mark.asyncio
    async def test_redeem_credits_ledger(self, registry, ledger):
        await registry.issue(50, "WELCOME50")

        result = await registry.redeem("welcome50", "u2", "a@b.co")

        assert result.credits_added == 50
        assert result.new_balance == 50
        assert ledger.balance("u2") == 50
        record = registry.get("WELCOME50")
        assert record.used is True
        assert record.used_by_token == "u2"
        assert record.used_by_email == "a@b.co"
        assert record.used_at

    @pytest.mark.asyncio
    async def test_redeem_adds_to_existing_balance(self, registry, ledger):
        await ledger.credit("u2", 5)
        await registry.issue(50, "WELCOME50")

        result = await registry.redeem("WELCOME50", "u2", "a@b.co")

        assert result.new_balance == 55

    @pytest.mark.asyncio
    async def test_second_redemption_rejected(self, registry, ledger):
        await registry.issue(50, "WELCOME50")
        await registry.redeem("WELCOME50", "u2", "a@b.co")

        with pytest.raises(CodeAlreadyUsed) as exc_info:
            await registry.redeem("WELCOME50", "u3", "c@d.co")

        assert exc_info.value.status_code == 400
        assert ledger.balance("u3") == 0

    @pytest.mark.asyncio
    async def test_unknown_code(self, registry):
        with pytest.raises(CodeNotFound) as exc_info:
            await registry.redeem("NOPE", "u1", "a@b.co")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_email_restriction_mismatch(self, registry, ledger):
        await registry.issue(50, "VIP50", "vip@example.com")

        with pytest.raises(EmailMismatch) as exc_info:
            await registry.redeem("VIP50", "u1", "other@example.com")

        assert exc_info.value.status_code == 403
        assert registry.get("VIP50").used is False
        assert ledger.balance("u1") == 0

    @pytest.mark.asyncio
    async def test_email_restriction_is_case_insensitive(self, registry):
        await registry.issue(50, "VIP50", "vip@example.com")

        result = await registry.redeem("VIP50", "u1", "VIP@EXAMPLE.COM")

        assert result.credits_added == 50

    @pytest.mark.asyncio
    async def test_missing_fields(self, registry):
        with pytest.raises(ValidationError) as exc_info:
            await registry.redeem("", "u1", "a@b.co")
        assert exc_info.value.message == "Missing code or token"

        with pytest.raises(ValidationError) as exc_info:
            await registry.redeem("CODE", "u1", "")
        assert exc_info.value.message == "Email is required to redeem code"

    @pytest.mark.asyncio
    async def test_invalid_email_checked_before_lookup(self, registry):
        with pytest.raises(InvalidEmailFormat):
            await registry.redeem("NOPE", "u1", "not-an-email")

    @pytest.mark.asyncio
    async def test_credit_failure_leaves_code_consumed(self, registry, ledger):
        await registry.issue(50, "WELCOME50")
        ledger.credit = AsyncMock(side_effect=RuntimeError("ledger unavailable"))

        with pytest.raises(CreditGrantFailed) as exc_info:
            await registry.redeem("WELCOME50", "u2", "a@b.co")

        assert exc_info.value.status_code == 500
        assert registry.get("WELCOME50").used is True
        with pytest.raises(CodeAlreadyUsed):
            await registry.redeem("WELCOME50", "u2", "a@b.co")

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_grant_once(self, registry, ledger, suspend_after_fetch):
        await registry.issue(50, "WELCOME50")
        suspend_after_fetch(registry.codes)

        results = await asyncio.gather(
            *[registry.redeem("WELCOME50", f"u{i}", f"user{i}@example.com") for i in range(10)],
            return_exceptions=True
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, CodeAlreadyUsed)]
        assert len(winners) == 1
        assert len(losers) == 9
        assert sum(ledger.balance(f"u{i}") for i in range(10)) == 50


class TestListing:

    @pytest.mark.asyncio
    async def test_newest_first_with_stats(self, registry):
        await registry.issue(10, "FIRST")
        await registry.issue(20, "SECOND")
        await registry.issue(30, "THIRD")
        await registry.redeem("SECOND", "u1", "a@b.co")

        codes = registry.list_codes()

        assert [c.code for c in codes] == ["THIRD", "SECOND", "FIRST"]
        assert registry.stats() == {"total": 3, "used": 1, "unused": 2}

    @pytest.mark.asyncio
    async def test_response_shape(self, registry):
        record = await registry.issue(50, "VIP50", "vip@example.com")

        body = record.to_response()

        assert body["code"] == "VIP50"
        assert body["credits"] == 50
        assert body["email"] == "vip@example.com"
        assert body["used"] is False
        assert body["usedBy"] is None
        assert "createdAt" in body
