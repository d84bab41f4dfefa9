"""
Credit Wallet Data Models

Pydantic models for wallet records and API request bodies.
Records are what the snapshot documents store (one per key).
"""

from pydantic import BaseModel, Field
from typing import Any, Optional


# ==================== STORED RECORDS ====================

class LedgerEntry(BaseModel):
    """Balance record for one identity token"""
    token: str
    balance: int = Field(0, ge=0)
    created_at: str  # ISO datetime string
    updated_at: Optional[str] = None


class RedemptionCode(BaseModel):
    """Single-use credit grant, optionally restricted to one email"""
    code: str  # always upper-case
    credits: int = Field(..., gt=0)
    restricted_email: Optional[str] = None  # always lower-case
    used: bool = False
    used_by_token: Optional[str] = None
    used_by_email: Optional[str] = None
    used_at: Optional[str] = None
    created_at: str

    def to_response(self) -> dict:
        return {
            "code": self.code,
            "credits": self.credits,
            "email": self.restricted_email,
            "used": self.used,
            "usedBy": self.used_by_token,
            "usedByEmail": self.used_by_email,
            "usedAt": self.used_at,
            "createdAt": self.created_at,
        }


class FreeTrialClaim(BaseModel):
    """Origin-scoped record preventing repeated free grants"""
    origin_key: str
    token: str
    claimed_at: str


class PaymentRecord(BaseModel):
    """Paid checkout session; credited once the ledger grant succeeds"""
    session_id: str
    token: str
    credits: int
    package_id: Optional[str] = None
    reconciled_at: str
    credited: bool = False  # set once the ledger credit has gone through


# ==================== OPERATION RESULTS ====================

class ClaimResult(BaseModel):
    token: str
    balance: int
    already_claimed: bool


class SyncResult(BaseModel):
    token: str
    balance: int


class RedeemResult(BaseModel):
    token: str
    credits_added: int
    new_balance: int


class ReconcileResult(BaseModel):
    session_id: str
    token: str
    credits_added: int
    new_balance: int
    already_processed: bool = False


# ==================== REQUEST BODIES ====================
# Field names follow the JSON the browser client already sends.
# Amounts are Any: the wallet checks them itself so a bad value gets its 400.

class SyncRequest(BaseModel):
    token: Optional[str] = None


class DeductRequest(BaseModel):
    token: Optional[str] = None
    amount: Any = None
    action: Optional[str] = None


class RedeemCodeRequest(BaseModel):
    code: Optional[str] = None
    token: Optional[str] = None
    email: Optional[str] = None


class GenerateCodeRequest(BaseModel):
    credits: Any = None
    code: Optional[str] = None
    email: Optional[str] = None


class CreateCheckoutRequest(BaseModel):
    package_id: str = Field(..., alias="packageId")
    token: str
    success_url: Optional[str] = Field(None, alias="successUrl")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")

    model_config = {"populate_by_name": True}


class VerifyPaymentRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    token: Optional[str] = None
    credits: Any = None

    model_config = {"populate_by_name": True}
