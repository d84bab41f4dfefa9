"""
Credit Wallet API Routes

Endpoints:
- POST /api/credits/request-free - Claim free-trial credits for this origin
- POST /api/credits/sync - Get current balance
- POST /api/credits/deduct - Spend credits
- POST /api/credits/redeem-code - Redeem a credit code
- GET /api/credits/packages - Credit packages and action costs
- POST /api/admin/generate-code - Issue a credit code
- GET /api/admin/list-codes - List codes with usage stats
- GET /api/admin/list-balances - List ledger entries
- POST /api/payment/create-checkout - Start a Stripe checkout
- POST /api/payment/verify - Credit a paid checkout session (idempotent)

Wallet failures are raised as WalletError and rendered by the handler
registered in server.py as {"error": ..., ...} with the matching status.
"""

import logging

from fastapi import APIRouter, Depends, Request

from utils.auth import get_admin_access, get_origin_key
from credit_wallet.config import CREDIT_COSTS, CREDIT_PACKAGES, ERROR_MESSAGES
from credit_wallet.entitlement_service import EntitlementService
from credit_wallet.errors import ValidationError
from credit_wallet.models import (
    CreateCheckoutRequest,
    DeductRequest,
    GenerateCodeRequest,
    RedeemCodeRequest,
    SyncRequest,
    VerifyPaymentRequest,
)

logger = logging.getLogger(__name__)

credits_router = APIRouter(prefix="/credits", tags=["Credits"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(get_admin_access)])
payment_router = APIRouter(prefix="/payment", tags=["Payment"])


def get_entitlements(request: Request) -> EntitlementService:
    return request.app.state.entitlements


# ==================== CREDIT ENDPOINTS ====================

@credits_router.post("/request-free")
async def request_free_credits(request: Request, service: EntitlementService = Depends(get_entitlements)):
    """
    Claim free-trial credits.

    One grant per origin: a repeat claim returns the existing token and
    balance with alreadyClaimed=true.
    """
    claim = await service.request_free_credits(get_origin_key(request))
    return {
        "success": True,
        "token": claim.token,
        "balance": claim.balance,
        "alreadyClaimed": claim.already_claimed,
    }


@credits_router.post("/sync")
async def sync_credits(body: SyncRequest, request: Request, service: EntitlementService = Depends(get_entitlements)):
    """
    Get the server-side balance for a token.

    The legacy shared "free_trial" token is swapped for this origin's own
    free-trial token; clients must store the token returned here.
    """
    if not body.token:
        raise ValidationError(ERROR_MESSAGES["MISSING_TOKEN"])

    result = await service.sync(body.token, get_origin_key(request))
    return {"balance": result.balance, "token": result.token}


@credits_router.post("/deduct")
async def deduct_credits(body: DeductRequest, service: EntitlementService = Depends(get_entitlements)):
    """
    Spend credits before a costed action.

    Returns 402 with the current balance when credits are insufficient.
    """
    new_balance = await service.deduct(body.token, body.amount, body.action)
    return {"success": True, "newBalance": new_balance, "token": body.token}


@credits_router.post("/redeem-code")
async def redeem_code(body: RedeemCodeRequest, service: EntitlementService = Depends(get_entitlements)):
    """Redeem a single-use credit code."""
    result = await service.redeem_code(body.code, body.token, body.email)
    return {
        "success": True,
        "creditsAdded": result.credits_added,
        "newBalance": result.new_balance,
        "token": result.token,
    }


@credits_router.get("/packages")
async def get_credit_packages():
    """Credit packages for purchase and the cost of each action."""
    return {
        "packages": [
            {"id": package_id, **package}
            for package_id, package in CREDIT_PACKAGES.items()
        ],
        "costs": CREDIT_COSTS,
        "currency": "USD",
    }


# ==================== ADMIN ENDPOINTS ====================

@admin_router.post("/generate-code")
async def generate_code(body: GenerateCodeRequest, service: EntitlementService = Depends(get_entitlements)):
    """Issue a credit code (random unless an explicit code is given)."""
    record = await service.generate_code(body.credits, body.code, body.email)
    return {
        "success": True,
        "code": record.code,
        "credits": record.credits,
        "email": record.restricted_email,
    }


@admin_router.get("/list-codes")
async def list_codes(service: EntitlementService = Depends(get_entitlements)):
    """All codes, newest first, with total/used/unused counts."""
    listing = service.list_codes()
    return {
        "total": listing["total"],
        "used": listing["used"],
        "unused": listing["unused"],
        "codes": [code.to_response() for code in listing["codes"]],
    }


@admin_router.get("/list-balances")
async def list_balances(service: EntitlementService = Depends(get_entitlements)):
    entries = service.balances()
    return {
        "total": len(entries),
        "entries": [
            {"token": e.token, "balance": e.balance, "createdAt": e.created_at, "updatedAt": e.updated_at}
            for e in entries
        ],
    }


# ==================== PAYMENT ENDPOINTS ====================

@payment_router.post("/create-checkout")
async def create_checkout(body: CreateCheckoutRequest, service: EntitlementService = Depends(get_entitlements)):
    """Create a Stripe checkout session and return its URL for redirect."""
    session = await service.create_checkout(body.package_id, body.token, body.success_url, body.cancel_url)
    return {"sessionId": session["session_id"], "url": session["url"]}


@payment_router.post("/verify")
async def verify_payment(body: VerifyPaymentRequest, service: EntitlementService = Depends(get_entitlements)):
    """
    Credit a paid checkout session.

    Safe to call repeatedly: a session is credited once, later calls
    return alreadyProcessed=true.
    """
    result = await service.reconcile_payment(body.session_id, body.token, body.credits)
    return {
        "success": True,
        "creditsAdded": result.credits_added,
        "newBalance": result.new_balance,
        "token": result.token,
        "alreadyProcessed": result.already_processed,
    }
