"""
Credit Wallet Configuration and Constants

Credit costs, credit packages and error messages are defined here.
Runtime settings (keys, data dir, policies) live in utils.environment.
"""

# ==================== FREE TRIAL ====================
INITIAL_FREE_CREDITS = 5

# Shared token handed out by older clients before per-origin claims existed.
# It is never used as a ledger key.
LEGACY_FREE_TRIAL_TOKEN = "free_trial"

FREE_TRIAL_TOKEN_PREFIX = "ft_"

# ==================== ACTION CREDIT COSTS ====================
CREDIT_COSTS = {
    "MODEL_GENERATION": 2,
    "VIRTUAL_TRYON": 3,
    "POSE_VARIATION": 1,
}

# ==================== CREDIT PACKAGES (USD) ====================
CREDIT_PACKAGES = {
    "starter": {
        "name": "Starter",
        "credits": 20,
        "price_usd": 4.99,
    },
    "popular": {
        "name": "Popular",
        "credits": 60,
        "price_usd": 12.99,
        "popular": True,
    },
    "studio": {
        "name": "Studio",
        "credits": 150,
        "price_usd": 29.99,
    },
}

# ==================== REDEMPTION CODES ====================
GENERATED_CODE_LENGTH = 10
GENERATED_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MAX_CODE_GENERATION_ATTEMPTS = 5

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# ==================== SNAPSHOT DOCUMENTS ====================
LEDGER_DOCUMENT = "ledger"
CODES_DOCUMENT = "codes"
FREE_TRIALS_DOCUMENT = "free_trials"
PAYMENTS_DOCUMENT = "payments"

SNAPSHOT_COLLECTION = "credit_snapshots"

# ==================== ERROR MESSAGES ====================
ERROR_MESSAGES = {
    "MISSING_FIELDS": "Missing required fields",
    "INVALID_REQUEST": "Invalid request body",
    "MISSING_TOKEN": "Missing token",
    "MISSING_ORIGIN": "Could not determine request origin",
    "MISSING_CODE_OR_TOKEN": "Missing code or token",
    "EMAIL_REQUIRED": "Email is required to redeem code",
    "INVALID_EMAIL": "Invalid email format",
    "INVALID_AMOUNT": "Invalid credits amount",
    "INSUFFICIENT_CREDITS": "Insufficient credits",
    "CODE_NOT_FOUND": "Invalid credit code",
    "CODE_ALREADY_USED": "Credit code already used",
    "EMAIL_MISMATCH": "This code is restricted to a different email address",
    "DUPLICATE_CODE": "Code already exists",
    "CREDIT_GRANT_FAILED": "Code was consumed but credits could not be added. Please contact support.",
    "PAYMENT_NOT_CONFIGURED": "Payment provider is not configured",
    "PAYMENT_NOT_COMPLETED": "Payment has not been completed",
    "PAYMENT_PROVIDER_ERROR": "Payment provider request failed",
    "UNKNOWN_PACKAGE": "Invalid package_id",
}
