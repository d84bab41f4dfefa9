"""
Virtual Try-On API server

Credit wallet (free trials, codes, deductions, Stripe checkout) plus the
Gemini image generation endpoints, all under /api.

Run:
    uvicorn server:app --host 0.0.0.0 --port ${PORT:-3000} \
        --proxy-headers --forwarded-allow-ips=<proxy ip>

The free-trial origin is the client address uvicorn reports. Only proxies
listed in --forwarded-allow-ips may set it through X-Forwarded-For.
"""
from fastapi import FastAPI, APIRouter, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional
import logging

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from credit_wallet.config import ERROR_MESSAGES
from credit_wallet.entitlement_service import EntitlementService
from credit_wallet.errors import WalletError
from credit_wallet.payments import StripeCheckoutService
from credit_wallet.persistence import SnapshotWriter
from credit_wallet.routes import admin_router, credits_router, payment_router
from database import check_db_connection, select_snapshot_backend
from routes.gemini import gemini_router
from services.gemini_service import GeminiImageGateway
from utils.environment import AppSettings, is_production, load_settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_entitlements(settings: AppSettings, backend=None) -> EntitlementService:
    return EntitlementService.create(
        writer=SnapshotWriter(backend),
        free_credits=settings.free_trial_credits,
        checkout=StripeCheckoutService(settings.stripe_secret_key, settings.public_app_url)
    )


def create_app(settings: Optional[AppSettings] = None, gateway: Optional[GeminiImageGateway] = None) -> FastAPI:
    settings = settings or load_settings()

    app = FastAPI(title="Virtual Try-On API")
    app.state.settings = settings
    app.state.gateway = gateway or GeminiImageGateway(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout_seconds=settings.gemini_timeout_seconds
    )
    app.state.mongo_client = None

    api_router = APIRouter(prefix="/api")
    api_router.include_router(credits_router)
    api_router.include_router(admin_router)
    api_router.include_router(payment_router)
    api_router.include_router(gemini_router)

    @api_router.get("/health")
    async def health(request: Request):
        entitlements = request.app.state.entitlements
        backend = entitlements.writer.backend
        return {
            "status": "ok",
            "geminiConfigured": request.app.state.gateway.configured,
            "paymentsConfigured": entitlements.payments_configured,
            "persistence": backend.name if backend else "memory",
        }

    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WalletError)
    async def wallet_error_handler(request: Request, exc: WalletError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'body'}: {error['msg']}"
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": ERROR_MESSAGES["INVALID_REQUEST"], "details": details}
        )

    @app.on_event("startup")
    async def startup():
        backend, mongo_client = select_snapshot_backend(settings)
        if mongo_client is not None:
            app.state.mongo_client = mongo_client
            ok, error = await check_db_connection(mongo_client, settings.db_name)
            if not ok:
                logger.warning(f"Continuing with in-memory credits until MongoDB is reachable: {error}")

        app.state.entitlements = build_entitlements(settings, backend)
        await app.state.entitlements.initialize()

        logger.info(f"Gemini API Key configured: {app.state.gateway.configured}")
        logger.info(f"Refund on generation failure: {settings.refund_on_failure}")
        if is_production() and not settings.admin_api_key:
            logger.warning("ADMIN_API_KEY is not set: admin endpoints are open")

    @app.on_event("shutdown")
    async def shutdown():
        # Let pending snapshot writes finish before the process exits
        await app.state.entitlements.shutdown()

        if app.state.mongo_client is not None:
            app.state.mongo_client.close()

    return app


app = create_app()
