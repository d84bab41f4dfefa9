"""
Gemini Routes - image generation endpoints

- POST /api/gemini/model-image - user photo -> studio model image
- POST /api/gemini/virtual-tryon - model image + garment -> try-on image
- POST /api/gemini/pose-variation - try-on image -> new pose

Prompts come from the client. When the request carries a credit token the
action is charged here, after the images are validated and before Gemini is
called. A failed generation keeps its charge unless REFUND_ON_FAILURE is on.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import List, Optional
import logging

from credit_wallet.config import CREDIT_COSTS
from services.gemini_service import (
    GatewayNotConfiguredError,
    GenerationError,
    InvalidImageError,
    data_url_to_part,
)

logger = logging.getLogger(__name__)

gemini_router = APIRouter(prefix="/gemini", tags=["Gemini"])


class ModelImageRequest(BaseModel):
    userImage: str
    prompt: str
    token: Optional[str] = None


class VirtualTryOnRequest(BaseModel):
    modelImage: str
    garmentImage: str
    prompt: str
    token: Optional[str] = None


class PoseVariationRequest(BaseModel):
    tryOnImage: str
    prompt: str
    token: Optional[str] = None


async def run_generation(
    request: Request,
    action: str,
    images: List[str],
    prompt: str,
    token: Optional[str],
    failure_message: str
):
    """Validate -> charge (optional) -> generate -> refund per policy."""
    gateway = request.app.state.gateway
    entitlements = request.app.state.entitlements
    settings = request.app.state.settings

    if not gateway.configured:
        return JSONResponse(status_code=500, content={"error": str(GatewayNotConfiguredError())})

    try:
        parts = [data_url_to_part(image) for image in images]
    except InvalidImageError as e:
        return JSONResponse(status_code=400, content={"error": failure_message, "details": str(e)})

    new_balance = None
    if token:
        new_balance = await entitlements.deduct(token, CREDIT_COSTS[action], action)

    try:
        image_data = await gateway.generate(parts, prompt)
    except GenerationError as e:
        logger.error(f"Gemini API Error ({action}): {e}")
        content = {"error": failure_message, "details": str(e)}
        if token:
            content["refunded"] = False
            if settings.refund_on_failure:
                content["newBalance"] = await entitlements.refund(token, CREDIT_COSTS[action], action)
                content["refunded"] = True
            else:
                content["newBalance"] = new_balance
        return JSONResponse(status_code=500, content=content)

    response = {"imageData": image_data}
    if token:
        response["newBalance"] = new_balance
    return response


@gemini_router.post("/model-image")
async def generate_model_image(body: ModelImageRequest, request: Request):
    return await run_generation(
        request, "MODEL_GENERATION", [body.userImage], body.prompt, body.token,
        "Failed to generate model image"
    )


@gemini_router.post("/virtual-tryon")
async def generate_virtual_tryon(body: VirtualTryOnRequest, request: Request):
    return await run_generation(
        request, "VIRTUAL_TRYON", [body.modelImage, body.garmentImage], body.prompt, body.token,
        "Failed to generate virtual try-on image"
    )


@gemini_router.post("/pose-variation")
async def generate_pose_variation(body: PoseVariationRequest, request: Request):
    return await run_generation(
        request, "POSE_VARIATION", [body.tryOnImage], body.prompt, body.token,
        "Failed to generate pose variation"
    )
