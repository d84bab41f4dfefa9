"""
API Tests for the Gemini Generation Routes
==========================================

Charging order and refund policy around a fake gateway.
"""

import base64
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from server import create_app
from services.gemini_service import GenerationBlockedError
from utils.environment import AppSettings

IMAGE = "data:image/png;base64," + base64.b64encode(b"fake-png-bytes").decode("ascii")
RESULT = "data:image/png;base64,UkVTVUxU"


class FakeGateway:

    def __init__(self, configured=True, error=None):
        self.configured = configured
        self.error = error
        self.calls = []

    async def generate(self, images, prompt):
        self.calls.append((images, prompt))
        if self.error:
            raise self.error
        return RESULT


def make_client(gateway, **overrides):
    return TestClient(create_app(AppSettings(**overrides), gateway=gateway))


def funded_token(client, credits=10):
    client.post("/api/admin/generate-code", json={"credits": credits, "code": "FUND"})
    client.post("/api/credits/redeem-code", json={"code": "FUND", "token": "u1", "email": "a@b.co"})
    return "u1"


class TestGeneration:

    def test_without_token_is_not_charged(self):
        gateway = FakeGateway()
        with make_client(gateway) as client:
            response = client.post("/api/gemini/model-image", json={"userImage": IMAGE, "prompt": "studio"})

        assert response.status_code == 200
        assert response.json() == {"imageData": RESULT}
        assert gateway.calls[0][1] == "studio"

    def test_charges_action_cost(self):
        with make_client(FakeGateway()) as client:
            token = funded_token(client)
            response = client.post(
                "/api/gemini/virtual-tryon",
                json={"modelImage": IMAGE, "garmentImage": IMAGE, "prompt": "wear it", "token": token}
            )

        assert response.status_code == 200
        assert response.json()["newBalance"] == 7

    def test_insufficient_credits_blocks_gateway(self):
        gateway = FakeGateway()
        with make_client(gateway) as client:
            client.post("/api/credits/sync", json={"token": "broke"})
            response = client.post(
                "/api/gemini/pose-variation",
                json={"tryOnImage": IMAGE, "prompt": "turn left", "token": "broke"}
            )

        assert response.status_code == 402
        assert response.json() == {"error": "Insufficient credits", "balance": 0}
        assert gateway.calls == []

    def test_invalid_image_is_not_charged(self):
        with make_client(FakeGateway()) as client:
            token = funded_token(client)
            response = client.post(
                "/api/gemini/model-image",
                json={"userImage": "not-a-data-url", "prompt": "x", "token": token}
            )
            balance = client.post("/api/credits/sync", json={"token": token}).json()["balance"]

        assert response.status_code == 400
        assert balance == 10

    def test_not_configured(self):
        with make_client(FakeGateway(configured=False)) as client:
            response = client.post("/api/gemini/model-image", json={"userImage": IMAGE, "prompt": "x"})

        assert response.status_code == 500
        assert response.json() == {"error": "GEMINI_API_KEY not configured"}


class TestFailurePolicy:

    @pytest.mark.parametrize("refund,expected_balance", [(False, 8), (True, 10)])
    def test_failed_generation(self, refund, expected_balance):
        gateway = FakeGateway(error=GenerationBlockedError("Request was blocked. Reason: SAFETY."))
        with make_client(gateway, refund_on_failure=refund) as client:
            token = funded_token(client)
            response = client.post(
                "/api/gemini/model-image",
                json={"userImage": IMAGE, "prompt": "x", "token": token}
            )
            balance = client.post("/api/credits/sync", json={"token": token}).json()["balance"]

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Failed to generate model image"
        assert "SAFETY" in data["details"]
        assert data["refunded"] is refund
        assert data["newBalance"] == expected_balance
        assert balance == expected_balance
