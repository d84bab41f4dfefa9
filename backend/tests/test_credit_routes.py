"""
API Tests for the Credit Wallet Routes
======================================

Runs the FastAPI app in-process with TestClient (memory-only persistence,
no Stripe key, fake generation gateway).
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from server import create_app
from utils.environment import AppSettings


class FakeGateway:
    configured = True

    async def generate(self, images, prompt):
        return "data:image/png;base64,AAAA"


def make_client(**overrides) -> TestClient:
    return TestClient(create_app(AppSettings(**overrides), gateway=FakeGateway()))


@pytest.fixture
def client():
    with make_client() as c:
        yield c


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["geminiConfigured"] is True
        assert data["paymentsConfigured"] is False
        assert data["persistence"] == "memory"


class TestCreditEndpoints:

    def test_request_free_then_repeat(self, client):
        first = client.post("/api/credits/request-free")
        second = client.post("/api/credits/request-free")

        assert first.status_code == 200
        assert first.json()["balance"] == 5
        assert first.json()["alreadyClaimed"] is False
        assert second.json()["alreadyClaimed"] is True
        assert second.json()["token"] == first.json()["token"]

    def test_forwarded_for_header_does_not_create_new_claims(self, client):
        """A client rewriting X-Forwarded-For still gets one grant."""
        responses = [
            client.post("/api/credits/request-free", headers={"X-Forwarded-For": f"9.9.9.{i}"})
            for i in range(5)
        ]

        tokens = {r.json()["token"] for r in responses}
        assert len(tokens) == 1
        assert [r.json()["alreadyClaimed"] for r in responses] == [False, True, True, True, True]
        balances = client.get("/api/admin/list-balances").json()
        assert balances["total"] == 1
        assert sum(e["balance"] for e in balances["entries"]) == 5

    def test_sync_requires_token(self, client):
        response = client.post("/api/credits/sync", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing token"}

    def test_sync_unknown_token(self, client):
        response = client.post("/api/credits/sync", json={"token": "tok_new"})

        assert response.status_code == 200
        assert response.json() == {"balance": 0, "token": "tok_new"}

    def test_sync_legacy_token(self, client):
        response = client.post("/api/credits/sync", json={"token": "free_trial"})

        assert response.status_code == 200
        assert response.json()["token"] != "free_trial"
        assert response.json()["balance"] == 5

    def test_deduct_and_insufficient(self, client):
        token = client.post("/api/credits/request-free").json()["token"]

        ok = client.post("/api/credits/deduct", json={"token": token, "amount": 3, "action": "VIRTUAL_TRYON"})
        short = client.post("/api/credits/deduct", json={"token": token, "amount": 1000})

        assert ok.status_code == 200
        assert ok.json() == {"success": True, "newBalance": 2, "token": token}
        assert short.status_code == 402
        assert short.json() == {"error": "Insufficient credits", "balance": 2}

    def test_deduct_missing_fields(self, client):
        response = client.post("/api/credits/deduct", json={"token": "u1"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    @pytest.mark.parametrize("amount", ["abc", 2.5, True, -3, 0])
    def test_deduct_rejects_non_positive_integer_amounts(self, client, amount):
        client.post("/api/admin/generate-code", json={"credits": 10, "code": "TEN"})
        client.post("/api/credits/redeem-code", json={"code": "TEN", "token": "u1", "email": "a@b.co"})

        response = client.post("/api/credits/deduct", json={"token": "u1", "amount": amount})
        balance = client.post("/api/credits/sync", json={"token": "u1"}).json()["balance"]

        assert response.status_code == 400
        assert response.json() == {"error": "Amount must be a positive integer"}
        assert balance == 10

    def test_malformed_body_is_400_with_error(self, client):
        response = client.post("/api/credits/sync", json=["not", "an", "object"])

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid request body"
        assert data["details"]

    def test_packages(self, client):
        data = client.get("/api/credits/packages").json()

        assert {p["id"] for p in data["packages"]} == {"starter", "popular", "studio"}
        assert data["costs"]["VIRTUAL_TRYON"] == 3


class TestCodeEndpoints:

    def test_generate_redeem_list(self, client):
        created = client.post("/api/admin/generate-code", json={"credits": 50, "code": "welcome50"})
        assert created.status_code == 200
        assert created.json()["code"] == "WELCOME50"

        redeemed = client.post(
            "/api/credits/redeem-code",
            json={"code": "WELCOME50", "token": "u2", "email": "a@b.co"}
        )
        assert redeemed.status_code == 200
        assert redeemed.json() == {"success": True, "creditsAdded": 50, "newBalance": 50, "token": "u2"}

        again = client.post(
            "/api/credits/redeem-code",
            json={"code": "WELCOME50", "token": "u3", "email": "c@d.co"}
        )
        assert again.status_code == 400
        assert again.json() == {"error": "Credit code already used"}

        listing = client.get("/api/admin/list-codes").json()
        assert listing["total"] == 1
        assert listing["used"] == 1
        assert listing["codes"][0]["usedBy"] == "u2"

        balances = client.get("/api/admin/list-balances").json()
        assert balances["entries"][0]["balance"] == 50

    def test_redeem_errors(self, client):
        client.post("/api/admin/generate-code", json={"credits": 10, "code": "VIP", "email": "vip@x.com"})

        not_found = client.post("/api/credits/redeem-code", json={"code": "NOPE", "token": "u", "email": "a@b.co"})
        mismatch = client.post("/api/credits/redeem-code", json={"code": "VIP", "token": "u", "email": "a@b.co"})
        no_email = client.post("/api/credits/redeem-code", json={"code": "VIP", "token": "u"})

        assert not_found.status_code == 404
        assert not_found.json()["error"] == "Invalid credit code"
        assert mismatch.status_code == 403
        assert no_email.status_code == 400
        assert no_email.json()["error"] == "Email is required to redeem code"

    def test_duplicate_and_invalid_amount(self, client):
        client.post("/api/admin/generate-code", json={"credits": 10, "code": "DUP"})

        duplicate = client.post("/api/admin/generate-code", json={"credits": 10, "code": "dup"})
        invalid = client.post("/api/admin/generate-code", json={"credits": 0})
        wrong_type = client.post("/api/admin/generate-code", json={"credits": "lots"})
        boolean = client.post("/api/admin/generate-code", json={"credits": True})

        assert duplicate.status_code == 400
        assert duplicate.json()["error"] == "Code already exists"
        assert invalid.status_code == 400
        assert invalid.json()["error"] == "Invalid credits amount"
        assert wrong_type.status_code == 400
        assert wrong_type.json() == {"error": "Invalid credits amount"}
        assert boolean.status_code == 400
        assert client.get("/api/admin/list-codes").json()["total"] == 1


class TestAdminKey:

    def test_admin_routes_require_configured_key(self):
        with make_client(admin_api_key="s3cret") as client:
            denied = client.get("/api/admin/list-codes")
            wrong = client.get("/api/admin/list-codes", headers={"X-Admin-Key": "nope"})
            allowed = client.get("/api/admin/list-codes", headers={"X-Admin-Key": "s3cret"})

        assert denied.status_code == 403
        assert wrong.status_code == 403
        assert allowed.status_code == 200

    def test_credit_routes_stay_open(self):
        with make_client(admin_api_key="s3cret") as client:
            response = client.post("/api/credits/sync", json={"token": "u1"})

        assert response.status_code == 200


class TestPaymentEndpoints:

    def test_checkout_without_stripe_key(self, client):
        response = client.post("/api/payment/create-checkout", json={"packageId": "starter", "token": "u1"})

        assert response.status_code == 500
        assert response.json()["error"] == "Payment provider is not configured"

    def test_checkout_and_verify(self):
        session = SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")
        paid = SimpleNamespace(
            id="cs_test_1",
            payment_status="paid",
            metadata={"token": "u1", "credits": "20", "package_id": "starter"},
        )

        with make_client(stripe_secret_key="sk_test_1") as client, \
                patch("stripe.checkout.Session.create", MagicMock(return_value=session)), \
                patch("stripe.checkout.Session.retrieve", MagicMock(return_value=paid)):
            checkout = client.post("/api/payment/create-checkout", json={"packageId": "starter", "token": "u1"})
            first = client.post("/api/payment/verify", json={"sessionId": "cs_test_1"})
            second = client.post("/api/payment/verify", json={"sessionId": "cs_test_1"})

        assert checkout.json() == {"sessionId": "cs_test_1", "url": session.url}
        assert first.json() == {
            "success": True, "creditsAdded": 20, "newBalance": 20, "token": "u1", "alreadyProcessed": False
        }
        assert second.json()["alreadyProcessed"] is True
        assert second.json()["newBalance"] == 20
