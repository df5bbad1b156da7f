"""
Integration tests for billing API routes.

Tests all billing endpoints including:
- Pricing information
- Subscription status, create, upgrade and cancel
- Usage statistics and history
- Quota checks
- Webhook event processing
"""

from datetime import timedelta

import pytest
from fastapi import status
from httpx import AsyncClient

from adapters.payments.razorpay_adapter import RazorpayAPIError
from core.domain.usage import UsageKind

pytestmark = pytest.mark.asyncio


class TestPricingEndpoint:
    """Tests for GET /billing/pricing endpoint."""

    async def test_get_pricing_returns_all_plans(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/billing/pricing")

        assert response.status_code == status.HTTP_200_OK
        plans = {plan["id"]: plan for plan in response.json()["plans"]}
        assert set(plans) == {"free", "starter", "pro"}
        assert plans["starter"]["prices"]["INR"]["monthly"] == 299
        assert plans["pro"]["limits"] == {"posts_per_month": 2000, "comments_per_month": 2000}

    async def test_pricing_no_auth_required(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/billing/pricing")

        assert response.status_code == status.HTTP_200_OK


class TestSubscriptionEndpoints:
    async def test_get_subscription_unauthorized(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/billing/subscription")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_invalid_token(self, async_client: AsyncClient):
        response = await async_client.get(
            "/api/v1/billing/subscription",
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_free_user_has_no_subscription(self, async_client, auth_headers):
        response = await async_client.get("/api/v1/billing/subscription", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["plan"] == "free"
        assert data["entitlement_paused"] is False
        assert data["subscription"] is None

    async def test_create_subscription(self, async_client, auth_headers):
        response = await async_client.post(
            "/api/v1/billing/subscription",
            json={"plan": "starter", "currency": "INR", "billing_cycle": "monthly"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["plan"] == "starter"
        assert data["status"] == "active"
        assert data["billing_cycle"] == "monthly"
        assert data["invoices"] == []

        status_response = await async_client.get("/api/v1/billing/subscription", headers=auth_headers)
        assert status_response.json()["plan"] == "starter"
        assert status_response.json()["subscription"]["external_subscription_id"] == data["external_subscription_id"]

    async def test_create_twice_conflicts(self, async_client, auth_headers):
        body = {"plan": "starter"}
        await async_client.post("/api/v1/billing/subscription", json=body, headers=auth_headers)

        response = await async_client.post("/api/v1/billing/subscription", json=body, headers=auth_headers)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["reason"] == "conflict"

    async def test_create_unknown_plan(self, async_client, auth_headers):
        response = await async_client.post(
            "/api/v1/billing/subscription",
            json={"plan": "enterprise"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_create_invalid_currency_is_validation_error(self, async_client, auth_headers):
        response = await async_client.post(
            "/api/v1/billing/subscription",
            json={"plan": "starter", "currency": "EUR"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_processor_failure_is_bad_gateway(self, async_client, auth_headers, payment_processor):
        payment_processor.fail_create = RazorpayAPIError("gateway timeout")

        response = await async_client.post(
            "/api/v1/billing/subscription",
            json={"plan": "starter"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_502_BAD_GATEWAY

    async def test_cancel_subscription(self, async_client, auth_headers):
        await async_client.post("/api/v1/billing/subscription", json={"plan": "pro"}, headers=auth_headers)

        response = await async_client.post("/api/v1/billing/subscription/cancel", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["subscription"]["status"] == "cancelled"

        status_response = await async_client.get("/api/v1/billing/subscription", headers=auth_headers)
        assert status_response.json()["plan"] == "free"

    async def test_cancel_without_subscription(self, async_client, auth_headers):
        response = await async_client.post("/api/v1/billing/subscription/cancel", headers=auth_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_upgrade(self, async_client, auth_headers):
        await async_client.post("/api/v1/billing/subscription", json={"plan": "starter"}, headers=auth_headers)

        response = await async_client.post(
            "/api/v1/billing/subscription/upgrade",
            json={"plan": "pro", "billing_cycle": "yearly"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["plan"] == "pro"
        assert response.json()["billing_cycle"] == "yearly"


class TestUsageEndpoints:
    async def test_usage_for_new_user(self, async_client, auth_headers):
        response = await async_client.get("/api/v1/billing/usage", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["period"] == "2026-03"
        assert data["plan"] == "free"
        assert data["posts_generated"] == 0
        assert data["limits"] == {"posts_per_month": 5, "comments_per_month": 10}
        assert data["remaining"] == {"posts": 5, "comments": 10}

    async def test_usage_reflects_increments(self, async_client, auth_headers, services, test_user):
        await services.usage_tracker.increment(test_user.id, UsageKind.POST, tokens=200)
        await services.usage_tracker.increment(test_user.id, UsageKind.COMMENT, tokens=40)

        response = await async_client.get("/api/v1/billing/usage", headers=auth_headers)

        data = response.json()
        assert data["posts_generated"] == 1
        assert data["comments_generated"] == 1
        assert data["total_tokens_used"] == 240
        assert data["remaining"] == {"posts": 4, "comments": 9}
        assert data["growth"] == {"posts": 100, "comments": 100}

    async def test_usage_history(self, async_client, auth_headers, services, test_user, clock):
        clock.now = clock.now - timedelta(days=31)
        await services.usage_tracker.increment(test_user.id, UsageKind.POST)
        clock.advance(days=31)
        await services.usage_tracker.increment(test_user.id, UsageKind.POST)

        response = await async_client.get(
            "/api/v1/billing/usage/history", params={"months": 1}, headers=auth_headers
        )

        assert response.status_code == status.HTTP_200_OK
        history = response.json()["history"]
        assert [h["period"] for h in history] == ["2026-03"]

    async def test_history_months_validated(self, async_client, auth_headers):
        response = await async_client.get(
            "/api/v1/billing/usage/history", params={"months": 0}, headers=auth_headers
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestCheckAction:
    async def test_allowed(self, async_client, auth_headers):
        response = await async_client.post(
            "/api/v1/billing/check-action", json={"kind": "post"}, headers=auth_headers
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["allowed"] is True
        assert data["plan"] == "free"
        assert data["remaining"] == 5

    async def test_denied_when_exhausted(self, async_client, auth_headers, services, test_user):
        for _ in range(5):
            await services.usage_tracker.increment(test_user.id, UsageKind.POST)

        response = await async_client.post(
            "/api/v1/billing/check-action", json={"kind": "post"}, headers=auth_headers
        )

        data = response.json()
        assert data["allowed"] is False
        assert data["reason"] == "quota_exceeded"
        assert data["current"] == 5
        assert data["remaining"] == 0

    async def test_unknown_kind(self, async_client, auth_headers):
        response = await async_client.post(
            "/api/v1/billing/check-action", json={"kind": "video"}, headers=auth_headers
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestWebhookEndpoint:
    async def _subscribe(self, async_client, auth_headers) -> str:
        response = await async_client.post(
            "/api/v1/billing/subscription", json={"plan": "starter"}, headers=auth_headers
        )
        return response.json()["external_subscription_id"]

    async def test_charged_webhook(self, async_client, auth_headers, charged_payload, sign_webhook):
        external_id = await self._subscribe(async_client, auth_headers)
        body, signature = sign_webhook(charged_payload(external_id))

        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ok", "event": "subscription.charged", "outcome": "applied"}

        replay = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
        )
        assert replay.status_code == status.HTTP_200_OK
        assert replay.json()["outcome"] == "duplicate"

        subscription = await async_client.get("/api/v1/billing/subscription", headers=auth_headers)
        assert len(subscription.json()["subscription"]["invoices"]) == 1

    async def test_invalid_signature(self, async_client, charged_payload, sign_webhook):
        body, _ = sign_webhook(charged_payload("sub_1"))

        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": "bad"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_missing_signature(self, async_client, charged_payload, sign_webhook):
        body, _ = sign_webhook(charged_payload("sub_1"))

        response = await async_client.post("/api/v1/billing/webhook", content=body)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_malformed_payload(self, async_client, sign_webhook):
        body, signature = sign_webhook(b"[1, 2")

        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_signed_charge_with_bad_fields_is_400(
        self, async_client, auth_headers, charged_payload, sign_webhook
    ):
        external_id = await self._subscribe(async_client, auth_headers)
        payload = charged_payload(external_id)
        payload["payload"]["payment"]["entity"]["created_at"] = "yesterday"
        body, signature = sign_webhook(payload)

        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        subscription = await async_client.get("/api/v1/billing/subscription", headers=auth_headers)
        assert subscription.json()["subscription"]["invoices"] == []

    async def test_unknown_event_acknowledged(self, async_client, subscription_event, sign_webhook):
        body, signature = sign_webhook(subscription_event("subscription.activated", "sub_1"))

        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["outcome"] == "ignored"

    async def test_handler_failure_returns_500(
        self, async_client, auth_headers, services, subscription_event, sign_webhook
    ):
        external_id = await self._subscribe(async_client, auth_headers)

        async def _boom(external_id):
            raise RuntimeError("store down")

        services.subscriptions.on_webhook_cancelled = _boom
        body, signature = sign_webhook(subscription_event("subscription.cancelled", external_id))

        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature},
        )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR

    async def test_webhook_secret_not_configured(self, async_client, services, charged_payload, sign_webhook):
        services.webhooks = None
        body, signature = sign_webhook(charged_payload("sub_1"))

        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature},
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
