"""
Tests for the user endpoints.

The app is built with in-memory stores and mock payment authorities.
Caller identity normally comes from the upstream auth layer; here it is
supplied through dependency overrides.
"""

import asyncio
import os
import sys
import unittest
from unittest.mock import AsyncMock, patch

import httpx
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fakes import ManualClock, make_services, make_user, payment_body

from app.dependencies import get_auth_key, get_current_user
from server import create_app
from usage_sync.exceptions import StoreUnavailableError

PRIMARY = "primary.test"
US = "us.primary.test"
GE = "ge.primary.test"


class UserRoutesTestCase(unittest.TestCase):
    """Builds an app around fresh services for each test."""

    def make_routes(self):
        return {}

    def setUp(self):
        self.clock = ManualClock()
        self.services, self.authorities = make_services(self.make_routes(), clock=self.clock)
        self.store = self.services.store
        self.cache = self.services.cache
        self.user = make_user()
        asyncio.run(self.store.save_user(self.user))
        asyncio.run(self.cache.set("tok", {"id": self.user.id}))

        self.app = create_app(self.services)
        self.client = TestClient(self.app)

    def tearDown(self):
        self.app.dependency_overrides.clear()

    def authenticate(self, user=None, auth_key="tok"):
        user = user or self.user
        self.app.dependency_overrides[get_current_user] = lambda: user
        self.app.dependency_overrides[get_auth_key] = lambda: auth_key

    def stored_user(self):
        return asyncio.run(self.store.get_user(self.user.id))


class TestUsageEndpoint(UserRoutesTestCase):
    """Tests for GET /api/v1/users/me/usage."""

    def test_anonymous_caller_keyed_by_edge_address(self):
        response = self.client.get(
            "/api/v1/users/me/usage",
            headers={"cf-connecting-ip": "203.0.113.5"},
        )

        self.assertEqual(response.status_code, 200)
        usage = response.json()["usage"]
        self.assertEqual(usage["key"], "ip:203.0.113.5")
        self.assertEqual(usage["usage"], 0)
        self.assertIn("expire", usage)

    def test_anonymous_caller_falls_back_to_peer_address(self):
        response = self.client.get("/api/v1/users/me/usage")
        self.assertEqual(response.json()["usage"]["key"], "ip:testclient")

    def test_authenticated_caller_keyed_by_user_id(self):
        self.authenticate()
        response = self.client.get(
            "/api/v1/users/me/usage",
            headers={"cf-connecting-ip": "203.0.113.5"},
        )
        self.assertEqual(response.json()["usage"]["key"], "u:user-1")

    def test_expired_window_is_reset(self):
        self.authenticate()
        asyncio.run(self.services.usage.consume("u:user-1", 7))
        self.clock.advance(hours=25)

        response = self.client.get("/api/v1/users/me/usage")

        self.assertEqual(response.json()["usage"]["usage"], 0)

    def test_store_outage_returns_503(self):
        failure = StoreUnavailableError(operation="get_usage", internal_message="connection refused")
        with patch.object(self.store, "get_usage", AsyncMock(side_effect=failure)):
            response = self.client.get("/api/v1/users/me/usage")

        self.assertEqual(response.status_code, 503)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error_code"], "STORE_UNAVAILABLE")
        self.assertNotIn("connection refused", body["error"])


class TestPaymentSyncEndpoint(UserRoutesTestCase):
    """Tests for POST /api/v1/users/me/paymentSync."""

    def make_routes(self):
        return {
            PRIMARY: httpx.Response(500),
            US: httpx.Response(200, json=payment_body("free")),
            GE: httpx.Response(200, json=payment_body("premium", subscription_id="sub-1")),
        }

    def test_requires_authentication(self):
        response = self.client.post("/api/v1/users/me/paymentSync")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error_code"], "AUTHENTICATION_REQUIRED")
        self.assertEqual(self.authorities.requests, [])

    def test_applies_entitlement_and_accepts(self):
        self.authenticate()

        response = self.client.post("/api/v1/users/me/paymentSync")

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json(), {"accepted": True})
        user = self.stored_user()
        self.assertEqual((user.plan, user.subscription_id), ("premium", "sub-1"))
        self.assertIsNone(asyncio.run(self.cache.get("tok")))

    def test_accepts_when_every_authority_fails(self):
        self.authorities.routes.update({
            PRIMARY: httpx.Response(500),
            US: httpx.Response(502),
            GE: httpx.Response(200, text="maintenance"),
        })
        self.authenticate()

        response = self.client.post("/api/v1/users/me/paymentSync")

        self.assertEqual(response.status_code, 202)
        self.assertEqual(self.stored_user().plan, "free")
        self.assertIsNotNone(asyncio.run(self.cache.get("tok")))

    def test_accepts_when_user_record_is_missing(self):
        self.authenticate(user=make_user(id="ghost", tg_id="2002"))

        response = self.client.post("/api/v1/users/me/paymentSync")

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json(), {"accepted": True})
        self.assertIsNone(asyncio.run(self.store.get_user("ghost")))


class TestPaymentLookupEndpoint(UserRoutesTestCase):
    """Tests for GET /api/v1/users/{tg_id}/payment."""

    def test_returns_stored_entitlement(self):
        asyncio.run(self.store.save_user(make_user(plan="premium", midtrans_id="mt-1")))

        response = self.client.get("/api/v1/users/1001/payment")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            "payment": {"subscription_id": None, "midtrans_id": "mt-1", "plan": "premium"},
        })
        self.assertEqual(self.authorities.requests, [])

    def test_unknown_user_is_404(self):
        response = self.client.get("/api/v1/users/9999/payment")

        self.assertEqual(response.status_code, 404)
        body = response.json()
        self.assertEqual(body["error_code"], "USER_NOT_FOUND")
        self.assertEqual(body["details"]["resource_id"], "9999")


class TestSettingsEndpoint(UserRoutesTestCase):
    """Tests for PATCH /api/v1/users/me/settings."""

    def test_merges_settings_and_invalidates(self):
        self.authenticate()

        response = self.client.patch(
            "/api/v1/users/me/settings",
            json={"settings": {"theme": "dark", "saved_location": "me"}},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"settings": {"theme": "dark", "saved_location": "me"}})
        self.assertEqual(self.stored_user().settings, {"theme": "dark", "saved_location": "me"})
        self.assertIsNone(asyncio.run(self.cache.get("tok")))

    def test_keeps_unmentioned_keys(self):
        asyncio.run(self.store.save_user(make_user(settings={"theme": "light", "lang": "id"})))
        self.authenticate()

        response = self.client.patch("/api/v1/users/me/settings", json={"settings": {"theme": "dark"}})

        self.assertEqual(response.json()["settings"], {"theme": "dark", "lang": "id"})

    def test_missing_settings_is_validation_error(self):
        self.authenticate()

        response = self.client.patch("/api/v1/users/me/settings", json={"theme": "dark"})

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["error_code"], "VALIDATION_ERROR")
        self.assertEqual(body["details"]["errors"][0]["field"], "settings")

    def test_requires_authentication(self):
        response = self.client.patch("/api/v1/users/me/settings", json={"settings": {}})
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":
    unittest.main()
