#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Integration tests for the storefront HTTP API."""

import json
from typing import Any, Dict, Optional

from absl import flags
from absl.testing import absltest
import db
import dependencies
from fastapi.testclient import TestClient
import httpx
from server import app
import store_testing
from store_testing import HOODIE_ID
from store_testing import STICKER_ID
from store_testing import USER_ID

FLAGS = flags.FLAGS

ADMIN_TOKEN = "admin-secret"
LABEL_URL = "https://res.cloudinary.com/demo/raw/upload/label.pdf"


class IntegrationTest(store_testing.StoreTestCase):
  """End-to-end tests through the FastAPI application."""

  def setUp(self) -> None:
    super().setUp()
    self.add_catalog()
    self.add_promo("SAVE10")
    self.processor = store_testing.FakePaymentProcessor()
    self.outbound = []

    def handle(request: httpx.Request) -> httpx.Response:
      self.outbound.append(request)
      return httpx.Response(200, content=b"%PDF-1.4 label")

    app.dependency_overrides[dependencies.get_payment_processor] = (
        lambda: self.processor
    )
    app.dependency_overrides[dependencies.get_http_transport] = (
        lambda: httpx.MockTransport(handle)
    )
    self.set_flag("admin_api_token", ADMIN_TOKEN)
    self.client = TestClient(app)

  def tearDown(self) -> None:
    app.dependency_overrides.clear()
    super().tearDown()

  def set_flag(self, name: str, value: Any) -> None:
    flag = FLAGS[name]
    saved = flag.value
    flag.value = value
    self.addCleanup(setattr, flag, "value", saved)

  def _admin_headers(self, token: str = ADMIN_TOKEN) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}

  def _checkout_body(self, **overrides) -> Dict[str, Any]:
    body = {
        "contact": {"name": "Ada Lovelace", "email": "ada@example.com"},
        "shippingAddress": {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "address1": "1 Main St",
            "city": "Portland",
            "state": "OR",
            "zip": "97201",
            "country": "US",
        },
        "deliveryOption": "express",
        "promoCode": "SAVE10",
        "items": [{"productId": HOODIE_ID, "quantity": 2, "size": "M/L"}],
    }
    body.update(overrides)
    return body

  def _post_event(
      self, event: Dict[str, Any], signature: Optional[str] = "whsec_test"
  ) -> httpx.Response:
    headers = {"Content-Type": "application/json"}
    if signature is not None:
      headers["Stripe-Signature"] = signature
    return self.client.post(
        "/webhooks/stripe", content=json.dumps(event), headers=headers
    )

  def _checkout_and_pay(self) -> Dict[str, Any]:
    response = self.client.post(
        "/checkout",
        json=self._checkout_body(),
        headers={"X-User-Id": USER_ID},
    )
    self.assertEqual(response.status_code, 200, response.text)
    redirect = response.json()
    response = self._post_event(
        store_testing.completed_event(
            "cs_test_1", redirect["checkoutId"], amount_total=1440
        )
    )
    self.assertEqual(response.status_code, 200, response.text)
    self.assertEqual(response.json(), {"received": True})
    self.processor.mark_paid("cs_test_1")
    return redirect

  # --- Storefront ---

  def test_quote(self) -> None:
    response = self.client.post(
        "/checkout/quote",
        json={
            "items": [{"productId": HOODIE_ID, "quantity": 2, "size": "M/L"}],
            "deliveryOption": "express",
            "promoCode": "save10",
        },
    )
    self.assertEqual(response.status_code, 200)
    body = response.json()
    self.assertTrue(body["ok"])
    self.assertEqual(body["quote"]["subtotal_cents"], 400)
    self.assertEqual(body["quote"]["total_cents"], 1440)
    self.assertEqual(body["quote"]["promo"]["normalized_code"], "SAVE10")

  def test_quote_failure_is_reported_in_body(self) -> None:
    response = self.client.post(
        "/checkout/quote",
        json={"items": [{"productId": STICKER_ID, "quantity": 1}]},
    )
    self.assertEqual(response.status_code, 200)
    body = response.json()
    self.assertFalse(body["ok"])
    self.assertIn("Product not available", body["error"])
    self.assertIsNone(body["promoError"])

  def test_promo_validate(self) -> None:
    response = self.client.post(
        "/promo/validate", json={"code": "save10", "subtotal_cents": 1000}
    )
    self.assertEqual(response.status_code, 200)
    body = response.json()
    self.assertTrue(body["valid"])
    self.assertEqual(body["normalized_code"], "SAVE10")
    self.assertEqual(body["stripe_coupon_id"], "coupon_save10")
    self.assertEqual(body["discount_cents"], 100)
    self.assertNotIn("reason", body)
    missing = self.client.post("/promo/validate", json={"code": "nope"})
    self.assertEqual(missing.json()["reason"], "not_found")

  def test_checkout_validation_error(self) -> None:
    response = self.client.post(
        "/checkout", json=self._checkout_body(contact=None)
    )
    self.assertEqual(response.status_code, 400)
    self.assertEqual(response.json()["code"], "INVALID_REQUEST")
    self.assertEmpty(self.processor.created)

  def test_checkout_quote_error_carries_promo_reason(self) -> None:
    response = self.client.post(
        "/checkout", json=self._checkout_body(promoCode="nope")
    )
    self.assertEqual(response.status_code, 400)
    body = response.json()
    self.assertEqual(body["code"], "QUOTE_FAILED")
    self.assertEqual(body["promoError"]["reason"], "not_found")

  def test_full_checkout_flow(self) -> None:
    response = self.client.post(
        "/checkout",
        json=self._checkout_body(),
        headers={"X-User-Id": USER_ID},
    )
    self.assertEqual(response.status_code, 200, response.text)
    redirect = response.json()
    self.assertEqual(redirect["url"], "https://pay.example/cs_test_1")

    unpaid = self.client.get("/checkout/complete?session_id=cs_test_1")
    self.assertEqual(unpaid.status_code, 400)

    self.processor.mark_paid("cs_test_1")
    pending = self.client.get("/checkout/complete?session_id=cs_test_1")
    self.assertEqual(pending.status_code, 202)
    self.assertEqual(pending.json(), {"pending": True})

    event = store_testing.completed_event(
        "cs_test_1", redirect["checkoutId"], amount_total=1440
    )
    for _ in range(2):
      response = self._post_event(event)
      self.assertEqual(response.status_code, 200, response.text)

    (order,) = self.run_async(self.fetch_all(db.Order))
    self.assertEqual(order.user_id, USER_ID)
    self.assertEqual(order.status, "paid")
    hoodie = self.run_async(self.fetch(db.Product, HOODIE_ID))
    self.assertEqual(hoodie.stock, 3)

    complete = self.client.get("/checkout/complete?session_id=cs_test_1")
    self.assertEqual(complete.status_code, 200)
    self.assertEqual(complete.json(), {"orderId": order.id})

    history = self.client.get("/my/orders", headers={"X-User-Id": USER_ID})
    self.assertEqual(history.status_code, 200)
    self.assertEqual([o["id"] for o in history.json()], [order.id])

  def test_my_orders_requires_identity(self) -> None:
    for headers in ({}, {"X-User-Id": "not-a-uuid"}):
      response = self.client.get("/my/orders", headers=headers)
      self.assertEqual(response.status_code, 401)

  # --- Webhooks ---

  def test_webhook_signature_checks(self) -> None:
    event = store_testing.completed_event("cs_test_1")
    missing = self._post_event(event, signature=None)
    self.assertEqual(missing.status_code, 400)
    self.assertEqual(missing.json()["detail"], "Missing signature")
    bad = self._post_event(event, signature="forged")
    self.assertEqual(bad.status_code, 400)
    self.assertEmpty(self.run_async(self.fetch_all(db.Order)))

  def test_webhook_unknown_session_asks_for_redelivery(self) -> None:
    response = self._post_event(store_testing.completed_event("cs_unknown"))
    self.assertEqual(response.status_code, 500)
    self.assertEqual(response.json()["code"], "CHECKOUT_NOT_FOUND")

  def test_webhook_ignores_other_events(self) -> None:
    response = self._post_event(
        {"id": "evt_1", "type": "payment_intent.created", "data": {}}
    )
    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json(), {"received": True})

  # --- Admin ---

  def test_admin_auth(self) -> None:
    self.assertEqual(self.client.get("/admin/orders").status_code, 401)
    wrong = self.client.get(
        "/admin/orders", headers=self._admin_headers("guess")
    )
    self.assertEqual(wrong.status_code, 401)

    self.set_flag("admin_api_token", None)
    unset = self.client.get("/admin/orders", headers=self._admin_headers())
    self.assertEqual(unset.status_code, 401)
    self.assertEqual(unset.json()["detail"], "Admin access not configured")

  def test_admin_orders(self) -> None:
    self._checkout_and_pay()
    (order,) = self.run_async(self.fetch_all(db.Order))

    listing = self.client.get(
        "/admin/orders?status=paid", headers=self._admin_headers()
    )
    self.assertEqual(listing.status_code, 200, listing.text)
    (summary,) = listing.json()["orders"]
    self.assertEqual(summary["id"], order.id)
    self.assertEqual(summary["items_count"], 2)
    self.assertIsNone(listing.json()["next_cursor"])

    bad = self.client.get(
        "/admin/orders?sort=sideways", headers=self._admin_headers()
    )
    self.assertEqual(bad.status_code, 400)

    detail = self.client.get(
        f"/admin/orders/{order.id}", headers=self._admin_headers()
    )
    self.assertEqual(detail.status_code, 200)
    self.assertLen(detail.json()["items"], 1)

    updated = self.client.patch(
        f"/admin/orders/{order.id}",
        json={"status": "shipped", "tracking_number": " 1Z999 "},
        headers=self._admin_headers(),
    )
    self.assertEqual(updated.status_code, 200, updated.text)
    self.assertEqual(updated.json()["order"]["status"], "shipped")
    self.assertEqual(updated.json()["order"]["tracking_number"], "1Z999")

    empty = self.client.patch(
        f"/admin/orders/{order.id}", json={}, headers=self._admin_headers()
    )
    self.assertEqual(empty.status_code, 400)

    missing = self.client.get(
        "/admin/orders/missing", headers=self._admin_headers()
    )
    self.assertEqual(missing.status_code, 404)

  def test_admin_promo_codes(self) -> None:
    created = self.client.post(
        "/admin/promo-codes",
        json={
            "code": "spring",
            "discount_type": "amount",
            "amount_off_cents": 500,
        },
        headers=self._admin_headers(),
    )
    self.assertEqual(created.status_code, 201, created.text)
    self.assertEqual(created.json()["code"], "SPRING")
    self.assertEqual(created.json()["stripe_coupon_id"], "coupon_spring")

    promo_id = created.json()["id"]
    updated = self.client.patch(
        f"/admin/promo-codes/{promo_id}",
        json={"active": False},
        headers=self._admin_headers(),
    )
    self.assertFalse(updated.json()["active"])

    listing = self.client.get(
        "/admin/promo-codes", headers=self._admin_headers()
    )
    self.assertCountEqual(
        [p["code"] for p in listing.json()], ["SAVE10", "SPRING"]
    )

  def test_admin_shipping(self) -> None:
    self._checkout_and_pay()
    (order,) = self.run_async(self.fetch_all(db.Order))

    templates = self.client.get(
        "/admin/parcel-templates", headers=self._admin_headers()
    )
    self.assertEqual(templates.status_code, 200)
    self.assertLen(templates.json()["templates"], 4)

    workspace = self.client.get(
        f"/admin/orders/{order.id}/shipping", headers=self._admin_headers()
    )
    self.assertEqual(workspace.status_code, 200)
    self.assertIsNone(workspace.json()["template_notice"])

    no_rate = self.client.post(
        f"/admin/orders/{order.id}/shipping/buy",
        json={},
        headers=self._admin_headers(),
    )
    self.assertEqual(no_rate.status_code, 400)
    self.assertEqual(no_rate.json()["detail"], "Missing rate id")

  def test_label_download(self) -> None:
    self._checkout_and_pay()
    (order,) = self.run_async(self.fetch_all(db.Order))
    self.add(
        db.Shipment(
            id="label-1",
            order_id=order.id,
            status="purchased",
            label_asset_url=LABEL_URL,
        )
    )

    response = self.client.get(
        "/admin/shipments/label-1/label", headers=self._admin_headers()
    )
    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.content, b"%PDF-1.4 label")
    self.assertEqual(response.headers["content-type"], "application/pdf")
    self.assertEqual(response.headers["cache-control"], "no-store")
    self.assertIn(
        f'filename="shipping-label-{order.id}.pdf"',
        response.headers["content-disposition"],
    )
    self.assertEqual([str(r.url) for r in self.outbound], [LABEL_URL])

  def test_label_download_without_label(self) -> None:
    self._checkout_and_pay()
    (order,) = self.run_async(self.fetch_all(db.Order))
    self.add(db.Shipment(id="label-2", order_id=order.id, status="rated"))
    response = self.client.get(
        "/admin/shipments/label-2/label", headers=self._admin_headers()
    )
    self.assertEqual(response.status_code, 404)
    self.assertEqual(response.json()["code"], "label_not_found")


if __name__ == "__main__":
  absltest.main()
