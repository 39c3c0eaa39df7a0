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

"""Tests for checkout initiation, finalization and reconciliation."""

from unittest import mock

from absl.testing import absltest
import db
from exceptions import CheckoutNotFoundError
from exceptions import InvalidRequestError
from exceptions import QuoteError
from models import CheckoutRequest
from services.checkout_service import CheckoutService
import store_testing
from store_testing import HOODIE_ID
from store_testing import USER_ID

SITE_URL = "https://shop.example/"


def checkout_request(**overrides) -> CheckoutRequest:
  body = {
      "contact": {
          "name": "Ada Lovelace",
          "email": "ada@example.com",
          "phone": "555-0100",
      },
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
      "promoCode": "save10",
      "items": [{"productId": HOODIE_ID, "quantity": 2, "size": "M/L"}],
  }
  body.update(overrides)
  return CheckoutRequest.model_validate(body)


class CheckoutServiceTest(store_testing.StoreTestCase):

  def setUp(self) -> None:
    super().setUp()
    self.add_catalog()
    self.promo = self.add_promo("SAVE10")
    self.processor = store_testing.FakePaymentProcessor()

  def call(self, fn):
    async def _call():
      async with self.session_factory() as session:
        return await fn(CheckoutService(session, self.processor, SITE_URL))

    return self.run_async(_call())

  def initiate(self, req=None, user_id=USER_ID):
    return self.call(lambda s: s.initiate(req or checkout_request(), user_id))

  # --- Initiation ---

  def test_initiate_persists_snapshot_and_links_session(self) -> None:
    redirect = self.initiate()
    self.assertEqual(redirect.url, "https://pay.example/cs_test_1")

    checkout = self.run_async(
        self.fetch(db.CheckoutSession, redirect.checkout_id)
    )
    self.assertEqual(checkout.stripe_checkout_session_id, "cs_test_1")
    self.assertEqual(checkout.user_id, USER_ID)
    self.assertEqual(checkout.email, "ada@example.com")
    self.assertEqual(checkout.subtotal_cents, 400)
    self.assertEqual(checkout.shipping_cents, 1200)
    self.assertEqual(checkout.discount_cents, 160)
    self.assertEqual(checkout.total_cents, 1440)
    self.assertEqual(checkout.promo_code, "SAVE10")
    self.assertEqual(checkout.promo_code_id, self.promo.id)
    self.assertEqual(checkout.shipping_address["firstName"], "Ada")
    self.assertIsNone(checkout.order_id)
    self.assertLen(checkout.items, 1)
    self.assertEqual(checkout.items[0]["quantity"], 2)

    (created,) = self.processor.created
    self.assertEqual(
        created["metadata"],
        {
            "checkout_id": redirect.checkout_id,
            "expected_total_cents": "1440",
        },
    )
    self.assertEqual(created["coupon_id"], "coupon_save10")
    self.assertEqual(created["customer_email"], "ada@example.com")
    self.assertEqual(
        created["success_url"],
        "https://shop.example/checkout/success"
        "?session_id={CHECKOUT_SESSION_ID}",
    )
    self.assertEqual(created["cancel_url"], "https://shop.example/checkout")
    self.assertEqual(
        [li["price_data"]["unit_amount"] for li in created["line_items"]],
        [200, 1200],
    )

  def test_initiate_treats_malformed_identity_as_guest(self) -> None:
    redirect = self.initiate(user_id="not-a-uuid")
    checkout = self.run_async(
        self.fetch(db.CheckoutSession, redirect.checkout_id)
    )
    self.assertIsNone(checkout.user_id)

  def test_initiate_validation(self) -> None:
    cases = (
        ({"contact": None}, "Contact is required"),
        ({"contact": {"name": "Ada", "email": "nope"}}, "valid customer email"),
        (
            {
                "contact": {
                    "name": "Ada", "email": "a@b.co", "notes": "x" * 2001
                }
            },
            "notes is too long",
        ),
        ({"shippingAddress": {"firstName": "Ada"}}, "address fields"),
        ({"items": []}, "At least one item"),
    )
    for overrides, message in cases:
      with self.assertRaisesRegex(InvalidRequestError, message):
        self.initiate(checkout_request(**overrides))
    self.assertEmpty(self.processor.created)

  def test_initiate_quote_failure_has_no_side_effects(self) -> None:
    req = checkout_request(
        items=[{"productId": HOODIE_ID, "quantity": 9, "size": "M/L"}]
    )
    with self.assertRaisesRegex(QuoteError, "Insufficient stock"):
      self.initiate(req)
    self.assertEmpty(self.run_async(self.fetch_all(db.CheckoutSession)))
    self.assertEmpty(self.processor.created)

  # --- Finalization ---

  def test_finalize_is_idempotent(self) -> None:
    self.initiate()
    first = self.call(lambda s: s.finalize("cs_test_1", "pi_1"))
    second = self.call(lambda s: s.finalize("cs_test_1", "pi_other"))
    self.assertEqual(first, second)

    orders = self.run_async(self.fetch_all(db.Order))
    self.assertLen(orders, 1)
    order = orders[0]
    self.assertEqual(order.id, first)
    self.assertEqual(order.status, "paid")
    self.assertEqual(order.stripe_payment_intent_id, "pi_1")
    self.assertEqual(order.user_id, USER_ID)
    self.assertEqual(order.subtotal_cents, 400)
    self.assertEqual(order.discount_cents, 160)
    self.assertIsNotNone(order.paid_at)

    items = self.run_async(self.fetch_all(db.OrderItem))
    self.assertLen(items, 1)
    self.assertEqual(items[0].order_id, first)
    self.assertEqual(items[0].size, "M/L")

    hoodie = self.run_async(self.fetch(db.Product, HOODIE_ID))
    self.assertEqual(hoodie.stock, 3)
    promo = self.run_async(self.fetch(db.PromoCode, self.promo.id))
    self.assertEqual(promo.times_redeemed, 1)

    (checkout,) = self.run_async(self.fetch_all(db.CheckoutSession))
    self.assertEqual(checkout.order_id, first)
    self.assertEqual(checkout.stripe_payment_intent_id, "pi_1")
    self.assertIsNotNone(checkout.completed_at)

  def test_finalize_aggregates_stock_per_product(self) -> None:
    self.initiate(
        checkout_request(
            items=[
                {"productId": HOODIE_ID, "quantity": 2, "size": "M/L"},
                {"productId": HOODIE_ID, "quantity": 1, "size": "S/M"},
            ]
        )
    )
    order_id = self.call(lambda s: s.finalize("cs_test_1", "pi_1"))

    items = self.run_async(self.fetch_all(db.OrderItem))
    self.assertLen(items, 2)
    self.assertCountEqual(
        [(i.order_id, i.size, i.quantity) for i in items],
        [(order_id, "M/L", 2), (order_id, "S/M", 1)],
    )
    hoodie = self.run_async(self.fetch(db.Product, HOODIE_ID))
    self.assertEqual(hoodie.stock, 2)

  def test_finalize_recovers_from_concurrent_insert(self) -> None:
    self.initiate()
    order_id = self.call(lambda s: s.finalize("cs_test_1", "pi_1"))

    real_lookup = db.get_order_by_stripe_session
    calls = []

    async def stale_first_lookup(session, stripe_session_id):
      calls.append(stripe_session_id)
      if len(calls) == 1:
        return None
      return await real_lookup(session, stripe_session_id)

    with mock.patch.object(
        db, "get_order_by_stripe_session", side_effect=stale_first_lookup
    ):
      again = self.call(lambda s: s.finalize("cs_test_1", "pi_1"))

    self.assertEqual(again, order_id)
    self.assertLen(calls, 2)
    self.assertLen(self.run_async(self.fetch_all(db.Order)), 1)
    self.assertLen(self.run_async(self.fetch_all(db.OrderItem)), 1)
    hoodie = self.run_async(self.fetch(db.Product, HOODIE_ID))
    self.assertEqual(hoodie.stock, 3)
    promo = self.run_async(self.fetch(db.PromoCode, self.promo.id))
    self.assertEqual(promo.times_redeemed, 1)

  def test_finalize_unknown_session(self) -> None:
    with self.assertRaises(CheckoutNotFoundError):
      self.call(lambda s: s.finalize("cs_missing"))
    self.assertEmpty(self.run_async(self.fetch_all(db.Order)))

  def test_finalize_allows_oversell(self) -> None:
    self.initiate()

    async def drain(session):
      hoodie = await session.get(db.Product, HOODIE_ID)
      hoodie.stock = 1
      await session.commit()

    self.call(lambda s: drain(s.session))
    self.call(lambda s: s.finalize("cs_test_1"))
    hoodie = self.run_async(self.fetch(db.Product, HOODIE_ID))
    self.assertEqual(hoodie.stock, -1)

  # --- Reconciliation ---

  def test_mismatch_is_recorded_once(self) -> None:
    self.initiate()
    order_id = self.call(lambda s: s.finalize("cs_test_1", "pi_1"))

    first = self.call(lambda s: s.reconcile("cs_test_1", 1500, "usd"))
    self.assertTrue(first.ok)
    self.assertTrue(first.mismatch)
    self.assertEqual(first.expected_total_cents, 1440)
    self.assertEqual(first.processor_amount_total_cents, 1500)

    self.call(lambda s: s.reconcile("cs_test_1", 1700, "usd"))
    self.call(lambda s: s.reconcile("cs_test_1", 1800, "usd"))

    (checkout,) = self.run_async(self.fetch_all(db.CheckoutSession))
    self.assertEqual(checkout.pricing_check["stripe_amount_total_cents"], 1500)
    self.assertEqual(checkout.pricing_check["expected_total_cents"], 1440)
    order = self.run_async(self.fetch(db.Order, order_id))
    self.assertEqual(order.status, "paid")

  def test_mismatch_recorded_elsewhere_is_kept(self) -> None:
    self.initiate()

    async def reconcile_after_other_writer(service):
      await db.get_checkout_by_stripe_session(service.session, "cs_test_1")
      async with self.session_factory() as other:
        await db.record_pricing_check(
            other, "cs_test_1", {"stripe_amount_total_cents": 1500}
        )
        await other.commit()
      return await service.reconcile("cs_test_1", 1700, "usd")

    check = self.call(reconcile_after_other_writer)
    self.assertTrue(check.mismatch)
    (checkout,) = self.run_async(self.fetch_all(db.CheckoutSession))
    self.assertEqual(
        checkout.pricing_check, {"stripe_amount_total_cents": 1500}
    )

  def test_matching_total_records_nothing(self) -> None:
    self.initiate()
    check = self.call(lambda s: s.reconcile("cs_test_1", 1440, "usd"))
    self.assertTrue(check.ok)
    self.assertFalse(check.mismatch)
    (checkout,) = self.run_async(self.fetch_all(db.CheckoutSession))
    self.assertIsNone(checkout.pricing_check)

  def test_reconcile_without_inputs(self) -> None:
    self.assertEqual(
        self.call(lambda s: s.reconcile("", 100, "usd")).reason,
        "missing_session_id",
    )
    self.assertEqual(
        self.call(lambda s: s.reconcile("cs_x", None, "usd")).reason,
        "missing_amount_total",
    )
    self.assertEqual(
        self.call(lambda s: s.reconcile("cs_x", 100, "usd")).reason,
        "checkout_not_found",
    )

  # --- Processor callbacks ---

  def test_event_links_unlinked_checkout(self) -> None:
    redirect = self.initiate()

    async def unlink(session):
      checkout = await session.get(db.CheckoutSession, redirect.checkout_id)
      checkout.stripe_checkout_session_id = None
      await session.commit()

    self.call(lambda s: unlink(s.session))

    event = store_testing.completed_event(
        "cs_test_1", checkout_id=redirect.checkout_id, amount_total=1440
    )
    order_id = self.call(lambda s: s.handle_event(event))
    again = self.call(lambda s: s.handle_event(event))
    self.assertIsNotNone(order_id)
    self.assertEqual(order_id, again)
    self.assertLen(self.run_async(self.fetch_all(db.Order)), 1)

  def test_event_with_bad_metadata_still_finalizes(self) -> None:
    self.initiate()
    event = store_testing.completed_event("cs_test_1", checkout_id="bogus")
    order_id = self.call(lambda s: s.handle_event(event))
    self.assertIsNotNone(order_id)

  def test_other_events_are_ignored(self) -> None:
    event = {"id": "evt_1", "type": "payment_intent.created", "data": {}}
    self.assertIsNone(self.call(lambda s: s.handle_event(event)))

  def test_completion_polling(self) -> None:
    self.initiate()
    with self.assertRaisesRegex(InvalidRequestError, "Missing session_id"):
      self.call(lambda s: s.order_for_completed_payment(" "))
    with self.assertRaisesRegex(InvalidRequestError, "Payment not completed"):
      self.call(lambda s: s.order_for_completed_payment("cs_test_1"))

    self.processor.mark_paid("cs_test_1")
    self.assertIsNone(
        self.call(lambda s: s.order_for_completed_payment("cs_test_1"))
    )
    order_id = self.call(lambda s: s.finalize("cs_test_1"))
    self.assertEqual(
        self.call(lambda s: s.order_for_completed_payment("cs_test_1")),
        order_id,
    )


if __name__ == "__main__":
  absltest.main()
