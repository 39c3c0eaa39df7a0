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

"""Tests for promo code validation and administration."""

import datetime

from absl.testing import absltest
import db
from exceptions import InvalidRequestError
from models import PromoCodeCreateRequest
from models import PromoCodeUpdateRequest
from services.promo_service import compute_discount
from services.promo_service import PromoCodeService
from services.promo_service import PromotionValidator
import store_testing

NOW = datetime.datetime(2026, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)


class ComputeDiscountTest(absltest.TestCase):

  def test_percent_rounds_half_up(self) -> None:
    promo = db.PromoCode(discount_type="percent", percent_off=10)
    self.assertEqual(compute_discount(promo, 1600), 160)
    self.assertEqual(compute_discount(promo, 125), 13)

  def test_amount_is_clamped_to_subtotal(self) -> None:
    promo = db.PromoCode(discount_type="amount", amount_off_cents=5000)
    self.assertEqual(compute_discount(promo, 1200), 1200)
    self.assertEqual(compute_discount(promo, 0), 0)

  def test_unusable_values(self) -> None:
    for promo in (
        db.PromoCode(discount_type="percent", percent_off=0),
        db.PromoCode(discount_type="percent", percent_off=None),
        db.PromoCode(discount_type="amount", amount_off_cents=-5),
        db.PromoCode(discount_type="percent", percent_off=float("nan")),
    ):
      self.assertIsNone(compute_discount(promo, 1000))

  def test_discount_never_exceeds_subtotal(self) -> None:
    promos = (
        db.PromoCode(discount_type="percent", percent_off=100),
        db.PromoCode(discount_type="percent", percent_off=33.3),
        db.PromoCode(discount_type="amount", amount_off_cents=999),
    )
    for promo in promos:
      for subtotal in (0, 1, 99, 1000, 123457):
        discount = compute_discount(promo, subtotal)
        self.assertBetween(discount, 0, subtotal)


class PromotionValidatorTest(store_testing.StoreTestCase):

  def validate(self, code, subtotal=1000, currency=None, now=NOW):
    async def _validate():
      async with self.session_factory() as session:
        return await PromotionValidator(session).validate(
            code, subtotal, currency, now=now
        )

    return self.run_async(_validate())

  def test_valid_code_is_case_insensitive(self) -> None:
    promo = self.add_promo("SAVE10")
    result = self.validate("  save10 ")
    self.assertTrue(result.valid)
    self.assertEqual(result.normalized_code, "SAVE10")
    self.assertEqual(result.promo_code_id, promo.id)
    self.assertEqual(result.stripe_coupon_id, "coupon_save10")
    self.assertEqual(result.discount_cents, 100)

  def test_missing_and_unknown(self) -> None:
    self.assertEqual(self.validate("  ").reason, "missing_code")
    result = self.validate("nope")
    self.assertEqual(result.reason, "not_found")
    self.assertEqual(result.normalized_code, "NOPE")

  def test_inactive(self) -> None:
    self.add_promo("OFF", active=False)
    self.assertEqual(self.validate("OFF").reason, "inactive")

  def test_currency_mismatch(self) -> None:
    self.add_promo("EURO", currency="eur")
    self.assertEqual(self.validate("EURO").reason, "currency_mismatch")
    self.assertTrue(self.validate("EURO", currency="EUR").valid)

  def test_window_is_half_open(self) -> None:
    self.add_promo(
        "WINDOW",
        starts_at=NOW,
        ends_at=NOW + datetime.timedelta(days=1),
    )
    self.assertTrue(self.validate("WINDOW", now=NOW).valid)
    self.assertEqual(
        self.validate(
            "WINDOW", now=NOW - datetime.timedelta(seconds=1)
        ).reason,
        "not_started",
    )
    self.assertEqual(
        self.validate("WINDOW", now=NOW + datetime.timedelta(days=1)).reason,
        "expired",
    )

  def test_min_subtotal(self) -> None:
    self.add_promo("BIG", min_subtotal_cents=5000)
    result = self.validate("BIG", subtotal=4999)
    self.assertFalse(result.valid)
    self.assertEqual(result.reason, "min_subtotal")
    self.assertEqual(result.min_subtotal_cents, 5000)
    self.assertTrue(self.validate("BIG", subtotal=5000).valid)

  def test_redemption_cap(self) -> None:
    self.add_promo("ONCE", max_redemptions=2, times_redeemed=2)
    result = self.validate("ONCE")
    self.assertEqual(result.reason, "max_redemptions")
    self.assertEqual(result.max_redemptions, 2)
    self.assertEqual(result.times_redeemed, 2)

  def test_invalid_discount(self) -> None:
    self.add_promo("ZERO", percent_off=0)
    self.assertEqual(self.validate("ZERO").reason, "invalid_discount")

  def test_subtotal_is_floored(self) -> None:
    self.add_promo("AMT", discount_type="amount", percent_off=None,
                   amount_off_cents=500)
    self.assertEqual(self.validate("AMT", subtotal="300.9").discount_cents, 300)
    self.assertEqual(self.validate("AMT", subtotal="junk").discount_cents, 0)

  def test_checkout_requires_processor_coupon(self) -> None:
    self.add_promo("LOCAL", stripe_coupon_id=None)

    async def _validate():
      async with self.session_factory() as session:
        return await PromotionValidator(session).validate_for_checkout(
            "local", 1000
        )

    result = self.run_async(_validate())
    self.assertFalse(result.valid)
    self.assertEqual(result.reason, "no_stripe_coupon")
    self.assertEqual(result.normalized_code, "LOCAL")


class PromoCodeServiceTest(store_testing.StoreTestCase):

  def setUp(self) -> None:
    super().setUp()
    self.processor = store_testing.FakePaymentProcessor()

  def call(self, method, *args):
    async def _call():
      async with self.session_factory() as session:
        service = PromoCodeService(session, self.processor)
        return await getattr(service, method)(*args)

    return self.run_async(_call())

  def test_create_percent_code(self) -> None:
    promo = self.call(
        "create_code",
        PromoCodeCreateRequest(
            code=" spring25 ", discount_type="percent", percent_off=25
        ),
    )
    self.assertEqual(promo.code, "SPRING25")
    self.assertEqual(promo.currency, "usd")
    self.assertEqual(promo.stripe_coupon_id, "coupon_spring25")
    self.assertEqual(
        self.processor.coupons,
        [{
            "code": "SPRING25",
            "percent_off": 25.0,
            "amount_off_cents": None,
            "currency": "usd",
        }],
    )

  def test_create_rejects_bad_pairs(self) -> None:
    bad_requests = (
        PromoCodeCreateRequest(code="A", discount_type="percent",
                               percent_off=150),
        PromoCodeCreateRequest(code="B", discount_type="percent",
                               percent_off=10, amount_off_cents=100),
        PromoCodeCreateRequest(code="C", discount_type="amount",
                               amount_off_cents=0),
        PromoCodeCreateRequest(code="D", discount_type="bogus"),
        PromoCodeCreateRequest(code=" ", discount_type="percent",
                               percent_off=10),
    )
    for req in bad_requests:
      with self.assertRaises(InvalidRequestError):
        self.call("create_code", req)
    self.assertEmpty(self.processor.coupons)

  def test_create_rejects_duplicate_code(self) -> None:
    self.add_promo("SAVE10")
    with self.assertRaisesRegex(InvalidRequestError, "already exists"):
      self.call(
          "create_code",
          PromoCodeCreateRequest(
              code="save10", discount_type="amount", amount_off_cents=500
          ),
      )

  def test_update_limits_and_window(self) -> None:
    promo = self.add_promo("SAVE10")
    updated = self.call(
        "update_code",
        promo.id,
        PromoCodeUpdateRequest(active=False, max_redemptions=5),
    )
    self.assertFalse(updated.active)
    self.assertEqual(updated.max_redemptions, 5)

    with self.assertRaisesRegex(InvalidRequestError, "ends_at"):
      self.call(
          "update_code",
          promo.id,
          PromoCodeUpdateRequest(
              starts_at=NOW, ends_at=NOW - datetime.timedelta(hours=1)
          ),
      )


if __name__ == "__main__":
  absltest.main()
