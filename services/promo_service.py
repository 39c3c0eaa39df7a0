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

"""Promo code validation and administration.

`PromotionValidator` decides whether a code applies to a subtotal and how much
it takes off. It never writes: redemption counters only move when an order is
finalized.

`PromoCodeService` backs the admin endpoints. Creating a code also creates the
matching one-time coupon at the payment processor, since a code without a
coupon cannot be applied at checkout.
"""

import datetime
import logging
import math
from typing import List, Optional

import config
import db
from enums import DiscountType
from enums import PromoFailureReason
from exceptions import InvalidRequestError
from exceptions import ResourceNotFoundError
from models import PromoCodeCreateRequest
from models import PromoCodeUpdateRequest
from models import PromoValidationResult
from services.payment_processor import PaymentProcessor
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def normalize_code(code: Optional[str]) -> str:
  return (code or "").strip().upper()


def coerce_subtotal(value) -> int:
  """Floors a client-supplied subtotal to a non-negative integer."""
  try:
    number = float(value)
  except (TypeError, ValueError):
    return 0
  if not math.isfinite(number):
    return 0
  return max(0, math.floor(number))


def compute_discount(promo: db.PromoCode, subtotal_cents: int) -> Optional[int]:
  """Computes the discount a promo grants on a subtotal.

  Args:
    promo: The promo code row.
    subtotal_cents: Non-negative subtotal in minor units.

  Returns:
    The discount clamped to [0, subtotal_cents], or None when the configured
    value is unusable (non-positive, non-finite or missing).
  """
  if promo.discount_type == DiscountType.PERCENT.value:
    value = promo.percent_off
  else:
    value = promo.amount_off_cents
  if value is None:
    return None
  value = float(value)
  if not math.isfinite(value) or value <= 0:
    return None

  if promo.discount_type == DiscountType.PERCENT.value:
    discount = math.floor(subtotal_cents * value / 100 + 0.5)
  else:
    discount = math.floor(value)
  return min(max(discount, 0), subtotal_cents)


class PromotionValidator:
  """Validates promo codes against the promo store."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def validate(
      self,
      code: Optional[str],
      subtotal_cents,
      currency: Optional[str] = None,
      now: Optional[datetime.datetime] = None,
  ) -> PromoValidationResult:
    """Checks a code in a fixed order and reports the first failure.

    Args:
      code: Raw code as typed by the customer.
      subtotal_cents: Amount the discount applies to, in minor units.
      currency: Currency of the cart. Only compared when the promo is bound to
        a currency.
      now: Evaluation time; defaults to the current UTC time.

    Returns:
      A PromoValidationResult. On success it carries the promo id, the
      normalized code, the processor coupon id (possibly None) and the
      discount.
    """
    normalized = normalize_code(code)
    if not normalized:
      return PromoValidationResult(
          valid=False, reason=PromoFailureReason.MISSING_CODE.value
      )

    subtotal = coerce_subtotal(subtotal_cents)
    now = now or db.utcnow()

    def failure(reason: PromoFailureReason, **fields) -> PromoValidationResult:
      return PromoValidationResult(
          valid=False, reason=reason.value, normalized_code=normalized, **fields
      )

    promo = await db.get_promo_code_by_code(self.session, normalized)
    if promo is None:
      return failure(PromoFailureReason.NOT_FOUND)
    if not promo.active:
      return failure(PromoFailureReason.INACTIVE)

    request_currency = (currency or config.PRIMARY_CURRENCY).lower()
    if promo.currency and promo.currency.lower() != request_currency:
      return failure(PromoFailureReason.CURRENCY_MISMATCH)

    starts_at = db.as_utc(promo.starts_at)
    ends_at = db.as_utc(promo.ends_at)
    if starts_at is not None and now < starts_at:
      return failure(PromoFailureReason.NOT_STARTED)
    if ends_at is not None and now >= ends_at:
      return failure(PromoFailureReason.EXPIRED)

    if (
        promo.min_subtotal_cents is not None
        and subtotal < promo.min_subtotal_cents
    ):
      return failure(
          PromoFailureReason.MIN_SUBTOTAL,
          min_subtotal_cents=promo.min_subtotal_cents,
      )

    times_redeemed = promo.times_redeemed or 0
    if (
        promo.max_redemptions is not None
        and times_redeemed >= promo.max_redemptions
    ):
      return failure(
          PromoFailureReason.MAX_REDEMPTIONS,
          max_redemptions=promo.max_redemptions,
          times_redeemed=times_redeemed,
      )

    discount = compute_discount(promo, subtotal)
    if discount is None:
      return failure(PromoFailureReason.INVALID_DISCOUNT)

    return PromoValidationResult(
        valid=True,
        normalized_code=promo.code,
        promo_code_id=promo.id,
        stripe_coupon_id=promo.stripe_coupon_id,
        discount_cents=discount,
    )

  async def validate_for_checkout(
      self, code: Optional[str], subtotal_cents, currency: Optional[str] = None
  ) -> PromoValidationResult:
    """Like validate(), but a code without a processor coupon is rejected."""
    result = await self.validate(code, subtotal_cents, currency)
    if result.valid and not result.stripe_coupon_id:
      return PromoValidationResult(
          valid=False,
          reason=PromoFailureReason.NO_STRIPE_COUPON.value,
          normalized_code=result.normalized_code,
      )
    return result


class PromoCodeService:
  """Admin operations over promo codes."""

  def __init__(
      self, session: AsyncSession, payment_processor: PaymentProcessor
  ):
    self.session = session
    self.payment_processor = payment_processor

  async def list_codes(self) -> List[db.PromoCode]:
    return await db.list_promo_codes(self.session)

  async def get_code(self, promo_code_id: str) -> db.PromoCode:
    promo = await db.get_promo_code(self.session, promo_code_id)
    if promo is None:
      raise ResourceNotFoundError("Promo code not found")
    return promo

  async def create_code(self, req: PromoCodeCreateRequest) -> db.PromoCode:
    """Validates, registers the processor coupon and stores a new code."""
    code = normalize_code(req.code)
    if not code:
      raise InvalidRequestError("Code is required")

    try:
      discount_type = DiscountType(req.discount_type)
    except ValueError as e:
      raise InvalidRequestError(
          "discount_type must be 'percent' or 'amount'"
      ) from e

    percent_off = None
    amount_off_cents = None
    if discount_type == DiscountType.PERCENT:
      if req.amount_off_cents is not None:
        raise InvalidRequestError("amount_off_cents not allowed for percent")
      if req.percent_off is None or not (
          math.isfinite(req.percent_off) and 1 <= req.percent_off <= 100
      ):
        raise InvalidRequestError("percent_off must be between 1 and 100")
      percent_off = float(req.percent_off)
    else:
      if req.percent_off is not None:
        raise InvalidRequestError("percent_off not allowed for amount")
      if req.amount_off_cents is None or not (
          math.isfinite(req.amount_off_cents) and req.amount_off_cents > 0
      ):
        raise InvalidRequestError("amount_off_cents must be positive")
      amount_off_cents = math.floor(req.amount_off_cents)

    self._check_limits(
        req.min_subtotal_cents, req.max_redemptions, req.starts_at, req.ends_at
    )

    if await db.get_promo_code_by_code(self.session, code):
      raise InvalidRequestError("Promo code already exists")

    currency = (req.currency or config.PRIMARY_CURRENCY).lower()
    coupon_id = await self.payment_processor.create_coupon(
        code=code,
        percent_off=percent_off,
        amount_off_cents=amount_off_cents,
        currency=currency,
    )

    promo = db.PromoCode(
        code=code,
        active=req.active,
        discount_type=discount_type.value,
        percent_off=percent_off,
        amount_off_cents=amount_off_cents,
        currency=currency,
        min_subtotal_cents=req.min_subtotal_cents,
        max_redemptions=req.max_redemptions,
        starts_at=req.starts_at,
        ends_at=req.ends_at,
        stripe_coupon_id=coupon_id,
    )
    self.session.add(promo)
    await self.session.commit()
    logger.info("Created promo code %s (coupon %s)", code, coupon_id)
    return promo

  async def update_code(
      self, promo_code_id: str, req: PromoCodeUpdateRequest
  ) -> db.PromoCode:
    """Updates activation, limits and window. Discount values are immutable."""
    promo = await self.get_code(promo_code_id)
    fields = req.model_dump(exclude_unset=True)

    starts_at = fields.get("starts_at", promo.starts_at)
    ends_at = fields.get("ends_at", promo.ends_at)
    self._check_limits(
        fields.get("min_subtotal_cents"),
        fields.get("max_redemptions"),
        starts_at,
        ends_at,
    )

    for key, value in fields.items():
      setattr(promo, key, value)
    promo.updated_at = db.utcnow()
    await self.session.commit()
    return promo

  def _check_limits(
      self,
      min_subtotal_cents: Optional[int],
      max_redemptions: Optional[int],
      starts_at: Optional[datetime.datetime],
      ends_at: Optional[datetime.datetime],
  ) -> None:
    if min_subtotal_cents is not None and min_subtotal_cents < 0:
      raise InvalidRequestError("min_subtotal_cents must be >= 0")
    if max_redemptions is not None and max_redemptions < 1:
      raise InvalidRequestError("max_redemptions must be >= 1")
    if starts_at and ends_at and db.as_utc(ends_at) <= db.as_utc(starts_at):
      raise InvalidRequestError("ends_at must be after starts_at")
