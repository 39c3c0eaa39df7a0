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

"""Quote engine for pricing carts from authoritative catalog data.

The quote is the only price the rest of the pipeline trusts. Client-supplied
prices are never read; every line is re-priced from the product row at quote
time, and the promo code is re-validated against the fresh totals.
"""

import logging
import math
from typing import Any, Iterable, List, Optional
import uuid

import config
import db
from exceptions import QuoteError
from models import AppliedPromo
from models import Quote
from models import QuoteItemInput
from models import QuoteLineItem
from models import QuoteRequest
from services.fulfillment_service import FulfillmentService
from services.promo_service import PromotionValidator
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SIZE_OPTIONS = ("S/M", "M/L", "L/XL")
_SIZE_RANK = {size.lower(): rank for rank, size in enumerate(SIZE_OPTIONS)}


def normalize_size(value: Optional[str]) -> Optional[str]:
  """Maps a size to its canonical spelling, or None if it is not offered."""
  if not value or not value.strip():
    return None
  lower = value.strip().lower()
  for option in SIZE_OPTIONS:
    if option.lower() == lower:
      return option
  return None


def sort_sizes(sizes: Iterable[str]) -> List[str]:
  return sorted(
      sizes, key=lambda s: (_SIZE_RANK.get(s.lower(), len(_SIZE_RANK)), s)
  )


def is_uuid(value: Optional[str]) -> bool:
  if not value:
    return False
  try:
    uuid.UUID(value)
  except ValueError:
    return False
  return len(value) == 36


def parse_quantity(value: Any) -> Optional[int]:
  """Returns a positive integer quantity, or None if the value is not one."""
  if isinstance(value, bool) or value is None:
    return None
  if isinstance(value, str):
    value = value.strip()
  try:
    number = float(value)
  except (TypeError, ValueError):
    return None
  if not math.isfinite(number) or number != int(number) or number < 1:
    return None
  return int(number)


def _strip(value: Optional[str]) -> Optional[str]:
  if value is None:
    return None
  return value.strip()


class QuoteEngine:
  """Computes server-side price breakdowns."""

  def __init__(
      self,
      session: AsyncSession,
      fulfillment_service: Optional[FulfillmentService] = None,
  ):
    self.session = session
    self.fulfillment_service = fulfillment_service or FulfillmentService()
    self.promotions = PromotionValidator(session)

  async def compute_quote(self, req: QuoteRequest) -> Quote:
    """Prices a cart.

    Args:
      req: Items, delivery option, optional promo code and currency.

    Returns:
      An immutable Quote snapshot.

    Raises:
      QuoteError: When the cart cannot be priced as requested. Promo failures
        carry the validator's structured reason.
    """
    currency = (req.currency or config.PRIMARY_CURRENCY).lower()
    if currency != config.PRIMARY_CURRENCY:
      raise QuoteError("Unsupported currency")

    inputs = self._parse_items(req.items)
    products = await db.get_products_by_ids(
        self.session, [item.product_id for item in inputs]
    )
    products_by_id = {product.id: product for product in products}

    lines: List[QuoteLineItem] = []
    for item in inputs:
      product = products_by_id.get(item.product_id)
      if product is None or not product.active:
        raise QuoteError("Product not available")

      available = sort_sizes(
          s for s in (normalize_size(raw) for raw in product.sizes or []) if s
      )
      if available:
        size = normalize_size(item.size)
        if size is None or size not in available:
          raise QuoteError(f"Size required for {product.name}")
      else:
        size = None

      if product.stock < item.quantity:
        raise QuoteError(f"Insufficient stock for {product.name}")

      lines.append(
          QuoteLineItem(
              product_id=product.id,
              product_slug=product.slug,
              name=product.name,
              image_url=product.primary_image,
              price_cents=product.effective_price_cents,
              quantity=item.quantity,
              variant=item.variant or None,
              size=size,
          )
      )

    delivery_option = self.fulfillment_service.normalize_option(
        req.delivery_option
    )
    subtotal = sum(line.price_cents * line.quantity for line in lines)
    shipping = self.fulfillment_service.shipping_cents(delivery_option)
    # Tax is left to the processor's display; stored orders carry none.
    tax = 0

    promo = None
    discount = 0
    promo_code = _strip(req.promo_code)
    if promo_code:
      result = await self.promotions.validate(
          promo_code, subtotal + shipping, currency
      )
      if not result.valid:
        raise QuoteError("Invalid promo code", promo_error=result.as_error())
      if not result.stripe_coupon_id:
        raise QuoteError(
            "Promo code not available",
            promo_error={
                "valid": False,
                "reason": "no_stripe_coupon",
                "normalized_code": result.normalized_code,
            },
        )
      promo = AppliedPromo(
          promo_code_id=result.promo_code_id,
          normalized_code=result.normalized_code,
          stripe_coupon_id=result.stripe_coupon_id,
      )
      discount = result.discount_cents

    return Quote(
        currency=currency,
        delivery_option=delivery_option,
        subtotal_cents=subtotal,
        discount_cents=discount,
        shipping_cents=shipping,
        tax_cents=tax,
        total_cents=max(0, subtotal - discount + shipping + tax),
        promo=promo,
        items=lines,
    )

  def _parse_items(self, items: List[QuoteItemInput]) -> List[QuoteItemInput]:
    """Validates item shapes before any catalog read."""
    if not items:
      raise QuoteError("No items")

    parsed = [
        QuoteItemInput(
            product_id=_strip(item.product_id) or "",
            quantity=parse_quantity(item.quantity),
            size=_strip(item.size),
            variant=_strip(item.variant),
        )
        for item in items
    ]
    if any(not is_uuid(item.product_id) for item in parsed):
      raise QuoteError("Invalid product id")
    if any(item.quantity is None for item in parsed):
      raise QuoteError("Invalid quantity")
    return parsed
