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

"""Checkout service for the hosted-payment checkout pipeline.

This module provides the `CheckoutService` class, which encapsulates the
business logic for turning a cart into a paid order:

- Initiating a checkout: validate contact and shipping data, price the cart
  with the quote engine, persist a pending checkout snapshot and open a hosted
  payment session for it.
- Finalizing a checkout when the processor reports completion: create the
  order and its items, redeem the promo code and decrement stock in one
  transaction, exactly once per processor session even when the webhook is
  delivered more than once.
- Reconciling the amount the processor charged against the quoted total.
- Answering the storefront's completion polling.
"""

import collections
import logging
import re
from typing import Any, Dict, List, Optional

import db
from exceptions import CheckoutNotFoundError
from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
from models import CheckoutRedirect
from models import CheckoutRequest
from models import Contact
from models import Quote
from models import QuoteRequest
from models import ReconciliationResult
from models import ShippingAddress
from services.payment_processor import PaymentProcessor
from services.payment_processor import to_processor_session
from services.quote_service import is_uuid
from services.quote_service import QuoteEngine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_NOTES_LENGTH = 2000
COMPLETED_EVENT = "checkout.session.completed"

_REQUIRED_ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "address1",
    "city",
    "state",
    "zip",
    "country",
)


def _clean(value: Optional[str]) -> Optional[str]:
  if value is None:
    return None
  value = value.strip()
  return value or None


class CheckoutService:
  """Service for managing pending checkouts and the orders they produce."""

  def __init__(
      self,
      session: AsyncSession,
      payment_processor: PaymentProcessor,
      site_url: str,
      quote_engine: Optional[QuoteEngine] = None,
  ):
    self.session = session
    self.payment_processor = payment_processor
    self.site_url = site_url.rstrip("/")
    self.quote_engine = quote_engine or QuoteEngine(session)

  # --- Initiation ---

  async def initiate(
      self, req: CheckoutRequest, user_id: Optional[str] = None
  ) -> CheckoutRedirect:
    """Creates a pending checkout and a hosted payment session for it.

    Args:
      req: Contact, shipping address, delivery option, promo code and items.
      user_id: Authenticated customer id, or None for a guest checkout.

    Returns:
      The processor's redirect URL and the pending checkout id.

    Raises:
      InvalidRequestError: If the contact or address is incomplete.
      QuoteError: If the cart cannot be priced.
      PaymentProviderError: If the processor does not return a session URL.
    """
    contact = self._validate_contact(req.contact)
    address = self._validate_address(req.shipping_address)
    if not req.items:
      raise InvalidRequestError("At least one item is required")

    quote = await self.quote_engine.compute_quote(
        QuoteRequest(
            items=req.items,
            delivery_option=req.delivery_option,
            promo_code=req.promo_code,
        )
    )

    checkout_id = db.new_id()
    self.session.add(
        db.CheckoutSession(
            id=checkout_id,
            user_id=user_id if is_uuid(user_id) else None,
            email=contact["email"],
            customer_name=contact["name"],
            customer_phone=contact["phone"],
            contact=contact,
            shipping_address=address,
            delivery_option=quote.delivery_option,
            promo_code=quote.promo.normalized_code if quote.promo else None,
            promo_code_id=quote.promo.promo_code_id if quote.promo else None,
            discount_cents=quote.discount_cents,
            subtotal_cents=quote.subtotal_cents,
            shipping_cents=quote.shipping_cents,
            tax_cents=quote.tax_cents,
            total_cents=quote.total_cents,
            currency=quote.currency,
            items=[item.model_dump() for item in quote.items],
        )
    )
    await self.session.commit()
    logger.info(
        "Created pending checkout %s (total %d %s)",
        checkout_id,
        quote.total_cents,
        quote.currency,
    )

    processor_session = await self.payment_processor.create_checkout_session(
        line_items=self._line_items(quote),
        metadata={
            "checkout_id": checkout_id,
            "expected_total_cents": str(quote.total_cents),
        },
        customer_email=contact["email"],
        success_url=(
            f"{self.site_url}/checkout/success"
            "?session_id={CHECKOUT_SESSION_ID}"
        ),
        cancel_url=f"{self.site_url}/checkout",
        coupon_id=quote.promo.stripe_coupon_id if quote.promo else None,
    )
    if not processor_session.url:
      raise PaymentProviderError("Checkout session missing redirect URL")

    await self.link_session(checkout_id, processor_session.id)
    return CheckoutRedirect(url=processor_session.url, checkout_id=checkout_id)

  def _validate_contact(self, contact: Optional[Contact]) -> Dict[str, Any]:
    if contact is None:
      raise InvalidRequestError("Contact is required")
    name = _clean(contact.name)
    email = _clean(contact.email)
    if not name:
      raise InvalidRequestError("Customer name is required")
    if not email or not EMAIL_RE.match(email):
      raise InvalidRequestError("A valid customer email is required")
    notes = _clean(contact.notes)
    if notes and len(notes) > MAX_NOTES_LENGTH:
      raise InvalidRequestError(
          f"notes is too long (max {MAX_NOTES_LENGTH} characters)"
      )
    return {
        "name": name,
        "email": email,
        "phone": _clean(contact.phone),
        "notes": notes,
    }

  def _validate_address(
      self, address: Optional[ShippingAddress]
  ) -> Dict[str, Any]:
    if address is None:
      raise InvalidRequestError("Shipping address is required")
    cleaned = {
        name: _clean(getattr(address, name))
        for name in _REQUIRED_ADDRESS_FIELDS + ("address2",)
    }
    if any(not cleaned[name] for name in _REQUIRED_ADDRESS_FIELDS):
      raise InvalidRequestError("All shipping address fields are required")
    return {
        "firstName": cleaned["first_name"],
        "lastName": cleaned["last_name"],
        "address1": cleaned["address1"],
        "address2": cleaned["address2"],
        "city": cleaned["city"],
        "state": cleaned["state"],
        "zip": cleaned["zip"],
        "country": cleaned["country"],
    }

  def _line_items(self, quote: Quote) -> List[Dict[str, Any]]:
    """Builds processor line items from the quote, plus a shipping line."""
    line_items = []
    for item in quote.items:
      product_data: Dict[str, Any] = {
          "name": item.name,
          "metadata": {
              "slug": item.product_slug,
              "size": item.size or "",
              "variant": item.variant or "",
          },
      }
      if item.image_url:
        product_data["images"] = [item.image_url]
      line_items.append({
          "price_data": {
              "currency": quote.currency,
              "unit_amount": item.price_cents,
              "product_data": product_data,
          },
          "quantity": item.quantity,
      })
    if quote.shipping_cents > 0:
      line_items.append({
          "price_data": {
              "currency": quote.currency,
              "unit_amount": quote.shipping_cents,
              "product_data": {"name": "Shipping"},
          },
          "quantity": 1,
      })
    return line_items

  async def link_session(
      self, checkout_id: str, stripe_session_id: str
  ) -> bool:
    """Stores the processor session id on a pending checkout."""
    if not is_uuid(checkout_id):
      raise InvalidRequestError("Invalid checkout id")
    if not stripe_session_id:
      raise InvalidRequestError("Missing processor session id")
    linked = await db.link_stripe_session(
        self.session, checkout_id, stripe_session_id
    )
    await self.session.commit()
    return linked

  # --- Finalization ---

  async def finalize(
      self, stripe_session_id: str, payment_intent_id: Optional[str] = None
  ) -> str:
    """Turns a completed processor session into exactly one paid order.

    Safe to call any number of times for the same session: later calls only
    fill in the payment intent and paid timestamp if they are still missing,
    and return the existing order id.

    Args:
      stripe_session_id: The processor's checkout session id.
      payment_intent_id: The processor's payment intent id, if known.

    Returns:
      The id of the order produced by the session.

    Raises:
      CheckoutNotFoundError: If no pending checkout is linked to the session.
      SQLAlchemyError: If the order could not be written and no concurrent
        writer produced one either.
    """
    if not stripe_session_id:
      raise InvalidRequestError("Missing processor session id")

    existing = await db.get_order_by_stripe_session(
        self.session, stripe_session_id
    )
    if existing is not None:
      logger.info(
          "Session %s already finalized as order %s",
          stripe_session_id,
          existing.id,
      )
      return await self._confirm_existing(
          existing.id, stripe_session_id, payment_intent_id
      )

    checkout = await db.get_checkout_by_stripe_session(
        self.session, stripe_session_id
    )
    if checkout is None:
      raise CheckoutNotFoundError(
          f"No pending checkout for session {stripe_session_id}"
      )

    try:
      order_id = await self._create_order(checkout, payment_intent_id)
      await self.session.commit()
    except SQLAlchemyError:
      await self.session.rollback()
      existing = await db.get_order_by_stripe_session(
          self.session, stripe_session_id
      )
      if existing is None:
        raise
      logger.info(
          "Concurrent finalization of %s resolved to order %s",
          stripe_session_id,
          existing.id,
      )
      return await self._confirm_existing(
          existing.id, stripe_session_id, payment_intent_id
      )

    logger.info(
        "Finalized checkout %s as order %s", checkout.id, order_id
    )
    return order_id

  async def _confirm_existing(
      self,
      order_id: str,
      stripe_session_id: str,
      payment_intent_id: Optional[str],
  ) -> str:
    await db.fill_order_payment(self.session, order_id, payment_intent_id)
    await db.complete_checkout(
        self.session, stripe_session_id, order_id, payment_intent_id
    )
    await self.session.commit()
    return order_id

  async def _create_order(
      self, checkout: db.CheckoutSession, payment_intent_id: Optional[str]
  ) -> str:
    """Stages the order and every dependent write in the current transaction."""
    now = db.utcnow()
    order = db.Order(
        id=db.new_id(),
        user_id=checkout.user_id,
        email=checkout.email,
        customer_name=checkout.customer_name,
        customer_phone=checkout.customer_phone,
        contact=checkout.contact,
        shipping_address=checkout.shipping_address,
        delivery_option=checkout.delivery_option,
        promo_code_id=checkout.promo_code_id,
        promo_code=checkout.promo_code,
        discount_cents=checkout.discount_cents or 0,
        subtotal_cents=checkout.subtotal_cents,
        status="paid",
        paid_at=now,
        payment_provider="stripe",
        currency=checkout.currency,
        stripe_checkout_session_id=checkout.stripe_checkout_session_id,
        stripe_payment_intent_id=payment_intent_id,
        created_at=now,
        updated_at=now,
    )
    self.session.add(order)

    quantities = collections.Counter()
    for item in checkout.items:
      self.session.add(
          db.OrderItem(
              order_id=order.id,
              product_id=item.get("product_id"),
              product_slug=item["product_slug"],
              name=item["name"],
              image_url=item.get("image_url"),
              price_cents=item["price_cents"],
              variant=item.get("variant"),
              size=item.get("size"),
              quantity=item["quantity"],
          )
      )
      if item.get("product_id"):
        quantities[item["product_id"]] += item["quantity"]

    # Flush first so a duplicate order fails before any counter moves.
    await self.session.flush()

    if checkout.promo_code_id:
      await db.increment_promo_redemptions(self.session, checkout.promo_code_id)

    for product_id, quantity in quantities.items():
      stock = await db.decrement_stock(self.session, product_id, quantity)
      if stock is not None and stock < 0:
        logger.warning(
            "Product %s oversold by order %s (stock now %d)",
            product_id,
            order.id,
            stock,
        )

    await db.complete_checkout(
        self.session,
        checkout.stripe_checkout_session_id,
        order.id,
        payment_intent_id,
    )
    return order.id

  # --- Reconciliation ---

  async def reconcile(
      self,
      stripe_session_id: str,
      amount_total: Optional[int],
      currency: Optional[str],
  ) -> ReconciliationResult:
    """Compares the charged amount with the quoted total.

    A mismatch is recorded on the pending checkout the first time it is seen
    and never overwritten. Order state is not touched.
    """
    if not stripe_session_id:
      return ReconciliationResult(ok=False, reason="missing_session_id")
    if amount_total is None:
      return ReconciliationResult(ok=False, reason="missing_amount_total")

    checkout = await db.get_checkout_by_stripe_session(
        self.session, stripe_session_id
    )
    if checkout is None:
      return ReconciliationResult(ok=False, reason="checkout_not_found")

    expected = checkout.total_cents
    if expected == amount_total:
      return ReconciliationResult(
          ok=True,
          mismatch=False,
          expected_total_cents=expected,
          processor_amount_total_cents=amount_total,
      )

    recorded = await db.record_pricing_check(
        self.session,
        stripe_session_id,
        {
            "expected_total_cents": expected,
            "stripe_amount_total_cents": amount_total,
            "stripe_currency": currency or checkout.currency or "usd",
            "checked_at": db.utcnow().isoformat(),
        },
    )
    await self.session.commit()
    if recorded:
      logger.warning(
          "Pricing mismatch on %s: expected %d, charged %d",
          stripe_session_id,
          expected,
          amount_total,
      )

    return ReconciliationResult(
        ok=True,
        mismatch=True,
        expected_total_cents=expected,
        processor_amount_total_cents=amount_total,
    )

  # --- Processor callbacks ---

  async def handle_event(self, event: Dict[str, Any]) -> Optional[str]:
    """Processes a verified webhook event.

    Returns:
      The order id for a completed checkout, or None for ignored event types.
    """
    if event.get("type") != COMPLETED_EVENT:
      logger.debug("Ignoring webhook event %s", event.get("type"))
      return None

    processor_session = to_processor_session(
        (event.get("data") or {}).get("object") or {}
    )
    checkout_id = processor_session.metadata.get("checkout_id")
    if checkout_id:
      try:
        await self.link_session(checkout_id, processor_session.id)
      except (InvalidRequestError, SQLAlchemyError) as e:
        # Finalization decides whether the session can be resolved.
        await self.session.rollback()
        logger.warning(
            "Could not link checkout %s to session %s: %s",
            checkout_id,
            processor_session.id,
            e,
        )

    order_id = await self.finalize(
        processor_session.id, processor_session.payment_intent_id
    )

    check = await self.reconcile(
        processor_session.id,
        processor_session.amount_total,
        processor_session.currency,
    )
    if check.mismatch:
      logger.error(
          "Total mismatch for session %s: expected %s, charged %s",
          processor_session.id,
          check.expected_total_cents,
          check.processor_amount_total_cents,
      )
    return order_id

  async def order_for_completed_payment(self, session_id: str) -> Optional[str]:
    """Resolves the order for a processor session the customer returned from.

    Returns:
      The order id, or None while the completion webhook has not landed.

    Raises:
      InvalidRequestError: If the session id is missing or unpaid.
    """
    session_id = (session_id or "").strip()
    if not session_id:
      raise InvalidRequestError("Missing session_id")
    processor_session = await self.payment_processor.retrieve_session(
        session_id
    )
    if processor_session.payment_status != "paid":
      raise InvalidRequestError("Payment not completed")
    order = await db.get_order_by_stripe_session(
        self.session, processor_session.id
    )
    return order.id if order else None
