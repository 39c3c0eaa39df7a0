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

"""Payment processor integration.

`PaymentProcessor` is the contract the checkout pipeline depends on: create a
hosted session, retrieve it, verify an inbound webhook and create coupons.
`StripePaymentProcessor` implements it with the stripe library. The stripe
client is synchronous, so calls run in a worker thread.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
from exceptions import PaymentsUnavailableError
from models import ProcessorSession
import stripe

logger = logging.getLogger(__name__)

# Session metadata keys used to recover context from processor callbacks.
METADATA_KEYS = ("checkout_id", "expected_total_cents")


class PaymentProcessor:
  """Interface to the hosted payment processor."""

  async def create_checkout_session(
      self,
      line_items: List[Dict[str, Any]],
      metadata: Dict[str, str],
      customer_email: str,
      success_url: str,
      cancel_url: str,
      coupon_id: Optional[str] = None,
  ) -> ProcessorSession:
    raise NotImplementedError

  async def retrieve_session(self, session_id: str) -> ProcessorSession:
    raise NotImplementedError

  def parse_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
    """Verifies a webhook signature and returns the decoded event."""
    raise NotImplementedError

  async def create_coupon(
      self,
      code: str,
      percent_off: Optional[float],
      amount_off_cents: Optional[int],
      currency: str,
  ) -> str:
    raise NotImplementedError


def to_processor_session(data: Any) -> ProcessorSession:
  """Builds a ProcessorSession from a session object or webhook payload."""
  if hasattr(data, "to_dict"):
    data = data.to_dict()
  metadata = data.get("metadata") or {}
  payment_intent = data.get("payment_intent")
  if payment_intent is not None and not isinstance(payment_intent, str):
    payment_intent = payment_intent.get("id")
  return ProcessorSession(
      id=data.get("id") or "",
      url=data.get("url"),
      payment_status=data.get("payment_status"),
      payment_intent_id=payment_intent,
      amount_total=data.get("amount_total"),
      currency=data.get("currency"),
      metadata={
          key: str(metadata[key]) for key in METADATA_KEYS if metadata.get(key)
      },
  )


class StripePaymentProcessor(PaymentProcessor):
  """Stripe Checkout backed processor."""

  def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str]):
    self.secret_key = secret_key
    self.webhook_secret = webhook_secret

  def _require_key(self) -> str:
    if not self.secret_key:
      raise PaymentsUnavailableError()
    return self.secret_key

  async def create_checkout_session(
      self,
      line_items: List[Dict[str, Any]],
      metadata: Dict[str, str],
      customer_email: str,
      success_url: str,
      cancel_url: str,
      coupon_id: Optional[str] = None,
  ) -> ProcessorSession:
    """Creates a one-off payment mode Checkout Session."""
    params: Dict[str, Any] = {
        "mode": "payment",
        "line_items": line_items,
        "customer_email": customer_email,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
    }
    if coupon_id:
      params["discounts"] = [{"coupon": coupon_id}]

    api_key = self._require_key()
    try:
      session = await asyncio.to_thread(
          stripe.checkout.Session.create, api_key=api_key, **params
      )
    except stripe.StripeError as e:
      logger.error("Stripe session creation failed: %s", e)
      raise PaymentProviderError("Unable to start checkout") from e
    return to_processor_session(session)

  async def retrieve_session(self, session_id: str) -> ProcessorSession:
    api_key = self._require_key()
    try:
      session = await asyncio.to_thread(
          stripe.checkout.Session.retrieve, session_id, api_key=api_key
      )
    except stripe.InvalidRequestError as e:
      raise InvalidRequestError("Unknown checkout session") from e
    except stripe.StripeError as e:
      logger.error("Stripe session lookup failed for %s: %s", session_id, e)
      raise PaymentProviderError("Unable to verify payment") from e
    return to_processor_session(session)

  def parse_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
    if not self.webhook_secret:
      raise PaymentsUnavailableError("Webhook secret not configured")
    try:
      stripe.WebhookSignature.verify_header(
          payload.decode("utf-8"), signature, self.webhook_secret
      )
      return json.loads(payload)
    except (stripe.SignatureVerificationError, ValueError) as e:
      raise InvalidRequestError("Invalid signature") from e

  async def create_coupon(
      self,
      code: str,
      percent_off: Optional[float],
      amount_off_cents: Optional[int],
      currency: str,
  ) -> str:
    params: Dict[str, Any] = {
        "duration": "once",
        "name": code,
        "metadata": {"promo_code": code},
    }
    if percent_off is not None:
      params["percent_off"] = percent_off
    else:
      params["amount_off"] = amount_off_cents
      params["currency"] = currency

    api_key = self._require_key()
    try:
      coupon = await asyncio.to_thread(
          stripe.Coupon.create, api_key=api_key, **params
      )
    except stripe.StripeError as e:
      logger.error("Stripe coupon creation failed for %s: %s", code, e)
      raise PaymentProviderError("Unable to create coupon") from e
    return coupon.id

