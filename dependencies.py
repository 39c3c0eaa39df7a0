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

"""FastAPI dependencies for the storefront server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Identity extraction (X-User-Id) and admin bearer token checks.
- Service instantiation (quote, checkout, promo, order and shipment services).
- Database session management.
- Payment processor, carrier and label storage construction from flags.
"""

import hmac
from typing import AsyncGenerator, Optional

import config
import db
from exceptions import UnauthorizedError
from fastapi import Depends
from fastapi import Header
import httpx
from services.carrier import ShippoClient
from services.checkout_service import CheckoutService
from services.fulfillment_service import FulfillmentService
from services.label_storage import CloudinaryLabelStorage
from services.order_service import OrderService
from services.payment_processor import PaymentProcessor
from services.payment_processor import StripePaymentProcessor
from services.promo_service import PromoCodeService
from services.promo_service import PromotionValidator
from services.quote_service import is_uuid
from services.quote_service import QuoteEngine
from services.shipment_service import ShipmentService
from sqlalchemy.ext.asyncio import AsyncSession


async def current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[str]:
  """Returns the authenticated customer id, or None for a guest."""
  if x_user_id and is_uuid(x_user_id.strip()):
    return x_user_id.strip()
  return None


async def require_user_id(
    user_id: Optional[str] = Depends(current_user_id),
) -> str:
  if not user_id:
    raise UnauthorizedError()
  return user_id


async def require_admin(
    authorization: Optional[str] = Header(None),
) -> None:
  """Verifies the admin bearer token."""
  expected = config.flag_value("admin_api_token")
  if not expected:
    raise UnauthorizedError("Admin access not configured")
  scheme, _, token = (authorization or "").partition(" ")
  if scheme.lower() != "bearer" or not hmac.compare_digest(
      token.strip().encode("utf-8"), expected.encode("utf-8")
  ):
    raise UnauthorizedError()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for a database session."""
  async with db.manager.session_factory() as session:
    yield session


def get_payment_processor() -> PaymentProcessor:
  """Dependency provider for the payment processor."""
  return StripePaymentProcessor(
      config.flag_value("stripe_secret_key"),
      config.flag_value("stripe_webhook_secret"),
  )


def get_fulfillment_service() -> FulfillmentService:
  """Dependency provider for FulfillmentService."""
  return FulfillmentService()


def get_quote_engine(
    session: AsyncSession = Depends(get_db),
    fulfillment_service: FulfillmentService = Depends(get_fulfillment_service),
) -> QuoteEngine:
  return QuoteEngine(session, fulfillment_service)


def get_promotion_validator(
    session: AsyncSession = Depends(get_db),
) -> PromotionValidator:
  return PromotionValidator(session)


def get_checkout_service(
    session: AsyncSession = Depends(get_db),
    payment_processor: PaymentProcessor = Depends(get_payment_processor),
    quote_engine: QuoteEngine = Depends(get_quote_engine),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(
      session,
      payment_processor,
      config.flag_value("site_url"),
      quote_engine,
  )


def get_promo_code_service(
    session: AsyncSession = Depends(get_db),
    payment_processor: PaymentProcessor = Depends(get_payment_processor),
) -> PromoCodeService:
  return PromoCodeService(session, payment_processor)


def get_order_service(
    session: AsyncSession = Depends(get_db),
) -> OrderService:
  return OrderService(session)


def get_http_transport() -> Optional[httpx.AsyncBaseTransport]:
  """Outbound HTTP transport for carrier calls and label downloads."""
  return None


def get_carrier(
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
) -> ShippoClient:
  return ShippoClient(config.shippo_token(), transport=transport)


def get_label_storage() -> CloudinaryLabelStorage:
  return CloudinaryLabelStorage(
      config.flag_value("cloudinary_cloud_name"),
      config.flag_value("cloudinary_api_key"),
      config.flag_value("cloudinary_api_secret"),
      folder=config.flag_value("label_folder"),
  )


def get_shipment_service(
    session: AsyncSession = Depends(get_db),
    carrier: ShippoClient = Depends(get_carrier),
    label_storage: CloudinaryLabelStorage = Depends(get_label_storage),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
) -> ShipmentService:
  """Dependency provider for ShipmentService."""
  return ShipmentService(session, carrier, label_storage, transport)
