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

"""Request, response and snapshot models for the storefront server.

Public checkout requests use the camelCase names the storefront client sends
(`productId`, `deliveryOption`, ...). Quote and order snapshots use snake_case
with `_cents` suffixes, the shape stored on pending checkouts.

Request models are deliberately lenient about types: shape validation happens
in the services so that failures produce the user-facing messages the
storefront displays instead of generic 422 responses.
"""

import datetime
from typing import Any, Dict, List, Optional

from enums import DiscountType
from enums import OrderStatus
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class CamelModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True)


# --- Promotions ---


class PromoValidationResult(BaseModel):
  """Outcome of validating a promo code against a subtotal."""

  valid: bool
  reason: Optional[str] = None
  normalized_code: Optional[str] = None
  promo_code_id: Optional[str] = None
  stripe_coupon_id: Optional[str] = None
  discount_cents: Optional[int] = None
  min_subtotal_cents: Optional[int] = None
  max_redemptions: Optional[int] = None
  times_redeemed: Optional[int] = None

  def as_error(self) -> Dict[str, Any]:
    return self.model_dump(exclude_none=True)


class PromoValidateRequest(BaseModel):
  code: Optional[str] = None
  subtotal_cents: Any = 0
  currency: Optional[str] = None


class PromoCodeCreateRequest(BaseModel):
  code: Optional[str] = None
  active: bool = True
  discount_type: Optional[str] = None
  percent_off: Optional[float] = None
  amount_off_cents: Optional[float] = None
  currency: Optional[str] = None
  min_subtotal_cents: Optional[int] = None
  max_redemptions: Optional[int] = None
  starts_at: Optional[datetime.datetime] = None
  ends_at: Optional[datetime.datetime] = None


class PromoCodeUpdateRequest(BaseModel):
  active: Optional[bool] = None
  min_subtotal_cents: Optional[int] = None
  max_redemptions: Optional[int] = None
  starts_at: Optional[datetime.datetime] = None
  ends_at: Optional[datetime.datetime] = None


class PromoCodeView(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  code: str
  active: bool
  discount_type: DiscountType
  percent_off: Optional[float] = None
  amount_off_cents: Optional[int] = None
  currency: Optional[str] = None
  min_subtotal_cents: Optional[int] = None
  max_redemptions: Optional[int] = None
  times_redeemed: int = 0
  starts_at: Optional[datetime.datetime] = None
  ends_at: Optional[datetime.datetime] = None
  stripe_coupon_id: Optional[str] = None
  created_at: Optional[datetime.datetime] = None
  updated_at: Optional[datetime.datetime] = None


# --- Quotes ---


class QuoteItemInput(CamelModel):
  product_id: Optional[str] = Field(None, alias="productId")
  quantity: Any = None
  size: Optional[str] = None
  variant: Optional[str] = None


class QuoteRequest(CamelModel):
  items: List[QuoteItemInput] = []
  delivery_option: Optional[str] = Field("standard", alias="deliveryOption")
  promo_code: Optional[str] = Field(None, alias="promoCode")
  currency: Optional[str] = "usd"


class QuoteLineItem(BaseModel):
  product_id: str
  product_slug: str
  name: str
  image_url: Optional[str] = None
  price_cents: int
  quantity: int
  variant: Optional[str] = None
  size: Optional[str] = None


class AppliedPromo(BaseModel):
  promo_code_id: str
  normalized_code: str
  stripe_coupon_id: str


class Quote(BaseModel):
  """Server-computed price breakdown; the only pricing downstream trusts."""

  model_config = ConfigDict(frozen=True)

  currency: str
  delivery_option: str
  subtotal_cents: int
  discount_cents: int
  shipping_cents: int
  tax_cents: int
  total_cents: int
  promo: Optional[AppliedPromo] = None
  items: List[QuoteLineItem]


# --- Checkout ---


class Contact(CamelModel):
  name: Optional[str] = None
  email: Optional[str] = None
  phone: Optional[str] = None
  notes: Optional[str] = None


class ShippingAddress(CamelModel):
  first_name: Optional[str] = Field(None, alias="firstName")
  last_name: Optional[str] = Field(None, alias="lastName")
  address1: Optional[str] = None
  address2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = None
  zip: Optional[str] = None
  country: Optional[str] = None


class CheckoutRequest(CamelModel):
  contact: Optional[Contact] = None
  shipping_address: Optional[ShippingAddress] = Field(
      None, alias="shippingAddress"
  )
  delivery_option: Optional[str] = Field("standard", alias="deliveryOption")
  promo_code: Optional[str] = Field(None, alias="promoCode")
  items: List[QuoteItemInput] = []


class CheckoutRedirect(BaseModel):
  url: str
  checkout_id: str = Field(serialization_alias="checkoutId")


class ProcessorSession(BaseModel):
  """Hosted payment session as reported by the processor."""

  id: str
  url: Optional[str] = None
  payment_status: Optional[str] = None
  payment_intent_id: Optional[str] = None
  amount_total: Optional[int] = None
  currency: Optional[str] = None
  metadata: Dict[str, str] = {}


class ReconciliationResult(BaseModel):
  ok: bool
  mismatch: bool = False
  reason: Optional[str] = None
  expected_total_cents: Optional[int] = None
  processor_amount_total_cents: Optional[int] = None


# --- Orders ---


class OrderItemView(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  product_id: Optional[str] = None
  product_slug: str
  name: str
  image_url: Optional[str] = None
  price_cents: int
  variant: Optional[str] = None
  size: Optional[str] = None
  quantity: int


class OrderView(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  user_id: Optional[str] = None
  email: str
  customer_name: Optional[str] = None
  customer_phone: Optional[str] = None
  contact: Optional[Dict[str, Any]] = None
  shipping_address: Optional[Dict[str, Any]] = None
  delivery_option: Optional[str] = None
  promo_code: Optional[str] = None
  discount_cents: int = 0
  subtotal_cents: int
  currency: str
  status: OrderStatus
  tracking_number: Optional[str] = None
  admin_notes: Optional[str] = None
  stripe_checkout_session_id: Optional[str] = None
  stripe_payment_intent_id: Optional[str] = None
  created_at: Optional[datetime.datetime] = None
  updated_at: Optional[datetime.datetime] = None
  paid_at: Optional[datetime.datetime] = None
  shipped_at: Optional[datetime.datetime] = None
  delivered_at: Optional[datetime.datetime] = None
  cancelled_at: Optional[datetime.datetime] = None
  refunded_at: Optional[datetime.datetime] = None


class OrderSummary(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  created_at: Optional[datetime.datetime] = None
  status: OrderStatus
  email: str
  user_id: Optional[str] = None
  customer_name: Optional[str] = None
  customer_phone: Optional[str] = None
  subtotal_cents: int
  items_count: int = 0


class OrderUpdateRequest(BaseModel):
  status: Optional[str] = None
  tracking_number: Optional[str] = None
  admin_notes: Optional[str] = None


# --- Shipping ---


class Parcel(BaseModel):
  length: float
  width: float
  height: float
  weight: float
  distance_unit: str
  mass_unit: str


class CarrierAddress(BaseModel):
  name: Optional[str] = None
  company: Optional[str] = None
  street1: str = ""
  street2: Optional[str] = None
  city: str = ""
  state: Optional[str] = None
  zip: str = ""
  country: str = ""
  phone: Optional[str] = None
  email: Optional[str] = None

  def is_complete(self) -> bool:
    return bool(self.street1 and self.city and self.zip and self.country)


class CarrierRate(BaseModel):
  id: str
  amount: float
  currency: str = "USD"
  provider: str = "Unknown"
  service: str = "Service"
  service_token: Optional[str] = None
  estimated_days: Optional[int] = None
  duration_terms: Optional[str] = None


class ShipmentDraftResult(BaseModel):
  provider_shipment_id: str
  rates: List[CarrierRate] = []


class LabelPurchase(BaseModel):
  transaction_id: Optional[str] = None
  label_url: str = ""
  tracking_number: str = ""
  tracking_url: Optional[str] = None
  postage_amount: Optional[float] = None
  postage_currency: Optional[str] = None


class LabelAsset(BaseModel):
  asset_url: str
  public_id: str
  bytes: int = 0


class ShipmentDraftRequest(BaseModel):
  parcel: Optional[Dict[str, Any]] = None
  parcel_template_id: Optional[str] = None


class LabelPurchaseRequest(BaseModel):
  rate_id: Optional[str] = None
  label_format: Optional[str] = None


class ShipmentView(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  order_id: str
  provider: str
  status: str
  provider_shipment_id: Optional[str] = None
  provider_rate_id: Optional[str] = None
  provider_transaction_id: Optional[str] = None
  parcel_template_id: Optional[str] = None
  parcel: Optional[Dict[str, Any]] = None
  rates: Optional[List[Dict[str, Any]]] = None
  selected_rate: Optional[Dict[str, Any]] = None
  label_url: Optional[str] = None
  label_asset_url: Optional[str] = None
  label_asset_provider: Optional[str] = None
  label_asset_public_id: Optional[str] = None
  label_format: Optional[str] = None
  purchased_at: Optional[datetime.datetime] = None
  tracking_number: Optional[str] = None
  tracking_url: Optional[str] = None
  postage_amount: Optional[float] = None
  postage_currency: Optional[str] = None


class ParcelTemplateView(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  name: str
  length: float
  width: float
  height: float
  weight: float
  distance_unit: str
  mass_unit: str
  min_items: Optional[int] = None
  max_items: Optional[int] = None
  tags: Optional[List[str]] = None
  label_format_default: Optional[str] = None
