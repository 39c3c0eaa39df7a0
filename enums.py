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

"""Enumerations for the storefront server.

This module defines standard enums used throughout the server application
to represent the state of orders, shipments and promo codes.
"""

import enum


class OrderStatus(str, enum.Enum):
  CREATED = "created"
  PAID = "paid"
  SHIPPED = "shipped"
  DELIVERED = "delivered"
  CANCELLED = "cancelled"
  REFUNDED = "refunded"


# Column set at most once when an order first enters the status.
STATUS_TIMESTAMP_COLUMNS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}

SHIPPABLE_STATUSES = frozenset(
    [OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED]
)


class ShipmentStatus(str, enum.Enum):
  DRAFT = "draft"
  RATED = "rated"
  PURCHASED = "purchased"


class DiscountType(str, enum.Enum):
  PERCENT = "percent"
  AMOUNT = "amount"


class PromoFailureReason(str, enum.Enum):
  MISSING_CODE = "missing_code"
  NOT_FOUND = "not_found"
  INACTIVE = "inactive"
  NOT_STARTED = "not_started"
  EXPIRED = "expired"
  MIN_SUBTOTAL = "min_subtotal"
  MAX_REDEMPTIONS = "max_redemptions"
  INVALID_DISCOUNT = "invalid_discount"
  CURRENCY_MISMATCH = "currency_mismatch"
  NO_STRIPE_COUPON = "no_stripe_coupon"


class LabelFormat(str, enum.Enum):
  PDF_4X6 = "PDF_4x6"
  ZPLII = "ZPLII"


class OrderSort(str, enum.Enum):
  NEWEST = "newest"
  OLDEST = "oldest"
