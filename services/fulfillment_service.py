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

"""Fulfillment service for pricing delivery options.

Delivery is a static price list keyed by option id. Carrier rates bought for
labels after the sale are unrelated to what the customer pays here.
"""

import dataclasses
from typing import Optional


@dataclasses.dataclass(frozen=True)
class DeliveryOption:
  id: str
  price_cents: int


DEFAULT_DELIVERY_OPTION = "standard"

DELIVERY_OPTIONS = (
    DeliveryOption(id="standard", price_cents=0),
    DeliveryOption(id="express", price_cents=1200),
)


class FulfillmentService:
  """Service for handling fulfillment logic."""

  def __init__(self, options: tuple = DELIVERY_OPTIONS):
    self._options = {option.id: option for option in options}

  def normalize_option(self, option_id: Optional[str]) -> str:
    """Returns the option id as stored on quotes, defaulting when blank."""
    option_id = (option_id or "").strip().lower()
    return option_id or DEFAULT_DELIVERY_OPTION

  def shipping_cents(self, option_id: Optional[str]) -> int:
    """Prices a delivery option. Unknown options ship at no charge."""
    option = self._options.get(self.normalize_option(option_id))
    return option.price_cents if option else 0
