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

"""Custom exceptions for the storefront server."""

from typing import Any, Dict, Optional


class StoreError(Exception):
  """Base class for all storefront exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)

  def extra(self) -> Dict[str, Any]:
    """Additional structured fields rendered alongside the message."""
    return {}


class ResourceNotFoundError(StoreError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class InvalidRequestError(StoreError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class UnauthorizedError(StoreError):
  """Raised when an admin or customer credential is missing or wrong."""

  def __init__(self, message: str = "Unauthorized"):
    super().__init__(message, code="UNAUTHORIZED", status_code=401)


class QuoteError(StoreError):
  """Raised when a cart cannot be priced.

  `promo_error` carries the promotion validator's structured reason when the
  failure came from the promo code, so clients can render a precise message.
  """

  def __init__(
      self, message: str, promo_error: Optional[Dict[str, Any]] = None
  ):
    super().__init__(message, code="QUOTE_FAILED", status_code=400)
    self.promo_error = promo_error

  def extra(self) -> Dict[str, Any]:
    if self.promo_error is None:
      return {}
    return {"promoError": self.promo_error}


class CheckoutNotFoundError(StoreError):
  """Raised when a processor session has no matching pending checkout."""

  def __init__(self, message: str):
    super().__init__(message, code="CHECKOUT_NOT_FOUND", status_code=404)


class PaymentsUnavailableError(StoreError):
  """Raised when the payment processor is not configured."""

  def __init__(self, message: str = "Payments unavailable"):
    super().__init__(message, code="PAYMENTS_UNAVAILABLE", status_code=500)


class PaymentProviderError(StoreError):
  """Raised when the payment processor rejects or fails a call."""

  def __init__(
      self,
      message: str,
      code: str = "PAYMENT_PROVIDER_ERROR",
      status_code: int = 502,
  ):
    super().__init__(message, code=code, status_code=status_code)


class CarrierError(StoreError):
  """Raised when the shipping carrier API fails."""

  def __init__(self, message: str, code: str = "CARRIER_ERROR"):
    super().__init__(message, code=code, status_code=502)


class AssetStoreError(StoreError):
  """Raised when a label cannot be archived to durable storage."""

  def __init__(self, message: str):
    super().__init__(message, code="cloudinary_upload_failed", status_code=502)


class LabelUnavailableError(StoreError):
  """Raised when no label could be downloaded for a shipment."""

  def __init__(self, message: str, code: str, status_code: int = 502):
    super().__init__(message, code=code, status_code=status_code)


class ShipmentNotEligibleError(StoreError):
  """Raised when an order cannot be shipped in its current state."""

  def __init__(self, message: str):
    super().__init__(message, code="SHIPMENT_NOT_ELIGIBLE", status_code=400)


class LabelAlreadyPurchasedError(StoreError):
  """Raised when buying a second label for a shipment."""

  def __init__(self, message: str = "Label already purchased"):
    super().__init__(message, code="LABEL_ALREADY_PURCHASED", status_code=400)


class UnknownRateError(StoreError):
  """Raised when a rate id is not part of the stored rate snapshot."""

  def __init__(self, message: str = "Rate not found"):
    super().__init__(message, code="RATE_NOT_FOUND", status_code=400)
