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

"""Shippo REST client for shipment rating and label purchase."""

import logging
import math
from typing import Any, Dict, Optional

from exceptions import CarrierError
import httpx
from models import CarrierAddress
from models import CarrierRate
from models import LabelPurchase
from models import Parcel
from models import ShipmentDraftResult

logger = logging.getLogger(__name__)

SHIPPO_API_BASE = "https://api.goshippo.com/"
TOKEN_MISSING = "shippo_token_missing"


def _to_float(value: Any) -> Optional[float]:
  try:
    number = float(value)
  except (TypeError, ValueError):
    return None
  return number if math.isfinite(number) else None


def normalize_rate(rate: Dict[str, Any]) -> Optional[CarrierRate]:
  """Maps a Shippo rate object to a CarrierRate, or None without an id."""
  if not rate or not rate.get("object_id"):
    return None
  servicelevel = rate.get("servicelevel") or {}
  return CarrierRate(
      id=str(rate["object_id"]),
      amount=_to_float(rate.get("amount")) or 0.0,
      currency=rate.get("currency") or "USD",
      provider=rate.get("provider") or "Unknown",
      service=(
          servicelevel.get("name") or servicelevel.get("token") or "Service"
      ),
      service_token=servicelevel.get("token") or None,
      estimated_days=rate.get("estimated_days"),
      duration_terms=rate.get("duration_terms"),
  )


def _error_message(payload: Dict[str, Any], status_code: int) -> str:
  messages = payload.get("messages") or []
  first = messages[0].get("text") if messages else None
  return payload.get("detail") or first or f"Shippo error ({status_code})"


class ShippoClient:
  """Thin async client over the Shippo REST API."""

  def __init__(
      self,
      token: Optional[str],
      transport: Optional[httpx.AsyncBaseTransport] = None,
      base_url: str = SHIPPO_API_BASE,
      timeout: float = 30.0,
  ):
    self.token = token
    self.transport = transport
    self.base_url = base_url
    self.timeout = timeout

  async def _request(
      self, method: str, path: str, body: Optional[Dict[str, Any]] = None
  ) -> Dict[str, Any]:
    if not self.token:
      raise CarrierError("Missing Shippo API token", code=TOKEN_MISSING)

    async with httpx.AsyncClient(
        base_url=self.base_url,
        transport=self.transport,
        timeout=self.timeout,
        headers={"Authorization": f"ShippoToken {self.token}"},
    ) as client:
      try:
        response = await client.request(method, path, json=body)
      except httpx.HTTPError as e:
        logger.error("Shippo %s %s failed: %s", method, path, e)
        raise CarrierError(f"Shippo request failed: {e}") from e

    try:
      payload = response.json()
    except ValueError:
      payload = {}
    if not isinstance(payload, dict):
      payload = {}
    if response.is_error:
      raise CarrierError(_error_message(payload, response.status_code))
    return payload

  async def create_shipment(
      self,
      address_from: CarrierAddress,
      address_to: CarrierAddress,
      parcel: Parcel,
  ) -> ShipmentDraftResult:
    """Creates a shipment synchronously and returns its rate quotes."""
    payload = await self._request(
        "POST",
        "shipments",
        {
            "address_from": address_from.model_dump(exclude_none=True),
            "address_to": address_to.model_dump(exclude_none=True),
            "parcels": [parcel.model_dump()],
            "async": False,
        },
    )
    rates = [normalize_rate(rate) for rate in payload.get("rates") or []]
    return ShipmentDraftResult(
        provider_shipment_id=str(payload.get("object_id") or ""),
        rates=[rate for rate in rates if rate is not None],
    )

  async def buy_label(self, rate_id: str, label_format: str) -> LabelPurchase:
    """Purchases a label for a rate.

    Raises:
      CarrierError: If the API call fails or the transaction is not SUCCESS.
    """
    payload = await self._request(
        "POST",
        "transactions",
        {"rate": rate_id, "label_file_type": label_format, "async": False},
    )
    if payload.get("status") != "SUCCESS":
      messages = payload.get("messages") or []
      message = messages[0].get("text") if messages else None
      raise CarrierError(message or "Shippo transaction failed")

    rate = payload.get("rate")
    rate = rate if isinstance(rate, dict) else {}
    return LabelPurchase(
        transaction_id=payload.get("object_id"),
        label_url=str(payload.get("label_url") or ""),
        tracking_number=str(payload.get("tracking_number") or ""),
        tracking_url=payload.get("tracking_url_provider") or None,
        postage_amount=_to_float(rate.get("amount")),
        postage_currency=rate.get("currency"),
    )

  async def fetch_transaction_label_url(
      self, transaction_id: str
  ) -> Optional[str]:
    payload = await self._request("GET", f"transactions/{transaction_id}")
    return payload.get("label_url") or None
