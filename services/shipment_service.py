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

"""Shipment service for post-sale fulfillment.

This module provides the `ShipmentService` class, which drives the shipping
workflow of a paid order:

- Drafting a shipment: normalize the store origin and the customer address to
  the carrier schema, resolve parcel dimensions and fetch rate quotes.
- Buying a label for one of the quoted rates.
- Archiving the label to durable storage. Carrier label URLs may expire, so
  downloads fall back from the archive to a fresh transaction lookup to the
  URL stored at purchase time.

Purchase and archive are independent outcomes: a purchased label whose archive
failed is reported with a soft `archive_error` and can be archived later.
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

import db
from enums import LabelFormat
from enums import SHIPPABLE_STATUSES
from enums import ShipmentStatus
from exceptions import AssetStoreError
from exceptions import CarrierError
from exceptions import InvalidRequestError
from exceptions import LabelAlreadyPurchasedError
from exceptions import LabelUnavailableError
from exceptions import ResourceNotFoundError
from exceptions import ShipmentNotEligibleError
from exceptions import UnknownRateError
import httpx
from models import CarrierAddress
from models import LabelPurchaseRequest
from models import Parcel
from models import ParcelTemplateView
from models import ShipmentDraftRequest
from models import ShipmentView
from services import carrier
from services.carrier import ShippoClient
from services.label_storage import ASSET_PROVIDER
from services.label_storage import CloudinaryLabelStorage
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SHIPPING_ORIGIN_KEY = "shipping_origin"
SHIPPING_DEFAULTS_KEY = "shipping_defaults"

_CAP_TAGS = ["cap", "hat", "caps"]
DEFAULT_PARCEL_TEMPLATES = (
    dict(name="Cap - Single", length=8, width=8, height=4, weight=8,
         min_items=1, max_items=1, tags=_CAP_TAGS),
    dict(name="Cap - 2 hats", length=10, width=8, height=6, weight=16,
         min_items=2, max_items=2, tags=_CAP_TAGS),
    dict(name="Cap - 3-4 hats", length=12, width=10, height=8, weight=32,
         min_items=3, max_items=4, tags=_CAP_TAGS),
    dict(name="Soft goods mailer", length=10, width=13, height=2, weight=12,
         min_items=1, max_items=4,
         tags=["soft", "softgoods", "apparel", "shirt", "hoodie"]),
)


def _text(value: Any) -> str:
  return str(value).strip() if value is not None else ""


def normalize_address(data: Dict[str, Any]) -> CarrierAddress:
  """Maps a storefront or settings address to the carrier schema."""
  first_name = _text(data.get("firstName") or data.get("first_name"))
  last_name = _text(data.get("lastName") or data.get("last_name"))
  name = _text(data.get("name")) or " ".join(
      part for part in (first_name, last_name) if part
  )
  return CarrierAddress(
      name=name or None,
      company=_text(data.get("company")) or None,
      street1=_text(data.get("street1") or data.get("address1")),
      street2=_text(data.get("street2") or data.get("address2")) or None,
      city=_text(data.get("city")),
      state=_text(data.get("state")) or None,
      zip=_text(data.get("zip") or data.get("postal_code")),
      country=_text(data.get("country")),
      phone=_text(data.get("phone")) or None,
      email=_text(data.get("email")) or None,
  )


def normalize_parcel(data: Optional[Dict[str, Any]]) -> Optional[Parcel]:
  """Returns a Parcel if every dimension is positive and units are given."""
  if not data:
    return None
  dims = {}
  for key in ("length", "width", "height", "weight"):
    try:
      value = float(data.get(key))
    except (TypeError, ValueError):
      return None
    if not math.isfinite(value) or value <= 0:
      return None
    dims[key] = value
  distance_unit = _text(data.get("distance_unit"))
  mass_unit = _text(data.get("mass_unit"))
  if not distance_unit or not mass_unit:
    return None
  return Parcel(distance_unit=distance_unit, mass_unit=mass_unit, **dims)


def _template_parcel(template: Optional[db.ParcelTemplate]) -> Optional[Parcel]:
  if template is None:
    return None
  return normalize_parcel({
      "length": template.length,
      "width": template.width,
      "height": template.height,
      "weight": template.weight,
      "distance_unit": template.distance_unit,
      "mass_unit": template.mass_unit,
  })


def label_filename(shipment: db.Shipment) -> str:
  safe_id = re.sub(r"[^a-zA-Z0-9_-]", "", shipment.order_id or shipment.id)
  return f"shipping-label-{safe_id or shipment.id}.pdf"


class ShipmentService:
  """Service for shipment drafting, label purchase and label archival."""

  def __init__(
      self,
      session: AsyncSession,
      carrier_client: ShippoClient,
      label_storage: CloudinaryLabelStorage,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.session = session
    self.carrier = carrier_client
    self.label_storage = label_storage
    self.transport = transport

  # --- Templates and settings ---

  async def list_parcel_templates(self) -> List[db.ParcelTemplate]:
    """Lists parcel templates, seeding the defaults into an empty table."""
    templates = await db.list_parcel_templates(self.session)
    if templates:
      return templates
    for template in DEFAULT_PARCEL_TEMPLATES:
      self.session.add(
          db.ParcelTemplate(
              distance_unit="in",
              mass_unit="oz",
              label_format_default=LabelFormat.PDF_4X6.value,
              **template,
          )
      )
    await self.session.commit()
    logger.info(
        "Seeded %d default parcel templates", len(DEFAULT_PARCEL_TEMPLATES)
    )
    return await db.list_parcel_templates(self.session)

  async def _defaults(self) -> Dict[str, Any]:
    return await db.get_store_setting(self.session, SHIPPING_DEFAULTS_KEY) or {}

  async def get_workspace(self, order_id: str) -> Dict[str, Any]:
    """Everything the admin shipping panel needs for one order."""
    await self._get_order(order_id)
    shipment = await db.get_shipment_for_order(self.session, order_id)
    templates = await db.list_parcel_templates(self.session)
    return {
        "shipment": ShipmentView.model_validate(shipment) if shipment else None,
        "rates": (shipment.rates or []) if shipment else [],
        "parcel_templates": [
            ParcelTemplateView.model_validate(t) for t in templates
        ],
        "defaults": await self._defaults(),
        "template_notice": (
            None
            if templates
            else "No parcel templates configured yet. Add one to enable rate"
            " quotes."
        ),
    }

  # --- Draft ---

  async def create_draft(
      self, order_id: str, req: ShipmentDraftRequest
  ) -> Dict[str, Any]:
    """Rates a shipment for an order and stores the quotes.

    Raises:
      ShipmentNotEligibleError: If the order has not been paid.
      InvalidRequestError: If an address or the parcel cannot be resolved.
      LabelAlreadyPurchasedError: If the order's label is already bought.
      CarrierError: If the carrier rejects the shipment.
    """
    order = await self._get_order(order_id)
    if order.status not in {status.value for status in SHIPPABLE_STATUSES}:
      raise ShipmentNotEligibleError("Order not eligible for shipping")

    origin = await db.get_store_setting(self.session, SHIPPING_ORIGIN_KEY)
    if not origin:
      raise InvalidRequestError("Missing shipping origin")
    ship_from = normalize_address(origin)
    contact = order.contact or {}
    ship_to = normalize_address(
        dict(
            order.shipping_address or {},
            email=order.email,
            phone=contact.get("phone"),
        )
    )
    if not ship_from.is_complete():
      raise InvalidRequestError("Invalid shipping origin")
    if not ship_to.is_complete():
      raise InvalidRequestError("Invalid shipping address")

    existing = await db.get_shipment_for_order(self.session, order_id)
    if existing and existing.status == ShipmentStatus.PURCHASED.value:
      raise LabelAlreadyPurchasedError()

    parcel, template_id = await self._resolve_parcel(req)
    if parcel is None:
      raise InvalidRequestError("Missing parcel details")

    draft = await self.carrier.create_shipment(ship_from, ship_to, parcel)

    shipment = existing
    if shipment is None:
      shipment = db.Shipment(order_id=order_id, provider="shippo")
      self.session.add(shipment)
    shipment.status = ShipmentStatus.RATED.value
    shipment.provider_shipment_id = draft.provider_shipment_id
    shipment.parcel_template_id = template_id
    shipment.parcel = parcel.model_dump()
    shipment.rates = [rate.model_dump() for rate in draft.rates]
    shipment.updated_at = db.utcnow()
    await self.session.commit()
    logger.info(
        "Rated shipment for order %s: %d rates", order_id, len(draft.rates)
    )
    return {
        "shipment": ShipmentView.model_validate(shipment),
        "rates": draft.rates,
    }

  async def _resolve_parcel(
      self, req: ShipmentDraftRequest
  ) -> Tuple[Optional[Parcel], Optional[str]]:
    """Explicit dimensions, then the named template, then the store default."""
    parcel = normalize_parcel(req.parcel)
    template_id = req.parcel_template_id or None

    if parcel is None and req.parcel_template_id:
      parcel = _template_parcel(
          await db.get_parcel_template(self.session, req.parcel_template_id)
      )
      if parcel is None:
        template_id = None

    if parcel is None:
      default_id = (await self._defaults()).get("default_parcel_template_id")
      if default_id:
        parcel = _template_parcel(
            await db.get_parcel_template(self.session, default_id)
        )
        if parcel is not None:
          template_id = default_id

    return parcel, template_id

  # --- Purchase ---

  async def buy_label(
      self, order_id: str, req: LabelPurchaseRequest
  ) -> Dict[str, Any]:
    """Buys the label for a previously quoted rate and archives it.

    Returns:
      {"shipment": ...} plus "archive_error" when the label was bought but
      could not be archived.
    """
    rate_id = _text(req.rate_id)
    if not rate_id:
      raise InvalidRequestError("Missing rate id")

    shipment = await db.get_shipment_for_order(self.session, order_id)
    if shipment is None:
      raise ResourceNotFoundError("Missing shipment")
    if shipment.status == ShipmentStatus.PURCHASED.value:
      raise LabelAlreadyPurchasedError()

    rate = next(
        (r for r in shipment.rates or [] if str(r.get("id")) == rate_id), None
    )
    if rate is None:
      raise UnknownRateError()

    label_format = await self._label_format(req.label_format)
    purchase = await self.carrier.buy_label(rate_id, label_format)

    shipment.status = ShipmentStatus.PURCHASED.value
    shipment.provider_rate_id = rate_id
    shipment.provider_transaction_id = purchase.transaction_id
    shipment.selected_rate = rate
    shipment.label_url = purchase.label_url or None
    shipment.label_format = label_format
    shipment.tracking_number = purchase.tracking_number or None
    shipment.tracking_url = purchase.tracking_url
    shipment.postage_amount = (
        purchase.postage_amount
        if purchase.postage_amount is not None
        else rate.get("amount")
    )
    shipment.postage_currency = purchase.postage_currency or rate.get(
        "currency"
    )
    shipment.purchased_at = db.utcnow()
    shipment.updated_at = shipment.purchased_at
    await self.session.commit()
    logger.info(
        "Purchased label for order %s (transaction %s)",
        order_id,
        purchase.transaction_id,
    )

    result: Dict[str, Any] = {}
    archive_error = await self._archive_after_purchase(shipment)
    result["shipment"] = ShipmentView.model_validate(shipment)
    if archive_error:
      result["archive_error"] = archive_error
    return result

  async def _label_format(self, requested: Optional[str]) -> str:
    label_format = _text(requested)
    if not label_format:
      label_format = _text((await self._defaults()).get("label_format"))
    if label_format not in {f.value for f in LabelFormat}:
      return LabelFormat.PDF_4X6.value
    return label_format

  async def _archive_after_purchase(
      self, shipment: db.Shipment
  ) -> Optional[str]:
    """Archives a freshly bought label. Returns an error message on failure."""
    content = None
    error = "Missing label URL"
    if shipment.label_url:
      try:
        content = await self._download(shipment.label_url)
      except LabelUnavailableError as e:
        error = e.message
    if content is None and shipment.provider_transaction_id:
      try:
        url = await self.carrier.fetch_transaction_label_url(
            shipment.provider_transaction_id
        )
        if url:
          content = await self._download(url)
      except (CarrierError, LabelUnavailableError) as e:
        error = e.message

    if content is None:
      logger.error(
          "Label archive skipped code=label_download_failed shipment=%s"
          " order=%s: %s",
          shipment.id,
          shipment.order_id,
          error,
      )
      return error

    try:
      await self._store_asset(shipment, content)
    except AssetStoreError as e:
      logger.error(
          "Label archive failed code=%s shipment=%s order=%s: %s",
          e.code,
          shipment.id,
          shipment.order_id,
          e.message,
      )
      return e.message
    return None

  # --- Label retrieval ---

  async def download_label(self, shipment_id: str) -> Tuple[bytes, str]:
    """Fetches a label PDF, archiving it when it did not come from the archive.

    Returns:
      The PDF bytes and a download filename.
    """
    shipment = await self._get_shipment(shipment_id)
    content, source = await self._resolve_label(shipment)
    if source != "asset":
      try:
        await self._store_asset(shipment, content)
      except AssetStoreError as e:
        logger.error(
            "Label archive failed code=%s shipment=%s order=%s: %s",
            e.code,
            shipment.id,
            shipment.order_id,
            e.message,
        )
    return content, label_filename(shipment)

  async def archive_label(self, shipment_id: str) -> Dict[str, Any]:
    """Makes sure the label has a durable copy and returns its URL.

    Raises:
      LabelUnavailableError: If no label could be downloaded.
      AssetStoreError: If the upload failed.
    """
    shipment = await self._get_shipment(shipment_id)
    if not shipment.label_asset_url:
      content, _ = await self._resolve_label(shipment)
      await self._store_asset(shipment, content)
    return {
        "label_url": shipment.label_asset_url,
        "shipment": ShipmentView.model_validate(shipment),
        "archived": True,
    }

  async def _label_candidates(
      self, shipment: db.Shipment
  ) -> Tuple[List[Tuple[str, str]], Optional[LabelUnavailableError]]:
    candidates = []
    if _text(shipment.label_asset_url):
      candidates.append(("asset", shipment.label_asset_url.strip()))

    lookup_error = None
    transaction_id = _text(shipment.provider_transaction_id)
    if transaction_id:
      try:
        url = await self.carrier.fetch_transaction_label_url(transaction_id)
        if url:
          candidates.append(("shippo", url))
      except CarrierError as e:
        code = (
            carrier.TOKEN_MISSING
            if e.code == carrier.TOKEN_MISSING
            else "shippo_label_fetch_failed"
        )
        logger.error(
            "Shippo label fetch failed code=%s shipment=%s order=%s: %s",
            code,
            shipment.id,
            shipment.order_id,
            e.message,
        )
        lookup_error = LabelUnavailableError(e.message, code=code)

    if _text(shipment.label_url):
      candidates.append(("legacy", shipment.label_url.strip()))
    return candidates, lookup_error

  async def _resolve_label(self, shipment: db.Shipment) -> Tuple[bytes, str]:
    """Downloads the first available label candidate."""
    candidates, lookup_error = await self._label_candidates(shipment)
    if not candidates:
      if lookup_error:
        raise lookup_error
      raise LabelUnavailableError(
          "Missing Shippo transaction id or label URL.",
          code="label_not_found",
          status_code=404,
      )

    attempts = []
    for source, url in candidates:
      try:
        return await self._download(url), source
      except LabelUnavailableError as e:
        attempts.append(f"{source}: {e.message}")

    code = lookup_error.code if lookup_error else "label_download_failed"
    message = (
        lookup_error.message
        if lookup_error
        else attempts[-1].split(": ", 1)[-1]
    )
    logger.error(
        "Label download failed code=%s shipment=%s order=%s attempts=%s",
        code,
        shipment.id,
        shipment.order_id,
        attempts,
    )
    raise LabelUnavailableError(message, code=code)

  async def _download(self, url: str) -> bytes:
    async with httpx.AsyncClient(
        transport=self.transport, timeout=30.0, follow_redirects=True
    ) as client:
      try:
        response = await client.get(url)
      except httpx.HTTPError as e:
        raise LabelUnavailableError(
            f"Label download failed ({e})", code="label_download_failed"
        ) from e
    if response.is_error:
      raise LabelUnavailableError(
          f"Label download failed ({response.status_code})",
          code="label_download_failed",
      )
    return response.content

  async def _store_asset(self, shipment: db.Shipment, content: bytes) -> None:
    public_id = f"labels/{shipment.order_id}/{shipment.id}"
    asset = await self.label_storage.upload_pdf(content, public_id)
    shipment.label_asset_url = asset.asset_url
    shipment.label_asset_provider = ASSET_PROVIDER
    shipment.label_asset_public_id = asset.public_id
    shipment.updated_at = db.utcnow()
    await self.session.commit()
    logger.info(
        "Archived label for shipment %s (%d bytes)", shipment.id, asset.bytes
    )

  # --- Lookups ---

  async def _get_order(self, order_id: str) -> db.Order:
    order = await db.get_order(self.session, order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    return order

  async def _get_shipment(self, shipment_id: str) -> db.Shipment:
    shipment = await db.get_shipment(self.session, shipment_id)
    if shipment is None:
      raise ResourceNotFoundError("Shipment not found")
    return shipment
