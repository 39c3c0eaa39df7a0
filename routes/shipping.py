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

"""Admin shipping routes: rating, label purchase and label retrieval."""

from typing import Any, Dict

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi.responses import Response
from models import LabelPurchaseRequest
from models import ParcelTemplateView
from models import ShipmentDraftRequest
from services.shipment_service import ShipmentService

router = APIRouter(
    prefix="/admin", dependencies=[Depends(dependencies.require_admin)]
)


@router.get(
    "/orders/{id}/shipping",
    response_model=Dict[str, Any],
    operation_id="get_shipping_workspace",
)
async def get_shipping_workspace(
    order_id: str = Path(..., alias="id"),
    shipment_service: ShipmentService = Depends(
        dependencies.get_shipment_service
    ),
) -> Dict[str, Any]:
  return await shipment_service.get_workspace(order_id)


@router.post(
    "/orders/{id}/shipping/draft",
    response_model=Dict[str, Any],
    operation_id="draft_shipment",
)
async def draft_shipment(
    order_id: str = Path(..., alias="id"),
    req: ShipmentDraftRequest = Body(...),
    shipment_service: ShipmentService = Depends(
        dependencies.get_shipment_service
    ),
) -> Dict[str, Any]:
  """Create or re-rate the order's shipment."""
  return await shipment_service.create_draft(order_id, req)


@router.post(
    "/orders/{id}/shipping/buy",
    response_model=Dict[str, Any],
    operation_id="buy_label",
)
async def buy_label(
    order_id: str = Path(..., alias="id"),
    req: LabelPurchaseRequest = Body(...),
    shipment_service: ShipmentService = Depends(
        dependencies.get_shipment_service
    ),
) -> Dict[str, Any]:
  """Buy the label for a quoted rate."""
  return await shipment_service.buy_label(order_id, req)


@router.get(
    "/parcel-templates",
    response_model=Dict[str, Any],
    operation_id="list_parcel_templates",
)
async def list_parcel_templates(
    shipment_service: ShipmentService = Depends(
        dependencies.get_shipment_service
    ),
) -> Dict[str, Any]:
  templates = await shipment_service.list_parcel_templates()
  return {
      "templates": [ParcelTemplateView.model_validate(t) for t in templates]
  }


@router.get("/shipments/{id}/label", operation_id="download_label")
async def download_label(
    shipment_id: str = Path(..., alias="id"),
    shipment_service: ShipmentService = Depends(
        dependencies.get_shipment_service
    ),
) -> Response:
  """Stream the label PDF."""
  content, filename = await shipment_service.download_label(shipment_id)
  return Response(
      content=content,
      media_type="application/pdf",
      headers={
          "Content-Disposition": f'attachment; filename="{filename}"',
          "Cache-Control": "no-store",
      },
  )


@router.post(
    "/shipments/{id}/label",
    response_model=Dict[str, Any],
    operation_id="archive_label",
)
async def archive_label(
    shipment_id: str = Path(..., alias="id"),
    shipment_service: ShipmentService = Depends(
        dependencies.get_shipment_service
    ),
) -> Dict[str, Any]:
  """Return the durable label URL, archiving the label first if needed."""
  return await shipment_service.archive_label(shipment_id)
