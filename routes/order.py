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

"""Order management routes for the storefront server."""

from typing import Any, Dict, List, Optional

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from models import OrderUpdateRequest
from models import OrderView
from services.order_service import OrderService

router = APIRouter()
admin_router = APIRouter(
    prefix="/admin", dependencies=[Depends(dependencies.require_admin)]
)


@admin_router.get(
    "/orders",
    response_model=Dict[str, Any],
    operation_id="list_orders",
)
async def list_orders(
    status: Optional[str] = Query(None),
    q: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> Dict[str, Any]:
  """List orders with filters and keyset pagination."""
  return await order_service.list_orders(
      status=status, q=q, sort=sort, limit=limit, cursor=cursor
  )


@admin_router.get(
    "/orders/{id}",
    response_model=Dict[str, Any],
    operation_id="get_order",
)
async def get_order(
    order_id: str = Path(..., alias="id"),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> Dict[str, Any]:
  """Get an order with its items, shipment and customer stats."""
  return await order_service.get_order_detail(order_id)


@admin_router.patch(
    "/orders/{id}",
    response_model=Dict[str, Any],
    operation_id="update_order",
)
async def update_order(
    order_id: str = Path(..., alias="id"),
    req: OrderUpdateRequest = Body(...),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> Dict[str, Any]:
  """Update an order's status, tracking number or notes."""
  order = await order_service.update_order(order_id, req)
  return {"order": OrderView.model_validate(order)}


@router.get(
    "/my/orders",
    response_model=List[Dict[str, Any]],
    operation_id="list_my_orders",
)
async def list_my_orders(
    user_id: str = Depends(dependencies.require_user_id),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> List[Dict[str, Any]]:
  """Order history of the calling customer."""
  return await order_service.list_customer_orders(user_id)
