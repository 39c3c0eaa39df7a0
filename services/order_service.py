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

"""Order administration and customer order history."""

import datetime
import logging
from typing import Any, Dict, List, Optional, Tuple

import db
from enums import OrderSort
from enums import OrderStatus
from enums import STATUS_TIMESTAMP_COLUMNS
from exceptions import InvalidRequestError
from exceptions import ResourceNotFoundError
from models import OrderItemView
from models import OrderSummary
from models import OrderUpdateRequest
from models import OrderView
from models import ShipmentView
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _trimmed_or_none(value: Optional[str]) -> Optional[str]:
  if value is None:
    return None
  return value.strip() or None


def parse_status(value: Optional[str]) -> Optional[OrderStatus]:
  if not value:
    return None
  try:
    return OrderStatus(value.strip().lower())
  except ValueError as e:
    raise InvalidRequestError("Invalid status") from e


def encode_cursor(order: db.Order) -> str:
  return f"{db.as_utc(order.created_at).isoformat()}|{order.id}"


def decode_cursor(
    cursor: Optional[str],
) -> Optional[Tuple[datetime.datetime, str]]:
  """Parses a `<created_at>|<id>` keyset cursor."""
  if not cursor:
    return None
  created_at, sep, order_id = cursor.partition("|")
  if not sep or not order_id:
    raise InvalidRequestError("Invalid cursor")
  try:
    parsed = datetime.datetime.fromisoformat(created_at)
  except ValueError as e:
    raise InvalidRequestError("Invalid cursor") from e
  return db.as_utc(parsed), order_id


class OrderService:
  """Service for the admin order console and customer history."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def list_orders(
      self,
      status: Optional[str] = None,
      q: Optional[str] = None,
      sort: Optional[str] = None,
      limit: Optional[int] = None,
      cursor: Optional[str] = None,
  ) -> Dict[str, Any]:
    """Lists orders for the admin console.

    Args:
      status: Optional status filter.
      q: Search text. Treated as an email when it contains '@', otherwise as
        an order id prefix.
      sort: 'newest' (default) or 'oldest'.
      limit: Page size, 1 to 100.
      cursor: Keyset cursor from a previous page's `next_cursor`.

    Returns:
      {"orders": [...], "next_cursor": str or None}
    """
    status_filter = parse_status(status)
    try:
      order_sort = OrderSort((sort or OrderSort.NEWEST.value).lower())
    except ValueError as e:
      raise InvalidRequestError("Invalid sort") from e
    limit = DEFAULT_PAGE_SIZE if limit is None else limit
    if not 1 <= limit <= MAX_PAGE_SIZE:
      raise InvalidRequestError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

    q = _trimmed_or_none(q)
    email = q if q and "@" in q else None
    id_prefix = q.lower() if q and "@" not in q else None

    rows = await db.list_orders(
        self.session,
        status=status_filter.value if status_filter else None,
        email=email,
        id_prefix=id_prefix,
        oldest_first=order_sort == OrderSort.OLDEST,
        cursor=decode_cursor(cursor),
        limit=limit,
    )
    orders = []
    for order, items_count in rows:
      summary = OrderSummary.model_validate(order)
      orders.append(summary.model_copy(update={"items_count": items_count}))
    next_cursor = encode_cursor(rows[-1][0]) if len(rows) == limit else None
    return {"orders": orders, "next_cursor": next_cursor}

  async def get_order_detail(self, order_id: str) -> Dict[str, Any]:
    """Returns the order, its items, its shipment and customer stats."""
    order = await self._get_order(order_id)
    items = await db.get_order_items(self.session, order.id)
    shipment = await db.get_shipment_for_order(self.session, order.id)
    stats = await db.get_customer_order_stats(
        self.session, order.user_id, order.email
    )
    return {
        "order": OrderView.model_validate(order),
        "items": [OrderItemView.model_validate(item) for item in items],
        "shipment": ShipmentView.model_validate(shipment) if shipment else None,
        "stats": {
            "order_count": stats["order_count"],
            "first_order_at": db.as_utc(stats["first_order_at"]),
        },
    }

  async def update_order(
      self, order_id: str, req: OrderUpdateRequest
  ) -> db.Order:
    """Applies an admin edit.

    Any allowed status may replace any other. Entering a status stamps its
    timestamp the first time only. Setting `paid` makes sure the order has a
    draft shipment to work from.
    """
    fields = req.model_dump(exclude_unset=True)
    if not fields:
      raise InvalidRequestError("No updates provided")
    status = parse_status(fields.get("status"))

    order = await self._get_order(order_id)
    now = db.utcnow()
    if status is not None:
      previous = order.status
      order.status = status.value
      column = STATUS_TIMESTAMP_COLUMNS.get(status)
      if column and getattr(order, column) is None:
        setattr(order, column, now)
      logger.info("Order %s status %s -> %s", order.id, previous, status.value)
    if "tracking_number" in fields:
      order.tracking_number = _trimmed_or_none(fields["tracking_number"])
    if "admin_notes" in fields:
      order.admin_notes = _trimmed_or_none(fields["admin_notes"])
    order.updated_at = now

    if status == OrderStatus.PAID:
      if await db.ensure_draft_shipment(self.session, order.id):
        logger.info("Created draft shipment for order %s", order.id)

    await self.session.commit()
    return order

  async def list_customer_orders(self, user_id: str) -> List[Dict[str, Any]]:
    """Returns an identity's orders, newest first, with item summaries."""
    orders = await db.list_orders_for_user(self.session, user_id)
    history = []
    for order in orders:
      items = await db.get_order_items(self.session, order.id)
      history.append({
          "id": order.id,
          "status": order.status,
          "subtotal_cents": order.subtotal_cents,
          "created_at": db.as_utc(order.created_at),
          "items": [
              {
                  "id": item.id,
                  "name": item.name,
                  "quantity": item.quantity,
                  "price_cents": item.price_cents,
                  "image_url": item.image_url,
              }
              for item in items
          ],
      })
    return history

  async def _get_order(self, order_id: str) -> db.Order:
    order = await db.get_order(self.session, order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    return order
