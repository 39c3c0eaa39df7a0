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

"""Database management and persistence layer for the storefront server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy
with SQLite (via aiosqlite) by default; any async SQLAlchemy URL works.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup. Schema creation is an explicit migration step run once at
  process start (or by the seeding tool), never lazily per request.
- WAL Mode: Automatically enabled on SQLite so webhook deliveries and
  storefront requests can read while a finalizer transaction writes.
- Declarative Models: Defines tables for products, promo codes, pending
  checkouts, orders and their items, shipments, parcel templates and store
  settings.
- Data Access Helpers: A suite of asynchronous functions for the reads and
  writes used by the services.
"""

import datetime
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple
import uuid

from sqlalchemy import and_
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Float
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
  """Attaches UTC to naive datetimes (SQLite drops the offset on read)."""
  if value is None:
    return None
  if value.tzinfo is None:
    return value.replace(tzinfo=datetime.timezone.utc)
  return value


def new_id() -> str:
  return str(uuid.uuid4())


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, database_url: str) -> None:
    """Initializes the database engine and creates tables."""
    self.engine = create_async_engine(database_url, echo=False)

    if self.engine.dialect.name == "sqlite":
      # Enable WAL mode
      async with self.engine.connect() as conn:
        await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )
    await create_schema(self.engine)

  def attach(self, engine: AsyncEngine) -> None:
    """Uses an engine created elsewhere (tests, scripts)."""
    self.engine = engine
    self.session_factory = sessionmaker(
        engine, expire_on_commit=False, class_=AsyncSession
    )

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()
    self.engine = None
    self.session_factory = None


async def create_schema(engine: AsyncEngine) -> None:
  """Creates every table that does not exist yet."""
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Product(Base):
  __tablename__ = "products"

  id = Column(String, primary_key=True, default=new_id)
  slug = Column(String, unique=True, nullable=False)
  name = Column(String, nullable=False)
  category = Column(String, nullable=True)
  description = Column(Text, nullable=True)
  price_cents = Column(Integer, nullable=False)
  sale_price_cents = Column(Integer, nullable=True)
  original_price_cents = Column(Integer, nullable=True)
  is_sale = Column(Boolean, default=False, nullable=False)
  is_new_drop = Column(Boolean, default=False, nullable=False)
  stock = Column(Integer, default=0, nullable=False)
  active = Column(Boolean, default=True, nullable=False)
  sizes = Column(JSON, default=list)  # e.g. ["S/M", "M/L"]
  images = Column(JSON, default=list)  # Ordered image URLs
  created_at = Column(DateTime(timezone=True), default=utcnow)
  updated_at = Column(DateTime(timezone=True), default=utcnow)

  @property
  def effective_price_cents(self) -> int:
    if self.is_sale and self.sale_price_cents is not None:
      return self.sale_price_cents
    return self.price_cents

  @property
  def primary_image(self) -> Optional[str]:
    return self.images[0] if self.images else None


class PromoCode(Base):
  __tablename__ = "promo_codes"

  id = Column(String, primary_key=True, default=new_id)
  code = Column(String, unique=True, nullable=False)  # Stored upper-case
  active = Column(Boolean, default=True, nullable=False)
  discount_type = Column(String, nullable=False)  # 'percent' or 'amount'
  percent_off = Column(Float, nullable=True)
  amount_off_cents = Column(Integer, nullable=True)
  currency = Column(String, nullable=True)
  min_subtotal_cents = Column(Integer, nullable=True)
  max_redemptions = Column(Integer, nullable=True)
  times_redeemed = Column(Integer, default=0, nullable=False)
  starts_at = Column(DateTime(timezone=True), nullable=True)
  ends_at = Column(DateTime(timezone=True), nullable=True)
  stripe_coupon_id = Column(String, nullable=True)
  created_at = Column(DateTime(timezone=True), default=utcnow)
  updated_at = Column(DateTime(timezone=True), default=utcnow)


class CheckoutSession(Base):
  """Pending checkout snapshot awaiting the processor's completion webhook."""

  __tablename__ = "checkout_sessions"

  id = Column(String, primary_key=True)
  stripe_checkout_session_id = Column(String, unique=True, nullable=True)
  stripe_payment_intent_id = Column(String, nullable=True)
  user_id = Column(String, nullable=True, index=True)
  email = Column(String, nullable=False)
  customer_name = Column(String, nullable=True)
  customer_phone = Column(String, nullable=True)
  contact = Column(JSON, nullable=True)
  shipping_address = Column(JSON, nullable=True)
  delivery_option = Column(String, nullable=True)
  promo_code = Column(String, nullable=True)
  promo_code_id = Column(String, nullable=True)
  discount_cents = Column(Integer, default=0, nullable=False)
  subtotal_cents = Column(Integer, nullable=False)
  shipping_cents = Column(Integer, default=0, nullable=False)
  tax_cents = Column(Integer, default=0, nullable=False)
  total_cents = Column(Integer, nullable=False)
  currency = Column(String, default="usd", nullable=False)
  # Quote line items, as priced at initiation
  items = Column(JSON, nullable=False)
  order_id = Column(String, nullable=True)
  pricing_check = Column(JSON(none_as_null=True), nullable=True)
  created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
  completed_at = Column(DateTime(timezone=True), nullable=True)


class Order(Base):
  __tablename__ = "orders"

  id = Column(String, primary_key=True, default=new_id)
  user_id = Column(String, nullable=True, index=True)
  email = Column(String, nullable=False, index=True)
  customer_name = Column(String, nullable=True)
  customer_phone = Column(String, nullable=True)
  contact = Column(JSON, nullable=True)
  shipping_address = Column(JSON, nullable=True)
  delivery_option = Column(String, nullable=True)
  promo_code_id = Column(String, nullable=True)
  promo_code = Column(String, nullable=True)
  discount_cents = Column(Integer, default=0, nullable=False)
  subtotal_cents = Column(Integer, nullable=False)
  status = Column(String, nullable=False, default="created")
  paid_at = Column(DateTime(timezone=True), nullable=True)
  shipped_at = Column(DateTime(timezone=True), nullable=True)
  delivered_at = Column(DateTime(timezone=True), nullable=True)
  cancelled_at = Column(DateTime(timezone=True), nullable=True)
  refunded_at = Column(DateTime(timezone=True), nullable=True)
  tracking_number = Column(String, nullable=True)
  admin_notes = Column(Text, nullable=True)
  payment_provider = Column(String, nullable=True)
  currency = Column(String, default="usd", nullable=False)
  # At most one order per processor session.
  stripe_checkout_session_id = Column(String, unique=True, nullable=True)
  stripe_payment_intent_id = Column(String, nullable=True)
  created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
  updated_at = Column(DateTime(timezone=True), default=utcnow)

  items = relationship("OrderItem", back_populates="order")


class OrderItem(Base):
  __tablename__ = "order_items"

  id = Column(String, primary_key=True, default=new_id)
  order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
  product_id = Column(String, nullable=True)
  product_slug = Column(String, nullable=False)
  name = Column(String, nullable=False)
  image_url = Column(String, nullable=True)
  price_cents = Column(Integer, nullable=False)
  variant = Column(String, nullable=True)
  size = Column(String, nullable=True)
  quantity = Column(Integer, nullable=False)
  created_at = Column(DateTime(timezone=True), default=utcnow)

  order = relationship("Order", back_populates="items")


class Shipment(Base):
  __tablename__ = "shipments"

  id = Column(String, primary_key=True, default=new_id)
  order_id = Column(
      String, ForeignKey("orders.id"), unique=True, nullable=False
  )
  provider = Column(String, default="shippo", nullable=False)
  status = Column(String, default="draft", nullable=False)
  provider_shipment_id = Column(String, nullable=True)
  provider_rate_id = Column(String, nullable=True)
  provider_transaction_id = Column(String, nullable=True)
  parcel_template_id = Column(String, nullable=True)
  parcel = Column(JSON, nullable=True)
  rates = Column(JSON, default=list)  # Provider quotes, replaced on re-rate
  selected_rate = Column(JSON, nullable=True)
  label_url = Column(String, nullable=True)  # Carrier URL, may expire
  label_asset_url = Column(String, nullable=True)
  label_asset_provider = Column(String, nullable=True)
  label_asset_public_id = Column(String, nullable=True)
  label_format = Column(String, nullable=True)
  purchased_at = Column(DateTime(timezone=True), nullable=True)
  tracking_number = Column(String, nullable=True)
  tracking_url = Column(String, nullable=True)
  postage_amount = Column(Float, nullable=True)
  postage_currency = Column(String, nullable=True)
  created_at = Column(DateTime(timezone=True), default=utcnow)
  updated_at = Column(DateTime(timezone=True), default=utcnow)


class ParcelTemplate(Base):
  __tablename__ = "parcel_templates"

  id = Column(String, primary_key=True, default=new_id)
  name = Column(String, unique=True, nullable=False)
  length = Column(Float, nullable=False)
  width = Column(Float, nullable=False)
  height = Column(Float, nullable=False)
  weight = Column(Float, nullable=False)
  distance_unit = Column(String, default="in", nullable=False)
  mass_unit = Column(String, default="oz", nullable=False)
  min_items = Column(Integer, nullable=True)
  max_items = Column(Integer, nullable=True)
  tags = Column(JSON, default=list)
  label_format_default = Column(String, nullable=True)


class StoreSetting(Base):
  __tablename__ = "store_settings"

  key = Column(String, primary_key=True)
  value = Column(JSON, nullable=True)


# --- Data Access Helpers ---


async def get_products_by_ids(
    session: AsyncSession, product_ids: Sequence[str]
) -> List[Product]:
  """Retrieves multiple products by id in a single query.

  Args:
    session: The database session to use.
    product_ids: Product ids to look up. Unknown ids are simply absent.

  Returns:
    A list of matching Product objects.
  """
  if not product_ids:
    return []
  result = await session.execute(
      select(Product).where(Product.id.in_(set(product_ids)))
  )
  return list(result.scalars().all())


async def decrement_stock(
    session: AsyncSession, product_id: str, quantity: int
) -> Optional[int]:
  """Decrements stock unconditionally and returns the new level.

  Returns:
    The stock after the decrement, or None when the product does not exist.
  """
  await session.execute(
      update(Product)
      .where(Product.id == product_id)
      .values(stock=Product.stock - quantity, updated_at=utcnow())
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(
      select(Product.stock).where(Product.id == product_id)
  )
  return result.scalar_one_or_none()


async def get_promo_code_by_code(
    session: AsyncSession, code: str
) -> Optional[PromoCode]:
  """Retrieves a promo code by case-insensitive code match."""
  result = await session.execute(
      select(PromoCode)
      .where(func.upper(PromoCode.code) == code.upper())
      .limit(1)
  )
  return result.scalar_one_or_none()


async def get_promo_code(
    session: AsyncSession, promo_code_id: str
) -> Optional[PromoCode]:
  return await session.get(PromoCode, promo_code_id)


async def list_promo_codes(session: AsyncSession) -> List[PromoCode]:
  result = await session.execute(
      select(PromoCode).order_by(PromoCode.created_at.desc())
  )
  return list(result.scalars().all())


async def increment_promo_redemptions(
    session: AsyncSession, promo_code_id: str
) -> None:
  """Atomically increments a promo code's redemption counter by one."""
  await session.execute(
      update(PromoCode)
      .where(PromoCode.id == promo_code_id)
      .values(
          times_redeemed=func.coalesce(PromoCode.times_redeemed, 0) + 1,
          updated_at=utcnow(),
      )
      .execution_options(synchronize_session=False)
  )


async def get_checkout_by_stripe_session(
    session: AsyncSession, stripe_session_id: str
) -> Optional[CheckoutSession]:
  """Retrieves a pending checkout by its processor session id."""
  result = await session.execute(
      select(CheckoutSession)
      .where(CheckoutSession.stripe_checkout_session_id == stripe_session_id)
      .limit(1)
  )
  return result.scalar_one_or_none()


async def link_stripe_session(
    session: AsyncSession, checkout_id: str, stripe_session_id: str
) -> bool:
  """Stores the processor session id on a pending checkout.

  A checkout that is already linked to a different processor session is left
  untouched.

  Returns:
    True if a row now carries the given session id.
  """
  result = await session.execute(
      update(CheckoutSession)
      .where(CheckoutSession.id == checkout_id)
      .where(
          or_(
              CheckoutSession.stripe_checkout_session_id.is_(None),
              CheckoutSession.stripe_checkout_session_id == stripe_session_id,
          )
      )
      .values(stripe_checkout_session_id=stripe_session_id)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def complete_checkout(
    session: AsyncSession,
    stripe_session_id: str,
    order_id: str,
    payment_intent_id: Optional[str],
) -> None:
  """Points a pending checkout at its order and stamps completion once."""
  await session.execute(
      update(CheckoutSession)
      .where(CheckoutSession.stripe_checkout_session_id == stripe_session_id)
      .values(
          order_id=order_id,
          completed_at=func.coalesce(CheckoutSession.completed_at, utcnow()),
          stripe_payment_intent_id=func.coalesce(
              CheckoutSession.stripe_payment_intent_id, payment_intent_id
          ),
      )
      .execution_options(synchronize_session=False)
  )


async def record_pricing_check(
    session: AsyncSession, stripe_session_id: str, pricing_check: Dict[str, Any]
) -> bool:
  """Stores a pricing mismatch unless one was already recorded.

  Returns:
    True if this call wrote the record.
  """
  result = await session.execute(
      update(CheckoutSession)
      .where(
          CheckoutSession.stripe_checkout_session_id == stripe_session_id,
          CheckoutSession.pricing_check.is_(None),
      )
      .values(pricing_check=pricing_check)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def fill_order_payment(
    session: AsyncSession, order_id: str, payment_intent_id: Optional[str]
) -> None:
  """Populates the payment intent and paid timestamp if they are unset."""
  now = utcnow()
  await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .values(
          paid_at=func.coalesce(Order.paid_at, now),
          stripe_payment_intent_id=func.coalesce(
              Order.stripe_payment_intent_id, payment_intent_id
          ),
          updated_at=now,
      )
      .execution_options(synchronize_session=False)
  )


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
  """Retrieves an order by ID."""
  return await session.get(Order, order_id)


async def get_order_by_stripe_session(
    session: AsyncSession, stripe_session_id: str
) -> Optional[Order]:
  """Retrieves the order produced by a processor session, if any."""
  result = await session.execute(
      select(Order)
      .where(Order.stripe_checkout_session_id == stripe_session_id)
      .limit(1)
  )
  return result.scalar_one_or_none()


async def get_order_items(
    session: AsyncSession, order_id: str
) -> List[OrderItem]:
  result = await session.execute(
      select(OrderItem)
      .where(OrderItem.order_id == order_id)
      .order_by(OrderItem.created_at.asc(), OrderItem.id.asc())
  )
  return list(result.scalars().all())


async def list_orders(
    session: AsyncSession,
    status: Optional[str] = None,
    email: Optional[str] = None,
    id_prefix: Optional[str] = None,
    oldest_first: bool = False,
    cursor: Optional[Tuple[datetime.datetime, str]] = None,
    limit: int = 20,
) -> List[Tuple[Order, int]]:
  """Lists orders for the admin console with keyset pagination.

  Only the filters named in the signature are supported; callers never pass
  column names.

  Args:
    session: The database session to use.
    status: Exact status filter.
    email: Case-insensitive exact email filter.
    id_prefix: Order id prefix filter.
    oldest_first: Sort ascending by (created_at, id) instead of descending.
    cursor: The (created_at, id) of the last row of the previous page.
    limit: Maximum number of rows to return.

  Returns:
    (order, items_count) pairs.
  """
  items_count = (
      select(func.coalesce(func.sum(OrderItem.quantity), 0))
      .where(OrderItem.order_id == Order.id)
      .correlate(Order)
      .scalar_subquery()
  )
  stmt = select(Order, items_count)
  if status:
    stmt = stmt.where(Order.status == status)
  if email:
    stmt = stmt.where(func.lower(Order.email) == email.lower())
  if id_prefix:
    stmt = stmt.where(Order.id.startswith(id_prefix, autoescape=True))
  if cursor:
    created_at, order_id = cursor
    if oldest_first:
      after = or_(
          Order.created_at > created_at,
          and_(Order.created_at == created_at, Order.id > order_id),
      )
    else:
      after = or_(
          Order.created_at < created_at,
          and_(Order.created_at == created_at, Order.id < order_id),
      )
    stmt = stmt.where(after)
  if oldest_first:
    stmt = stmt.order_by(Order.created_at.asc(), Order.id.asc())
  else:
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
  result = await session.execute(stmt.limit(limit))
  return [(row[0], int(row[1] or 0)) for row in result.all()]


async def get_customer_order_stats(
    session: AsyncSession, user_id: Optional[str], email: Optional[str]
) -> Dict[str, Any]:
  """Counts a customer's orders by identity, falling back to email."""
  stmt = select(func.min(Order.created_at), func.count(Order.id))
  if user_id:
    stmt = stmt.where(Order.user_id == user_id)
  elif email:
    stmt = stmt.where(func.lower(Order.email) == email.lower())
  else:
    return {"first_order_at": None, "order_count": 1}
  first_order_at, order_count = (await session.execute(stmt)).one()
  return {"first_order_at": first_order_at, "order_count": int(order_count)}


async def list_orders_for_user(
    session: AsyncSession, user_id: str
) -> List[Order]:
  result = await session.execute(
      select(Order)
      .where(Order.user_id == user_id)
      .order_by(Order.created_at.desc())
  )
  return list(result.scalars().all())


async def get_shipment(
    session: AsyncSession, shipment_id: str
) -> Optional[Shipment]:
  return await session.get(Shipment, shipment_id)


async def get_shipment_for_order(
    session: AsyncSession, order_id: str
) -> Optional[Shipment]:
  result = await session.execute(
      select(Shipment).where(Shipment.order_id == order_id).limit(1)
  )
  return result.scalar_one_or_none()


async def ensure_draft_shipment(session: AsyncSession, order_id: str) -> bool:
  """Creates an empty draft shipment for an order unless one exists.

  Returns:
    True if a new draft was added to the session.
  """
  if await get_shipment_for_order(session, order_id):
    return False
  session.add(
      Shipment(order_id=order_id, provider="shippo", status="draft", rates=[])
  )
  return True


async def get_parcel_template(
    session: AsyncSession, template_id: str
) -> Optional[ParcelTemplate]:
  return await session.get(ParcelTemplate, template_id)


async def list_parcel_templates(session: AsyncSession) -> List[ParcelTemplate]:
  result = await session.execute(
      select(ParcelTemplate).order_by(ParcelTemplate.name.asc())
  )
  return list(result.scalars().all())


async def get_store_setting(session: AsyncSession, key: str) -> Optional[Any]:
  """Retrieves a store setting value by key."""
  setting = await session.get(StoreSetting, key)
  return setting.value if setting else None


async def save_store_setting(
    session: AsyncSession, key: str, value: Any
) -> None:
  """Saves or updates a store setting."""
  existing = await session.get(StoreSetting, key)
  if existing:
    existing.value = value
  else:
    session.add(StoreSetting(key=key, value=value))
