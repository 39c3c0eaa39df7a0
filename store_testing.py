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

"""Shared fixtures for the storefront server tests."""

import asyncio
import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional

from absl.testing import absltest
import db
from exceptions import InvalidRequestError
from models import ProcessorSession
from services.payment_processor import PaymentProcessor
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

HOODIE_ID = "6f0c1e2a-3b4d-4e5f-8a9b-0c1d2e3f4a5b"
CAP_ID = "1a2b3c4d-5e6f-4a7b-8c9d-0e1f2a3b4c5d"
STICKER_ID = "9e8d7c6b-5a4f-4e3d-9c2b-1a0f9e8d7c6b"
USER_ID = "0b9c8d7e-6f5a-4b3c-9d2e-1f0a9b8c7d6e"


class FakePaymentProcessor(PaymentProcessor):
  """In-memory processor that records every call."""

  def __init__(self, webhook_secret: str = "whsec_test"):
    self.webhook_secret = webhook_secret
    self.created: List[Dict[str, Any]] = []
    self.coupons: List[Dict[str, Any]] = []
    self.sessions: Dict[str, ProcessorSession] = {}

  async def create_checkout_session(
      self,
      line_items,
      metadata,
      customer_email,
      success_url,
      cancel_url,
      coupon_id=None,
  ) -> ProcessorSession:
    session_id = f"cs_test_{len(self.created) + 1}"
    self.created.append({
        "line_items": line_items,
        "metadata": metadata,
        "customer_email": customer_email,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "coupon_id": coupon_id,
    })
    session = ProcessorSession(
        id=session_id,
        url=f"https://pay.example/{session_id}",
        payment_status="unpaid",
        metadata=metadata,
    )
    self.sessions[session_id] = session
    return session

  async def retrieve_session(self, session_id: str) -> ProcessorSession:
    if session_id not in self.sessions:
      raise InvalidRequestError("Unknown checkout session")
    return self.sessions[session_id]

  def mark_paid(self, session_id: str) -> None:
    self.sessions[session_id] = self.sessions[session_id].model_copy(
        update={"payment_status": "paid"}
    )

  def parse_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
    if signature != self.webhook_secret:
      raise InvalidRequestError("Invalid signature")
    return json.loads(payload)

  async def create_coupon(self, code, percent_off, amount_off_cents, currency):
    self.coupons.append({
        "code": code,
        "percent_off": percent_off,
        "amount_off_cents": amount_off_cents,
        "currency": currency,
    })
    return f"coupon_{code.lower()}"


def completed_event(
    session_id: str,
    checkout_id: Optional[str] = None,
    amount_total: Optional[int] = None,
    payment_intent: str = "pi_test_1",
) -> Dict[str, Any]:
  """Builds a `checkout.session.completed` event payload."""
  data = {
      "id": session_id,
      "object": "checkout.session",
      "payment_status": "paid",
      "payment_intent": payment_intent,
      "amount_total": amount_total,
      "currency": "usd",
      "metadata": {"checkout_id": checkout_id} if checkout_id else {},
  }
  return {
      "id": f"evt_{session_id}",
      "type": "checkout.session.completed",
      "data": {"object": data},
  }


class StoreTestCase(absltest.TestCase):
  """Test case backed by a fresh SQLite database."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    url = f"sqlite+aiosqlite:///{os.path.join(self.test_dir, 'store.db')}"
    # Each asyncio.run() gets its own loop, so connections must not be pooled.
    self.engine = create_async_engine(url, echo=False, poolclass=NullPool)
    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )
    asyncio.run(db.create_schema(self.engine))
    db.manager.attach(self.engine)

  def tearDown(self) -> None:
    db.manager.engine = None
    db.manager.session_factory = None
    asyncio.run(self.engine.dispose())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def run_async(self, coro):
    return asyncio.run(coro)

  def add(self, *rows) -> None:
    """Persists rows in their own transaction."""

    async def _add() -> None:
      async with self.session_factory() as session:
        session.add_all(rows)
        await session.commit()

    self.run_async(_add())

  def add_catalog(self) -> None:
    self.add(
        db.Product(
            id=HOODIE_ID,
            slug="heavyweight-hoodie",
            name="Heavyweight Hoodie",
            price_cents=200,
            stock=5,
            sizes=["S/M", "M/L"],
            images=["https://img.example/hoodie.jpg"],
        ),
        db.Product(
            id=CAP_ID,
            slug="classic-cap",
            name="Classic Cap",
            price_cents=3500,
            sale_price_cents=2500,
            is_sale=True,
            stock=10,
            sizes=[],
            images=[],
        ),
        db.Product(
            id=STICKER_ID,
            slug="sticker",
            name="Sticker",
            price_cents=100,
            stock=0,
            active=False,
            sizes=[],
            images=[],
        ),
    )

  def add_promo(self, code: str = "SAVE10", **fields) -> db.PromoCode:
    values = dict(
        code=code,
        discount_type="percent",
        percent_off=10,
        currency="usd",
        min_subtotal_cents=0,
        stripe_coupon_id=f"coupon_{code.lower()}",
    )
    values.update(fields)
    promo = db.PromoCode(**values)
    self.add(promo)
    return promo

  async def fetch(self, model, ident):
    """Reads a row through a fresh session."""
    async with self.session_factory() as session:
      return await session.get(model, ident)

  async def fetch_all(self, model) -> List[Any]:
    async with self.session_factory() as session:
      return list((await session.execute(select(model))).scalars().all())
