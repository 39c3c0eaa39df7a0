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

"""Inbound payment processor webhooks."""

import logging
from typing import Any, Dict, Optional

import dependencies
from exceptions import InvalidRequestError
from exceptions import StoreError
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from fastapi.responses import JSONResponse
from services.checkout_service import CheckoutService
from services.checkout_service import COMPLETED_EVENT
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/webhooks/stripe",
    response_model=Dict[str, Any],
    operation_id="stripe_webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
):
  """Verifies a processor event and finalizes completed checkouts.

  Any failure after verification answers 500 so the processor redelivers;
  finalization is idempotent, so redelivery is always safe.
  """
  if not stripe_signature:
    raise InvalidRequestError("Missing signature")
  payload = await request.body()
  event = checkout_service.payment_processor.parse_webhook(
      payload, stripe_signature
  )

  try:
    order_id = await checkout_service.handle_event(event)
  except (StoreError, SQLAlchemyError) as e:
    logger.exception("Stripe webhook handling failed for %s", event.get("id"))
    return JSONResponse(
        status_code=500,
        content={"detail": "Webhook handling failed", "code": _code(e)},
    )

  if event.get("type") == COMPLETED_EVENT and not order_id:
    logger.error("Unable to finalize checkout for event %s", event.get("id"))
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Unable to finalize checkout",
            "code": "INTERNAL_ERROR",
        },
    )
  return {"received": True}


def _code(error: Exception) -> str:
  return error.code if isinstance(error, StoreError) else "DATABASE_ERROR"
