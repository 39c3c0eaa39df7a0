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

"""Storefront checkout routes: quoting, checkout initiation and polling."""

from typing import Any, Dict, Optional

import dependencies
from exceptions import QuoteError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Query
from fastapi.responses import JSONResponse
from models import CheckoutRequest
from models import PromoValidateRequest
from models import QuoteRequest
from services.checkout_service import CheckoutService
from services.promo_service import PromotionValidator
from services.quote_service import QuoteEngine

router = APIRouter()


@router.post(
    "/checkout/quote",
    response_model=Dict[str, Any],
    operation_id="quote_checkout",
)
async def quote_checkout(
    req: QuoteRequest = Body(...),
    quote_engine: QuoteEngine = Depends(dependencies.get_quote_engine),
) -> Dict[str, Any]:
  """Prices a cart. Business-rule failures are reported in the body."""
  try:
    quote = await quote_engine.compute_quote(req)
  except QuoteError as e:
    return {"ok": False, "error": e.message, "promoError": e.promo_error}
  return {"ok": True, "quote": quote.model_dump(mode="json")}


@router.post(
    "/checkout",
    response_model=Dict[str, Any],
    operation_id="create_checkout",
)
async def create_checkout(
    req: CheckoutRequest = Body(...),
    user_id: Optional[str] = Depends(dependencies.current_user_id),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> Dict[str, Any]:
  """Starts a hosted payment session and returns its redirect URL."""
  redirect = await checkout_service.initiate(req, user_id)
  return redirect.model_dump(by_alias=True)


@router.get(
    "/checkout/complete",
    response_model=Dict[str, Any],
    operation_id="complete_checkout",
)
async def complete_checkout(
    session_id: Optional[str] = Query(None),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
):
  """Polls for the order a paid processor session produced."""
  order_id = await checkout_service.order_for_completed_payment(session_id)
  if order_id is None:
    return JSONResponse(status_code=202, content={"pending": True})
  return {"orderId": order_id}


@router.post(
    "/promo/validate",
    response_model=Dict[str, Any],
    operation_id="validate_promo",
)
async def validate_promo(
    req: PromoValidateRequest = Body(...),
    validator: PromotionValidator = Depends(
        dependencies.get_promotion_validator
    ),
) -> Dict[str, Any]:
  result = await validator.validate_for_checkout(
      req.code, req.subtotal_cents, req.currency
  )
  return result.model_dump(exclude_none=True)
