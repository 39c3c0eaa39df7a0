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

"""Admin promo code routes."""

from typing import List

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from models import PromoCodeCreateRequest
from models import PromoCodeUpdateRequest
from models import PromoCodeView
from services.promo_service import PromoCodeService

router = APIRouter(
    prefix="/admin", dependencies=[Depends(dependencies.require_admin)]
)


@router.get(
    "/promo-codes",
    response_model=List[PromoCodeView],
    operation_id="list_promo_codes",
)
async def list_promo_codes(
    promo_service: PromoCodeService = Depends(
        dependencies.get_promo_code_service
    ),
) -> List[PromoCodeView]:
  codes = await promo_service.list_codes()
  return [PromoCodeView.model_validate(code) for code in codes]


@router.post(
    "/promo-codes",
    response_model=PromoCodeView,
    status_code=201,
    operation_id="create_promo_code",
)
async def create_promo_code(
    req: PromoCodeCreateRequest = Body(...),
    promo_service: PromoCodeService = Depends(
        dependencies.get_promo_code_service
    ),
) -> PromoCodeView:
  """Create a promo code and its processor coupon."""
  promo = await promo_service.create_code(req)
  return PromoCodeView.model_validate(promo)


@router.get(
    "/promo-codes/{id}",
    response_model=PromoCodeView,
    operation_id="get_promo_code",
)
async def get_promo_code(
    promo_code_id: str = Path(..., alias="id"),
    promo_service: PromoCodeService = Depends(
        dependencies.get_promo_code_service
    ),
) -> PromoCodeView:
  return PromoCodeView.model_validate(
      await promo_service.get_code(promo_code_id)
  )


@router.patch(
    "/promo-codes/{id}",
    response_model=PromoCodeView,
    operation_id="update_promo_code",
)
async def update_promo_code(
    promo_code_id: str = Path(..., alias="id"),
    req: PromoCodeUpdateRequest = Body(...),
    promo_service: PromoCodeService = Depends(
        dependencies.get_promo_code_service
    ),
) -> PromoCodeView:
  """Update a promo code's activation, limits or window."""
  promo = await promo_service.update_code(promo_code_id, req)
  return PromoCodeView.model_validate(promo)
