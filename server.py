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

"""Storefront Checkout Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence
from absl import app as absl_app
import config
from exceptions import StoreError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from routes.checkout import router as checkout_router
from routes.order import admin_router as admin_order_router
from routes.order import router as order_router
from routes.promo_codes import router as promo_codes_router
from routes.shipping import router as shipping_router
from routes.webhooks import router as webhooks_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storefront Checkout Service",
    version=config.SERVER_VERSION,
    description="Checkout, order finalization and fulfillment for the store",
    lifespan=config.lifespan,
)


@app.exception_handler(StoreError)
async def store_exception_handler(request: Request, exc: StoreError):
  """Handles storefront exceptions and converts them to JSON responses."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"detail": exc.message, "code": exc.code, **exc.extra()},
  )


app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(order_router)
app.include_router(admin_order_router)
app.include_router(shipping_router)
app.include_router(promo_codes_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the storefront server."""
  del argv  # Unused.

  if not config.FLAGS.database_url or config.FLAGS.port is None:
    logger.error("Both --database_url and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  if not config.FLAGS.stripe_secret_key:
    logger.warning("--stripe_secret_key is not set; checkout is disabled.")
  if not config.FLAGS.admin_api_token:
    logger.warning("--admin_api_token is not set; admin routes are disabled.")

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
