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

"""Shared configuration and startup logic for the storefront server."""

import contextlib
import os
from typing import Any, Optional
from absl import flags
import db
from fastapi import FastAPI

FLAGS = flags.FLAGS

SERVER_VERSION = "1.4.0"

# Primary (and only accepted) checkout currency.
PRIMARY_CURRENCY = "usd"

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string(
      "database_url",
      os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///storefront.db"),
      "SQLAlchemy async database URL",
  )
  flags.DEFINE_integer("port", 8000, "Port to run the server on")
  flags.DEFINE_string(
      "environment",
      os.environ.get("APP_ENV", "development"),
      "Deployment environment (development or production)",
  )
  flags.DEFINE_string(
      "site_url",
      os.environ.get("SITE_URL", "http://localhost:3000"),
      "Public storefront URL used for payment redirects",
  )
  flags.DEFINE_string(
      "stripe_secret_key",
      os.environ.get("STRIPE_SECRET_KEY"),
      "Stripe secret API key",
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      os.environ.get("STRIPE_WEBHOOK_SECRET"),
      "Signing secret for the Stripe webhook endpoint",
  )
  flags.DEFINE_string(
      "shippo_api_token",
      os.environ.get("SHIPPO_API_TOKEN"),
      "Shippo live API token",
  )
  flags.DEFINE_string(
      "shippo_test_token",
      os.environ.get("SHIPPO_TEST_TOKEN"),
      "Shippo test API token, preferred outside production",
  )
  flags.DEFINE_string(
      "cloudinary_cloud_name",
      os.environ.get("CLOUDINARY_CLOUD_NAME"),
      "Cloudinary cloud name for label archival",
  )
  flags.DEFINE_string(
      "cloudinary_api_key", os.environ.get("CLOUDINARY_API_KEY"),
      "Cloudinary API key",
  )
  flags.DEFINE_string(
      "cloudinary_api_secret",
      os.environ.get("CLOUDINARY_API_SECRET"),
      "Cloudinary API secret",
  )
  flags.DEFINE_string(
      "label_folder",
      "storefront/shipping-labels",
      "Asset folder for archived shipping labels",
  )
  flags.DEFINE_string(
      "admin_api_token",
      os.environ.get("ADMIN_API_TOKEN"),
      "Bearer token required by admin endpoints",
  )
except flags.DuplicateFlagError:
  pass


def flag_value(name: str) -> Any:
  """Reads a flag, falling back to its default when argv was never parsed.

  The app is imported by tests and ASGI runners without `absl.app.run`, so
  plain attribute access on FLAGS would raise UnparsedFlagAccessError.
  """
  return FLAGS[name].value


def is_production() -> bool:
  return (flag_value("environment") or "").lower() == "production"


def shippo_token() -> Optional[str]:
  """Resolves the Shippo token, preferring the test token outside production."""
  test_token = flag_value("shippo_test_token")
  live_token = flag_value("shippo_api_token")
  if test_token and not is_production():
    return test_token
  return live_token or test_token or None


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Runs schema migration once at startup and disposes the engine on exit."""
  del app  # Unused.
  # Tests install their own engine and skip this step.
  owns_engine = db.manager.engine is None
  if owns_engine:
    await db.manager.init_db(flag_value("database_url"))
  yield
  if owns_engine:
    await db.manager.close()
