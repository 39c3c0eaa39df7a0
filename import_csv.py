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

"""Database migration and seeding script for the storefront server.

This script creates the schema in the configured database and imports the
catalog, promo codes and parcel templates from CSV files plus store settings
from a JSON file. Products, promo codes and parcel templates are replaced;
orders and checkouts are never touched.

Usage:
  uv run import_csv.py --database_url=... --data_dir=...
"""

import asyncio
import csv
import datetime
import json
import logging
import os
from typing import Any, Dict, List, Optional
from absl import app as absl_app
from absl import flags
import config
import db
from db import ParcelTemplate
from db import Product
from db import PromoCode
from sqlalchemy import delete

FLAGS = flags.FLAGS
flags.DEFINE_string(
    "data_dir",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
    "Directory containing products.csv, promo_codes.csv,"
    " parcel_templates.csv and store_settings.json",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _int_or_none(value: Optional[str]) -> Optional[int]:
  return int(value) if value not in (None, "") else None


def _float_or_none(value: Optional[str]) -> Optional[float]:
  return float(value) if value not in (None, "") else None


def _bool(value: Optional[str], default: bool = False) -> bool:
  if value in (None, ""):
    return default
  return value.strip().lower() in ("1", "true", "yes")


def _list(value: Optional[str]) -> List[str]:
  """Parses a JSON array or a semicolon separated list."""
  if not value:
    return []
  if value.lstrip().startswith("["):
    return json.loads(value)
  return [part.strip() for part in value.split(";") if part.strip()]


def _datetime_or_none(value: Optional[str]) -> Optional[datetime.datetime]:
  if not value:
    return None
  return db.as_utc(datetime.datetime.fromisoformat(value))


def _read_rows(path: str) -> List[Dict[str, Any]]:
  if not os.path.exists(path):
    logger.info("Skipping missing %s", path)
    return []
  with open(path, "r") as f:
    return list(csv.DictReader(f))


async def import_csv_data() -> None:
  """Migrates the schema and populates the database."""
  data_dir = FLAGS.data_dir
  await db.manager.init_db(config.flag_value("database_url"))

  try:
    async with db.manager.session_factory() as session:
      logger.info("Clearing existing products...")
      await session.execute(delete(Product))

      logger.info("Importing Products from CSV...")
      products = []
      for row in _read_rows(os.path.join(data_dir, "products.csv")):
        products.append(
            Product(
                id=row["id"],
                slug=row["slug"],
                name=row["name"],
                category=row.get("category") or None,
                description=row.get("description") or None,
                price_cents=int(row["price_cents"]),
                sale_price_cents=_int_or_none(row.get("sale_price_cents")),
                original_price_cents=_int_or_none(
                    row.get("original_price_cents")
                ),
                is_sale=_bool(row.get("is_sale")),
                is_new_drop=_bool(row.get("is_new_drop")),
                stock=int(row.get("stock") or 0),
                active=_bool(row.get("active"), default=True),
                sizes=_list(row.get("sizes")),
                images=_list(row.get("images")),
            )
        )
      session.add_all(products)

      logger.info("Clearing existing promo codes...")
      await session.execute(delete(PromoCode))

      logger.info("Importing Promo Codes from CSV...")
      promo_codes = []
      for row in _read_rows(os.path.join(data_dir, "promo_codes.csv")):
        promo_codes.append(
            PromoCode(
                code=row["code"].strip().upper(),
                active=_bool(row.get("active"), default=True),
                discount_type=row["discount_type"],
                percent_off=_float_or_none(row.get("percent_off")),
                amount_off_cents=_int_or_none(row.get("amount_off_cents")),
                currency=row.get("currency") or config.PRIMARY_CURRENCY,
                min_subtotal_cents=_int_or_none(row.get("min_subtotal_cents")),
                max_redemptions=_int_or_none(row.get("max_redemptions")),
                starts_at=_datetime_or_none(row.get("starts_at")),
                ends_at=_datetime_or_none(row.get("ends_at")),
                stripe_coupon_id=row.get("stripe_coupon_id") or None,
            )
        )
      session.add_all(promo_codes)

      logger.info("Clearing existing parcel templates...")
      await session.execute(delete(ParcelTemplate))

      logger.info("Importing Parcel Templates from CSV...")
      templates = []
      for row in _read_rows(os.path.join(data_dir, "parcel_templates.csv")):
        templates.append(
            ParcelTemplate(
                id=row.get("id") or db.new_id(),
                name=row["name"],
                length=float(row["length"]),
                width=float(row["width"]),
                height=float(row["height"]),
                weight=float(row["weight"]),
                distance_unit=row.get("distance_unit") or "in",
                mass_unit=row.get("mass_unit") or "oz",
                min_items=_int_or_none(row.get("min_items")),
                max_items=_int_or_none(row.get("max_items")),
                tags=_list(row.get("tags")),
                label_format_default=row.get("label_format_default") or None,
            )
        )
      session.add_all(templates)

      settings_path = os.path.join(data_dir, "store_settings.json")
      if os.path.exists(settings_path):
        logger.info("Importing Store Settings from JSON...")
        with open(settings_path, "r") as f:
          for key, value in json.load(f).items():
            await db.save_store_setting(session, key, value)

      await session.commit()

    logger.info("Database populated from CSVs.")
  finally:
    await db.manager.close()


def main(argv) -> None:
  """Main entry point for the CSV import script."""
  del argv
  asyncio.run(import_csv_data())


if __name__ == "__main__":
  absl_app.run(main)
