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

"""Utility script to dump product stock levels.

This script reads the current stock of every product from the configured
database and outputs it to standard output in CSV format. Negative stock marks
an oversold product.

Usage:
  uv run dump_inventory.py --database_url=...
"""

import asyncio
import csv
import sys
from absl import app as absl_app
import config
from db import Product
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker


async def dump_inventory():
  """Queries the database and prints current stock levels."""
  engine = create_async_engine(config.flag_value("database_url"), echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  try:
    async with session_factory() as session:
      result = await session.execute(select(Product).order_by(Product.slug))
      products = result.scalars().all()

      writer = csv.writer(sys.stdout)
      writer.writerow(["product_id", "slug", "name", "active", "stock"])
      for product in products:
        writer.writerow([
            product.id,
            product.slug,
            product.name,
            product.active,
            product.stock,
        ])
  finally:
    await engine.dispose()


def main(argv):
  """Main entry point for the inventory dump script."""
  del argv
  asyncio.run(dump_inventory())


if __name__ == "__main__":
  absl_app.run(main)
