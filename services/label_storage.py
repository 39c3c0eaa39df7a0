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

"""Durable label archive backed by Cloudinary.

Carrier label URLs can expire, so purchased labels are copied into the asset
store as raw PDF uploads. The cloudinary client is synchronous, so uploads run
in a worker thread.
"""

import asyncio
import io
import logging
from typing import Any, Dict, Optional

import cloudinary.exceptions
import cloudinary.uploader
from exceptions import AssetStoreError
from models import LabelAsset

logger = logging.getLogger(__name__)

ASSET_PROVIDER = "cloudinary"


class CloudinaryLabelStorage:
  """Uploads label PDFs to Cloudinary."""

  def __init__(
      self,
      cloud_name: Optional[str],
      api_key: Optional[str],
      api_secret: Optional[str],
      folder: Optional[str] = None,
  ):
    self.cloud_name = cloud_name
    self.api_key = api_key
    self.api_secret = api_secret
    self.folder = folder

  @property
  def configured(self) -> bool:
    return bool(self.cloud_name and self.api_key and self.api_secret)

  async def upload_pdf(self, content: bytes, public_id: str) -> LabelAsset:
    """Uploads a label as a raw asset, overwriting any previous copy.

    The first attempt names the asset with a `.pdf` suffix; if Cloudinary
    rejects that, the upload is retried with an explicit `format`.

    Raises:
      AssetStoreError: If credentials are missing or both attempts fail.
    """
    if not self.configured:
      raise AssetStoreError("Cloudinary env vars are missing.")

    base_id = public_id
    if base_id.lower().endswith(".pdf"):
      base_id = base_id[:-4]
    filename = f"{base_id.rsplit('/', 1)[-1]}.pdf"
    common = {
        "resource_type": "raw",
        "access_mode": "public",
        "overwrite": True,
        "unique_filename": False,
        "filename_override": filename,
    }
    if self.folder:
      common["folder"] = self.folder
    try:
      return await self._upload(
          content, dict(common, public_id=f"{base_id}.pdf")
      )
    except AssetStoreError as e:
      logger.warning("Label upload for %s failed, retrying: %s", base_id, e)
    return await self._upload(
        content, dict(common, public_id=base_id, format="pdf")
    )

  async def _upload(
      self, content: bytes, options: Dict[str, Any]
  ) -> LabelAsset:
    try:
      result = await asyncio.to_thread(
          cloudinary.uploader.upload,
          io.BytesIO(content),
          cloud_name=self.cloud_name,
          api_key=self.api_key,
          api_secret=self.api_secret,
          **options,
      )
    except cloudinary.exceptions.Error as e:
      raise AssetStoreError(str(e) or "Label upload failed") from e
    return LabelAsset(
        asset_url=str(result.get("secure_url") or ""),
        public_id=str(result.get("public_id") or ""),
        bytes=int(result.get("bytes") or 0),
    )
