# =============================================================================
# core/services/storage_service.py - Supabase Storage Operations
# =============================================================================
# Handles image uploads to Supabase Storage.
#
# Layout inside the bucket:
#   {user_id}/{job_id}-original.{ext}
#   {user_id}/{job_id}-staged.{ext}
# =============================================================================

import base64
import binascii
import logging

import httpx

from lib.supabase_client import SupabaseClient
from app.config import settings
from app.exceptions import InvalidImageError, StorageUploadError
from core.constants import ACCEPTED_IMAGE_TYPES

logger = logging.getLogger(__name__)


def extension_for(mime_type: str | None) -> str:
    """File extension for an image MIME type ("image/jpeg" -> "jpeg")."""
    if not mime_type or "/" not in mime_type:
        return "png"
    return mime_type.split("/", 1)[1].split(";", 1)[0] or "png"


class StorageService:
    """
    Service for Supabase Storage operations.

    Handles decoding, uploading and downloading staging images.
    """

    @staticmethod
    def decode_image(image_base64: str, mime_type: str) -> bytes:
        """
        Decode and validate a base64 image from a request body.

        Accepts a bare base64 string or a data URL.

        Raises:
            InvalidImageError: If the type is unsupported, the payload isn't
                base64, or the decoded image is over the size limit
        """
        if mime_type not in ACCEPTED_IMAGE_TYPES:
            raise InvalidImageError(f"unsupported type {mime_type}", allowed=ACCEPTED_IMAGE_TYPES)

        if image_base64.startswith("data:") and "," in image_base64:
            image_base64 = image_base64.split(",", 1)[1]

        try:
            content = base64.b64decode(image_base64, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidImageError("image is not valid base64")

        if not content:
            raise InvalidImageError("image is empty")

        if len(content) > settings.max_image_size_bytes:
            size_mb = len(content) / (1024 * 1024)
            raise InvalidImageError(
                f"image is {size_mb:.1f}MB (max {settings.MAX_IMAGE_SIZE_MB}MB)"
            )

        return content

    @staticmethod
    def upload_image(
        path: str,
        content: bytes,
        content_type: str,
    ) -> str:
        """
        Upload image bytes and return their public URL.

        Args:
            path: Path inside the bucket
            content: Image bytes
            content_type: MIME type stored with the object

        Returns:
            Public URL of the uploaded object

        Raises:
            StorageUploadError: If upload fails
        """
        client = SupabaseClient.get_client()
        bucket = client.storage.from_(settings.STORAGE_BUCKET)

        try:
            bucket.upload(
                path=path,
                file=content,
                file_options={"content-type": content_type, "upsert": "true"}
            )
        except Exception as e:
            logger.error(f"Storage upload failed for {path}: {e}")
            raise StorageUploadError(str(e))

        logger.info(f"Uploaded image to storage: {path}")
        return bucket.get_public_url(path)

    @staticmethod
    def upload_original(user_id: str, job_id: str, content: bytes, mime_type: str) -> str:
        """Upload the source image of a staging job."""
        path = f"{user_id}/{job_id}-original.{extension_for(mime_type)}"
        return StorageService.upload_image(path, content, mime_type)

    @staticmethod
    def upload_staged(user_id: str, job_id: str, content: bytes, mime_type: str) -> str:
        """Upload the staged result of a staging job."""
        path = f"{user_id}/{job_id}-staged.{extension_for(mime_type)}"
        return StorageService.upload_image(path, content, mime_type)

    @staticmethod
    def download_url(url: str) -> tuple[bytes, str]:
        """
        Download an image from a URL (provider output).

        Returns:
            (content, content_type)

        Raises:
            httpx.HTTPError: If the download fails
        """
        response = httpx.get(url, timeout=60, follow_redirects=True)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "image/png").split(";", 1)[0]
        return response.content, content_type
