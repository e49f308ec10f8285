import logging
import mimetypes
import uuid
from dataclasses import dataclass
from typing import Optional

from google.api_core.exceptions import NotFound

from app.core.config import settings
from app.core.firebase_service import get_storage_bucket

logger = logging.getLogger(__name__)

ALLOWED_CONTENT = {"image/jpeg", "image/png", "image/webp", "image/gif"}


@dataclass
class UploadedImage:
    url: str
    storage_path: str


def _guess_ext(content_type: str, fallback: str = ".jpg") -> str:
    exts = mimetypes.guess_all_extensions(content_type) or []
    return exts[0] if exts else fallback


def build_image_path(user_id: str, product_id: str, filename: str) -> str:
    """Object path of a listing photo: {prefix}/{user_id}/{product_id}/{filename}"""
    return f"{settings.product_images_prefix}/{user_id}/{product_id}/{filename}"


class StorageService:
    """Listing photos in the Firebase Cloud Storage bucket"""

    def __init__(self, bucket=None):
        self._bucket = bucket
        self.logger = logging.getLogger(__name__)

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = get_storage_bucket()
        return self._bucket

    def upload_image(
        self,
        user_id: str,
        product_id: str,
        data: bytes,
        content_type: str,
        original_filename: Optional[str] = None,
    ) -> UploadedImage:
        """Upload one photo and return its public URL and object path"""
        self.logger.info(f"upload_image: Entry - product: {product_id}, file: {original_filename}")

        if content_type not in ALLOWED_CONTENT:
            raise ValueError(f"Unsupported image type: {content_type}")
        if not data:
            raise ValueError("Empty image file")

        filename = f"{uuid.uuid4()}{_guess_ext(content_type)}"
        path = build_image_path(user_id, product_id, filename)
        try:
            blob = self.bucket.blob(path)
            blob.upload_from_string(data, content_type=content_type)
            blob.make_public()
            self.logger.info(f"upload_image: Success - {path}")
            return UploadedImage(url=blob.public_url, storage_path=path)
        except Exception as e:
            self.logger.error(f"upload_image: Failure - {path}: {e}")
            raise

    def delete_image(self, storage_path: str):
        """Delete a photo; a missing object is not an error"""
        self.logger.info(f"delete_image: Entry - {storage_path}")
        try:
            self.bucket.blob(storage_path).delete()
            self.logger.info(f"delete_image: Success - {storage_path}")
        except NotFound:
            self.logger.warning(f"delete_image: Already gone - {storage_path}")

    def delete_images(self, storage_paths: list[str]) -> list[str]:
        """
        Best-effort removal used for cleanup after failed or deleted listings.
        Returns the paths that could not be removed.
        """
        failed = []
        for path in storage_paths:
            try:
                self.delete_image(path)
            except Exception as e:
                self.logger.error(f"delete_images: Could not remove {path} - {e}")
                failed.append(path)
        return failed
