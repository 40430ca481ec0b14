"""Media host adapter (Cloudinary)."""

import io
import re
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from config import Settings
from errors import ExternalServiceError, ValidationError
from log import get_logger

logger = get_logger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_PRODUCT_IMAGES = 5

_PUBLIC_ID = re.compile(r"/v\d+/(.+)\.[A-Za-z0-9]+$")


class UploadedImage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    secure_url: str
    public_id: str
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    bytes: Optional[int] = None


def check_image(filename: Optional[str], content_type: Optional[str], size: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise ValidationError("Only image files are allowed!", [{"field": filename or "file", "message": "Only image files are allowed!"}])
    if size > MAX_IMAGE_BYTES:
        raise ValidationError("Image exceeds the 5MB limit", [{"field": filename or "file", "message": "Image exceeds the 5MB limit"}])


class CloudinaryMediaHost:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = "ecommerce"):
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)
        self.folder = folder

    def upload_image(self, content: bytes, folder: Optional[str] = None) -> UploadedImage:
        try:
            result = cloudinary.uploader.upload(
                io.BytesIO(content),
                folder=folder or self.folder,
                resource_type="image",
                transformation=[
                    {"width": 800, "height": 800, "crop": "limit"},
                    {"quality": "auto"},
                    {"fetch_format": "auto"},
                ],
            )
        except cloudinary.exceptions.Error as e:
            logger.error("image upload failed", error=str(e))
            raise ExternalServiceError("Image upload failed") from e
        return UploadedImage(**{k: result.get(k) for k in UploadedImage.model_fields})

    def delete_image(self, public_id: str) -> None:
        try:
            result = cloudinary.uploader.destroy(public_id, resource_type="image")
        except cloudinary.exceptions.Error as e:
            logger.error("image delete failed", public_id=public_id, error=str(e))
            raise ExternalServiceError("Image delete failed") from e
        if result.get("result") not in ("ok", "not found"):
            raise ExternalServiceError("Image delete failed")

    @staticmethod
    def public_id_from_url(url: str) -> Optional[str]:
        match = _PUBLIC_ID.search(url)
        return match.group(1) if match else None


def build_media_host(settings: Settings) -> Optional[CloudinaryMediaHost]:
    if not settings.media_configured:
        logger.warning("media host disabled, Cloudinary credentials are not set")
        return None
    return CloudinaryMediaHost(
        settings.cloudinary_cloud_name,
        settings.cloudinary_api_key,
        settings.cloudinary_api_secret,
        settings.cloudinary_folder,
    )
