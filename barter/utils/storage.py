import os
import uuid
import logging

from supabase import Client


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def images_bucket() -> str:
    return os.getenv("PRODUCT_IMAGES_BUCKET", "product-images")


def upload_image(
    client: Client,
    data: bytes,
    content_type: str = "image/jpeg",
    folder: str = "",
) -> str:
    """
    Upload image bytes under a random name and return the public URL.

    Raises ValueError for an unsupported content type or empty payload.
    """
    extension = IMAGE_EXTENSIONS.get(content_type)
    if extension is None:
        raise ValueError(f"Unsupported image type: {content_type}")
    if not data:
        raise ValueError("No image data")

    file_name = f"{uuid.uuid4()}.{extension}"
    file_path = f"{folder.strip('/')}/{file_name}" if folder else file_name

    bucket = client.storage.from_(images_bucket())
    bucket.upload(
        file_path,
        data,
        {
            "content-type": content_type,
            "cache-control": "3600",
            "upsert": "false",
        },
    )

    logger.info(f"image_uploaded bucket={images_bucket()} path={file_path}")

    return bucket.get_public_url(file_path)
