import os
import uuid

from fastapi import UploadFile

from config import settings
from errors import ApiError

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
CHUNK_SIZE = 64 * 1024
PRODUCT_IMAGES = "products"


def images_dir() -> str:
    path = os.path.join(settings.UPLOAD_DIR, PRODUCT_IMAGES)
    os.makedirs(path, exist_ok=True)
    return path


def public_url(base_url: str, filename: str) -> str:
    return f"{base_url.rstrip('/')}/uploads/{PRODUCT_IMAGES}/{filename}"


def save_image(upload: UploadFile) -> dict:
    """Streams an image upload to disk under a random name.

    Rejects non-image MIME types before writing anything and removes the
    partial file if the stream runs past ``MAX_UPLOAD_BYTES``.
    """
    if upload.content_type not in ALLOWED_IMAGE_TYPES:
        raise ApiError(400, "Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed.")

    ext = os.path.splitext(upload.filename or "")[1].lower()
    filename = f"{uuid.uuid4()}{ext}"
    path = os.path.join(images_dir(), filename)
    limit = settings.MAX_UPLOAD_BYTES
    size = 0
    with open(path, "wb") as out:
        while True:
            chunk = upload.file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > limit:
                break
            out.write(chunk)
    if size > limit:
        os.remove(path)
        raise ApiError(400, f"File too large. Maximum size is {limit / (1024 * 1024):g}MB.")
    return {"filename": filename, "size": size, "mimetype": upload.content_type}


def is_safe_filename(filename: str) -> bool:
    return bool(filename) and ".." not in filename and "/" not in filename and "\\" not in filename


def delete_image(filename: str):
    try:
        os.remove(os.path.join(images_dir(), filename))
    except FileNotFoundError:
        pass
