import logging
from typing import List

from fastapi import APIRouter, Depends, File, Request, UploadFile

from config import settings
from errors import ApiError, ok
from limiter import limiter
from models import User
from storage import delete_image, is_safe_filename, public_url, save_image
from security import get_current_seller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["uploads"])


def _describe(request: Request, saved: dict) -> dict:
    return dict(saved, url=public_url(str(request.base_url), saved["filename"]))


@router.post("/image", status_code=201)
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
def upload_image(request: Request, image: UploadFile = File(...), current: User = Depends(get_current_seller)):
    saved = save_image(image)
    logger.info("User %s uploaded %s (%s bytes)", current.id, saved["filename"], saved["size"])
    return ok(_describe(request, saved), "Image uploaded successfully")


@router.post("/images", status_code=201)
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
def upload_images(request: Request, images: List[UploadFile] = File(...), current: User = Depends(get_current_seller)):
    if len(images) > settings.MAX_UPLOAD_FILES:
        raise ApiError(400, f"Too many files. Maximum is {settings.MAX_UPLOAD_FILES} files.")

    saved = []
    try:
        for image in images:
            saved.append(save_image(image))
    except ApiError:
        # all or nothing
        for item in saved:
            delete_image(item["filename"])
        raise
    logger.info("User %s uploaded %d images", current.id, len(saved))
    return ok({"images": [_describe(request, item) for item in saved]}, f"{len(saved)} images uploaded successfully")


@router.delete("/{filename}")
def remove_image(filename: str, current: User = Depends(get_current_seller)):
    if not is_safe_filename(filename):
        raise ApiError(400, "Invalid filename.")
    delete_image(filename)
    return ok(message="Image deleted successfully")
