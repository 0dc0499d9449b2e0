import asyncio
import logging
import re
from typing import List
from urllib.parse import urlparse

import cloudinary
import cloudinary.api

from passr.config import CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET

logger = logging.getLogger(__name__)

cloudinary.config(
    cloud_name=CLOUDINARY_CLOUD_NAME,
    api_key=CLOUDINARY_API_KEY,
    api_secret=CLOUDINARY_API_SECRET
)

BASE_URL = f"https://res.cloudinary.com/{CLOUDINARY_CLOUD_NAME}/image/upload"
CLOUDINARY_HOST = "res.cloudinary.com"

# Admin API limit for a single delete_resources call
DELETE_BATCH_SIZE = 100

_TRANSFORMATION_SEGMENT = re.compile(r"^[a-z]{1,3}_[^/]*$")
_VERSION_SEGMENT = re.compile(r"^v\d+$")
_PUBLIC_ID = re.compile(r"^[\w\-./]+$")

def get_optimized_image_url(public_id: str) -> str:
    if not public_id or public_id.startswith("http"):
        return public_id

    transformations = "w_400,c_scale,f_auto,q_auto"
    return f"{BASE_URL}/{transformations}/{public_id}"

def parse_image_key(reference) -> str:
    """
    Turn a stored image reference into the Cloudinary public_id used as its storage key.

    Accepts either a bare public_id (``listings/u1/abc``) or a delivery URL such as
    ``https://res.cloudinary.com/<cloud>/image/upload/w_400,c_scale/v1712/listings/u1/abc.webp``.
    Raises ValueError for anything else.
    """
    if not isinstance(reference, str) or not reference.strip():
        raise ValueError(f"Empty image reference: {reference!r}")

    reference = reference.strip()
    if "://" not in reference:
        if not _PUBLIC_ID.match(reference) or reference.startswith("/"):
            raise ValueError(f"Not a public_id: {reference!r}")
        return reference

    parsed = urlparse(reference)
    if parsed.scheme not in ("http", "https") or parsed.netloc != CLOUDINARY_HOST:
        raise ValueError(f"Not a Cloudinary URL: {reference!r}")

    segments = [s for s in parsed.path.split("/") if s]
    # /<cloud>/<resource_type>/upload/...
    if len(segments) < 4 or segments[2] != "upload":
        raise ValueError(f"Not an upload URL: {reference!r}")

    remainder = segments[3:]
    while remainder and _TRANSFORMATION_SEGMENT.match(remainder[0]):
        remainder = remainder[1:]
    if remainder and _VERSION_SEGMENT.match(remainder[0]):
        remainder = remainder[1:]
    if not remainder:
        raise ValueError(f"URL has no public_id: {reference!r}")

    last = remainder[-1]
    if "." in last:
        remainder[-1] = last.rsplit(".", 1)[0]
    return "/".join(remainder)

class CloudinaryObjectStore:
    """Best-effort batch deletion of listing images."""

    def __init__(self, api=None, batch_size: int = DELETE_BATCH_SIZE):
        self.api = api or cloudinary.api
        self.batch_size = batch_size

    async def delete_objects(self, keys: List[str]) -> None:
        keys = list(dict.fromkeys(keys))
        for start in range(0, len(keys), self.batch_size):
            chunk = keys[start:start + self.batch_size]
            try:
                # The SDK is blocking; keep it off the event loop
                result = await asyncio.to_thread(self.api.delete_resources, chunk)
            except Exception as e:
                logger.error("Failed to delete %d Cloudinary objects: %s", len(chunk), e)
                continue

            deleted = (result or {}).get("deleted", {})
            missing = [key for key in chunk if deleted.get(key) != "deleted"]
            if missing:
                logger.warning("Cloudinary did not delete %d of %d objects: %s", len(missing), len(chunk), missing)
            else:
                logger.info("Deleted %d Cloudinary objects", len(chunk))
