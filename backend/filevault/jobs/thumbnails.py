"""Resize images to the fixed thumbnail widths."""

import asyncio
import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from filevault.files.service import THUMBNAIL_SIZES
from filevault.files.storage import BlobStorage

log = logging.getLogger(__name__)


class ThumbnailError(Exception):
    """Original bytes are not a readable image."""


def make_thumbnail(data: bytes, width: int) -> bytes:
    """
    Scale the image to width pixels wide, keeping aspect ratio, in the original
    format. Same input gives the same bytes.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ThumbnailError(str(e)) from e
    fmt = img.format or "PNG"
    img = ImageOps.exif_transpose(img)
    height = max(1, round(img.height * width / img.width))
    resized = img.resize((width, height), Image.Resampling.LANCZOS)
    if fmt == "JPEG" and resized.mode not in ("RGB", "L"):
        resized = resized.convert("RGB")
    out = io.BytesIO()
    resized.save(out, format=fmt)
    return out.getvalue()


async def generate_variants(blobs: BlobStorage, content_ref: str, data: bytes) -> list[int]:
    """Write every thumbnail width for content_ref; sizes run concurrently."""

    async def one(width: int) -> int:
        thumb = await asyncio.to_thread(make_thumbnail, data, width)
        await asyncio.to_thread(blobs.write_variant, content_ref, width, thumb)
        return width

    done = await asyncio.gather(*(one(w) for w in THUMBNAIL_SIZES))
    log.info("Thumbnails written for %s: %s", content_ref, done)
    return list(done)
