from __future__ import annotations
import io
from PIL import Image, UnidentifiedImageError
from portal.services.assets import UnsupportedAssetType


# Pillow format -> (mime, avatar extension)
AVATAR_FORMATS = {
    "PNG": ("image/png", "png"),
    "JPEG": ("image/jpeg", "jpg"),
    "WEBP": ("image/webp", "webp"),
    "GIF": ("image/gif", "gif"),
}

def sniff_image(data: bytes) -> tuple[str, str]:
    """
    Returns (mime, ext) for an avatar upload.
    Raises UnsupportedAssetType for anything Pillow cannot verify as PNG/JPEG/WebP/GIF.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            img.verify()  # basic integrity
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        raise UnsupportedAssetType("Invalid image file")
    if fmt not in AVATAR_FORMATS:
        raise UnsupportedAssetType(f"Unsupported image type: {fmt}")
    return AVATAR_FORMATS[fmt]

async def read_limited(upload, limit: int) -> bytes | None:
    """Contents of an uploaded file, or None once it is known to exceed `limit` bytes."""
    if upload.size is not None and upload.size > limit:
        return None
    data = await upload.read(limit + 1)
    return data if len(data) <= limit else None
