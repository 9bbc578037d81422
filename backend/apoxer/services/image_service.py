"""
Avatar and banner generation for seeded profiles.

Source images are SteamGridDB heroes: wide artwork with logos and captions
usually sitting in the lower part. Crops are taken from the upper area with a
random zoom and a small horizontal jitter around the centre.
"""

import random
import time
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional

import httpx
from PIL import Image

from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

AVATAR_SIZE = 512
AVATAR_ZOOM = (1.5, 3.0)
AVATAR_AVOID_BOTTOM = 0.3
BANNER_SIZE = (1920, 620)
BANNER_ZOOM = (1.2, 2.0)
BANNER_AVOID_BOTTOM = 0.4
X_JITTER = 0.4  # +-20% of the free horizontal space
JPEG_QUALITY = 90
MAX_IMAGE_PIXELS = 25_000_000

Image.MAX_IMAGE_PIXELS = MAX_IMAGE_PIXELS


def _to_rgb(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "P", "LA"):
        if img.mode == "P":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (0, 0, 0))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _crop_box(
    width: int,
    height: int,
    crop_width: float,
    crop_height: float,
    avoid_bottom: float,
    rng: random.Random,
) -> tuple[int, int, int, int]:
    max_y = height - height * avoid_bottom - crop_height
    y = rng.random() * max(0.0, max_y)

    center_x = (width - crop_width) / 2
    x = center_x + (rng.random() - 0.5) * (width - crop_width) * X_JITTER

    x = max(0.0, min(x, width - crop_width))
    y = max(0.0, min(y, height - crop_height))
    return round(x), round(y), round(x + crop_width), round(y + crop_height)


def _encode_jpeg(img: Image.Image) -> bytes:
    output = BytesIO()
    img.save(output, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    return output.getvalue()


def crop_avatar(image_bytes: bytes, rng: Optional[random.Random] = None) -> bytes:
    """Square AVATAR_SIZE JPEG zoomed 1.5-3x into the upper part of the image."""
    rng = rng or random.Random()
    img = _to_rgb(Image.open(BytesIO(image_bytes)))
    width, height = img.size

    zoom = rng.uniform(*AVATAR_ZOOM)
    side = min(width, height) / zoom
    box = _crop_box(width, height, side, side, AVATAR_AVOID_BOTTOM, rng)

    img = img.crop(box).resize((AVATAR_SIZE, AVATAR_SIZE), Image.Resampling.LANCZOS)
    return _encode_jpeg(img)


def crop_banner(image_bytes: bytes, rng: Optional[random.Random] = None) -> bytes:
    """BANNER_SIZE JPEG zoomed 1.2-2x, keeping the banner aspect ratio."""
    rng = rng or random.Random()
    img = _to_rgb(Image.open(BytesIO(image_bytes)))
    width, height = img.size
    target_width, target_height = BANNER_SIZE
    aspect = target_width / target_height

    zoom = rng.uniform(*BANNER_ZOOM)
    crop_width = width / zoom
    crop_height = crop_width / aspect
    if crop_height > height:
        crop_height = height / zoom
        crop_width = crop_height * aspect

    box = _crop_box(width, height, crop_width, crop_height, BANNER_AVOID_BOTTOM, rng)
    img = img.crop(box).resize(BANNER_SIZE, Image.Resampling.LANCZOS)
    return _encode_jpeg(img)


async def download_image(url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[bytes]:
    try:
        async with httpx.AsyncClient(timeout=20.0, follow_redirects=True, transport=transport) as client:
            response = await client.get(url, headers={"User-Agent": "Mozilla/5.0"})
            response.raise_for_status()
            return response.content
    except httpx.HTTPError as e:
        logger.warning("image_download_failed", url=url, error=str(e))
        return None


def store_media(user_id: int, kind: str, data: bytes) -> str:
    """Write a JPEG under MEDIA_ROOT/<user_id>/ and return its public URL path."""
    directory = Path(settings.MEDIA_ROOT) / str(user_id)
    directory.mkdir(parents=True, exist_ok=True)
    filename = f"{kind}-{int(time.time())}-{uuid.uuid4().hex[:8]}.jpg"
    (directory / filename).write_bytes(data)
    return f"{settings.MEDIA_URL_PREFIX.rstrip('/')}/{user_id}/{filename}"


def remove_media(user_id: int) -> int:
    directory = Path(settings.MEDIA_ROOT) / str(user_id)
    if not directory.is_dir():
        return 0
    removed = 0
    for path in directory.iterdir():
        if path.is_file():
            path.unlink()
            removed += 1
    directory.rmdir()
    return removed
