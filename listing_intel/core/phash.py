from __future__ import annotations

import logging
from io import BytesIO

import httpx
from PIL import Image, ImageFile, UnidentifiedImageError

ImageFile.LOAD_TRUNCATED_IMAGES = True

LOGGER = logging.getLogger(__name__)

HASH_SIZE = 8
_NIBBLE_POPCOUNT = [0, 1, 1, 2, 1, 2, 2, 3, 1, 2, 2, 3, 2, 3, 3, 4]


def average_hash(image_bytes: bytes) -> str | None:
    """
    64-bit perceptual hash as 16 hex chars.
    The image is reduced to an 8x8 grayscale thumbnail; each bit is set when the
    pixel is at least as bright as the mean. Returns None for undecodable input.
    """
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            small = img.convert("L").resize((HASH_SIZE, HASH_SIZE), Image.Resampling.LANCZOS)
            pixels = list(small.getdata())
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        LOGGER.debug("Image decode failed: %s", exc)
        return None

    avg = sum(pixels) / len(pixels)
    value = 0
    for pixel in pixels:
        value = (value << 1) | (1 if pixel >= avg else 0)
    return f"{value:0{HASH_SIZE * HASH_SIZE // 4}x}"


def hamming_hex(a: str, b: str) -> int:
    length = min(len(a), len(b))
    distance = 0
    for i in range(length):
        distance += _NIBBLE_POPCOUNT[int(a[i], 16) ^ int(b[i], 16)]
    # Length mismatch counts every missing nibble as fully different.
    distance += abs(len(a) - len(b)) * 4
    return distance


def fetch_phash(url: str, client: httpx.Client) -> str | None:
    try:
        response = client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        LOGGER.warning("Photo download failed url=%s error=%s", url, exc)
        return None
    return average_hash(response.content)
