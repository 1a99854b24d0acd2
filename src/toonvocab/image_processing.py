# -*- coding: utf-8 -*-
import io
import math
import re
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from toonvocab.config import TILE_SIZE_THRESHOLD, TILE_OVERLAP, TILE_JPEG_QUALITY, UPSCALE_FACTOR
from toonvocab.errors import EmptyInput, InvalidDimensions, InvalidImage
from toonvocab.log import get_logger

logger = get_logger(__name__)

WHITE = (255, 255, 255)

# (mime type, OCR filetype) per sniffed format
IMAGE_FORMATS: Dict[str, Tuple[str, str]] = {
    'png': ('image/png', 'PNG'),
    'jpeg': ('image/jpeg', 'JPG'),
    'webp': ('image/webp', 'WEBP'),
}


class Tile:
    """A horizontal slice of a source image, re-encoded on its own."""

    def __init__(self, buffer: bytes, start_y: int, width: int, height: int, index: int = 0):
        self.buffer = buffer
        self.start_y = start_y
        self.width = width
        self.height = height
        self.index = index

    @property
    def end_y(self) -> int:
        return self.start_y + self.height

    def to_dict(self) -> Dict:
        """Metadata only; the buffer is left out."""
        return {
            'index': self.index,
            'startY': self.start_y,
            'width': self.width,
            'height': self.height,
            'bufferSize': len(self.buffer)
        }

    def __repr__(self) -> str:
        return f"Tile(index={self.index}, start_y={self.start_y}, height={self.height})"


def sniff_image_type(buffer: bytes) -> Optional[str]:
    """Returns 'png', 'jpeg' or 'webp' from the magic bytes, else None."""
    if len(buffer) < 4:
        return None
    if buffer[:4] == b'\x89PNG':
        return 'png'
    if buffer[:3] == b'\xff\xd8\xff':
        return 'jpeg'
    if buffer[:4] == b'RIFF' and len(buffer) >= 12 and buffer[8:12] == b'WEBP':
        return 'webp'
    return None


def detect_image_format(buffer: bytes) -> Tuple[str, str]:
    """Mime type and OCR filetype for a buffer. Unknown data is sent as JPEG."""
    kind = sniff_image_type(buffer)
    if kind is None:
        logger.warning("unknown_image_format", defaulting_to="JPG")
        return IMAGE_FORMATS['jpeg']
    return IMAGE_FORMATS[kind]


def load_image(buffer: bytes) -> Image.Image:
    """Decodes an image buffer with Pillow."""
    try:
        image = Image.open(io.BytesIO(buffer))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImage(f"Could not decode image: {e}") from e
    return image


def image_size(buffer: bytes) -> Tuple[int, int]:
    """(width, height) of an encoded image."""
    return load_image(buffer).size


def _flatten(image: Image.Image) -> Image.Image:
    """Composites any transparency onto white and returns an RGB image."""
    if image.mode == 'RGB':
        return image
    if image.mode in ('RGBA', 'LA') or 'transparency' in image.info:
        rgba = image.convert('RGBA')
        background = Image.new('RGB', rgba.size, WHITE)
        background.paste(rgba, (0, 0), rgba)
        return background
    return image.convert('RGB')


def _encode(image: Image.Image, fmt: str, **params) -> bytes:
    out = io.BytesIO()
    image.save(out, fmt, **params)
    return out.getvalue()


def stitch_images(buffers: Sequence[bytes]) -> bytes:
    """
    Stacks images vertically, in the given order, onto one white PNG canvas.

    Canvas width is the widest input; height is the sum of all heights.
    Every image is left-aligned at x=0.
    """
    if not buffers:
        raise EmptyInput("No images provided for stitching")

    images = []
    for index, buffer in enumerate(buffers):
        try:
            images.append(load_image(buffer))
        except InvalidImage as e:
            raise InvalidImage(f"Invalid image at index {index}") from e

    widths = np.array([img.width for img in images])
    heights = np.array([img.height for img in images])
    canvas_width = int(widths.max())
    canvas_height = int(heights.sum())

    if canvas_width == 0 or canvas_height == 0:
        raise InvalidDimensions("Invalid image dimensions")

    logger.debug("stitch_started", image_count=len(images), width=canvas_width, height=canvas_height)

    canvas = Image.new('RGB', (canvas_width, canvas_height), WHITE)
    offsets = np.concatenate(([0], np.cumsum(heights)[:-1]))
    for image, top in zip(images, offsets):
        canvas.paste(_flatten(image), (0, int(top)))

    stitched = _encode(canvas, 'PNG')
    logger.info(
        "stitch_completed",
        width=canvas_width,
        height=canvas_height,
        buffer_size=len(stitched),
        image_count=len(images)
    )
    return stitched


def needs_tiling(buffer: bytes, threshold: int = TILE_SIZE_THRESHOLD) -> bool:
    return len(buffer) > threshold


def plan_tile_spans(image_height: int, tile_height: int, overlap: int) -> List[Tuple[int, int]]:
    """
    Walks an image top to bottom and returns (start_y, height) per tile.

    Each tile starts tile_height - overlap rows after the previous one, so
    neighbours share exactly `overlap` rows. The last tile is clipped.
    """
    if image_height <= 0:
        raise InvalidDimensions("Image height must be positive")
    tile_height = max(1, tile_height)
    overlap = max(0, min(overlap, tile_height - 1))
    step = tile_height - overlap

    spans = []
    start = 0
    while True:
        end = min(start + tile_height, image_height)
        spans.append((start, end - start))
        if end >= image_height:
            break
        start += step
    return spans


def compute_tile_height(buffer_size: int, image_height: int, threshold: int) -> int:
    """Rows per tile so that a tile holds about `threshold` bytes."""
    bytes_per_row = buffer_size / image_height
    return max(1, int(math.floor(threshold / bytes_per_row)))


def create_adaptive_tiles(
    buffer: bytes,
    threshold: int = TILE_SIZE_THRESHOLD,
    overlap_fraction: float = TILE_OVERLAP,
) -> List[Tile]:
    """
    Splits an oversized image into overlapping horizontal tiles.

    Buffers at or under the threshold come back untouched as one tile.
    Larger ones are cut into JPEG tiles sized from the average bytes per row.
    """
    image = load_image(buffer)
    width, height = image.size
    if width == 0 or height == 0:
        raise InvalidImage("Image has zero width or height")

    if not needs_tiling(buffer, threshold):
        logger.debug("tiling_skipped", buffer_size=len(buffer), threshold=threshold)
        return [Tile(buffer, 0, width, height, 0)]

    tile_height = compute_tile_height(len(buffer), height, threshold)
    overlap = int(math.floor(tile_height * overlap_fraction))
    spans = plan_tile_spans(height, tile_height, overlap)

    logger.debug(
        "tiling_planned",
        image_width=width,
        image_height=height,
        buffer_size=len(buffer),
        tile_height=tile_height,
        overlap=overlap,
        tile_count=len(spans)
    )

    rgb = _flatten(image)
    tiles = []
    for index, (start_y, tile_h) in enumerate(spans):
        crop = rgb.crop((0, start_y, width, start_y + tile_h))
        tile_buffer = _encode(crop, 'JPEG', quality=TILE_JPEG_QUALITY)
        tiles.append(Tile(tile_buffer, start_y, width, tile_h, index))

    logger.info("tiles_created", tile_count=len(tiles))
    return tiles


def upscale_image(buffer: bytes, factor: float = UPSCALE_FACTOR) -> bytes:
    """Lanczos upscale to PNG. Small webtoon fonts OCR better at 2x."""
    if factor <= 0:
        raise ValueError("Upscale factor must be positive")
    image = load_image(buffer)
    new_size = (max(1, round(image.width * factor)), max(1, round(image.height * factor)))
    upscaled = _flatten(image).resize(new_size, Image.Resampling.LANCZOS)
    result = _encode(upscaled, 'PNG')
    logger.info("image_upscaled", original_size=len(buffer), upscaled_size=len(result), factor=factor)
    return result


def natural_sort_key(name: str) -> List:
    """Sort key so that page2.png comes before page10.png."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r'(\d+)', name)]
