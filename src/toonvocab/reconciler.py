# -*- coding: utf-8 -*-
import numpy as np
from typing import Dict, List, Optional, Sequence, Set, Tuple
from scipy.spatial import KDTree  # type: ignore

from toonvocab.config import DEDUP_EPSILON
from toonvocab.image_processing import Tile
from toonvocab.log import get_logger
from toonvocab.models import BoundingBox, OcrFragment

logger = get_logger(__name__)


def adjust_coordinates(
    fragments: Sequence[OcrFragment],
    tile: Tile,
    image_height: float,
    image_width: Optional[float] = None
) -> List[OcrFragment]:
    """
    Moves tile-local fragments into full-image space.

    Only y shifts, by the tile's start; tiles never split horizontally.
    Boxes are clamped so they stay inside the image.
    """
    adjusted = []
    for fragment in fragments:
        box = fragment.bbox
        y = min(max(box.y + tile.start_y, 0), image_height)
        bottom = min(box.y + tile.start_y + box.height, image_height)
        x = max(box.x, 0)
        right = box.x + box.width
        if image_width is not None:
            x = min(x, image_width)
            right = min(right, image_width)

        adjusted.append(OcrFragment(
            fragment.text,
            BoundingBox(x, y, max(right - x, 0), max(bottom - y, 0)),
            tile.index
        ))

    logger.debug("coordinates_adjusted", fragment_count=len(adjusted), tile_index=tile.index, start_y=tile.start_y)
    return adjusted


def overlap_bands(tiles: Sequence[Tile]) -> Dict[int, Tuple[int, int]]:
    """
    Rows shared by each pair of neighbouring tiles.

    Keyed by the upper tile's index; value is [start, end) in image rows.
    """
    ordered = sorted(tiles, key=lambda t: t.index)
    bands = {}
    for upper, lower in zip(ordered, ordered[1:]):
        start, end = lower.start_y, upper.end_y
        if end > start:
            bands[upper.index] = (start, end)
    return bands


def _touches(box: BoundingBox, band: Tuple[int, int]) -> bool:
    start, end = band
    return box.y < end and box.bottom > start


def filter_duplicates(
    fragments: Sequence[OcrFragment],
    tiles: Sequence[Tile],
    epsilon: float = DEDUP_EPSILON
) -> List[OcrFragment]:
    """
    Drops words read twice because they sit in the overlap of two tiles.

    Two fragments are duplicates when their text matches exactly, they come
    from adjacent tiles, both touch the band those tiles share, and every box
    coordinate is within `epsilon` pixels. The earlier tile's copy is kept.
    Fragments outside every overlap band are never removed.
    """
    bands = overlap_bands(tiles)
    if not bands or len(fragments) < 2:
        return list(fragments)

    # Candidate -> the band keys it touches
    candidates: List[int] = []
    touching: Dict[int, Set[int]] = {}
    for i, fragment in enumerate(fragments):
        tile_index = fragment.tile_index
        if tile_index is None:
            continue
        keys = {key for key in (tile_index - 1, tile_index)
                if key in bands and _touches(fragment.bbox, bands[key])}
        if keys:
            candidates.append(i)
            touching[i] = keys

    if len(candidates) < 2:
        return list(fragments)

    points = np.array([
        [fragments[i].bbox.x, fragments[i].bbox.y, fragments[i].bbox.width, fragments[i].bbox.height]
        for i in candidates
    ], dtype=float)
    tree = KDTree(points)

    # Earlier-tile partners of each candidate
    partners: Dict[int, List[int]] = {}
    for a, b in tree.query_pairs(r=epsilon, p=np.inf):
        i, j = candidates[a], candidates[b]
        first, second = fragments[i], fragments[j]
        if first.text != second.text:
            continue
        if abs(first.tile_index - second.tile_index) != 1:
            continue
        shared_band = min(first.tile_index, second.tile_index)
        if shared_band not in touching[i] or shared_band not in touching[j]:
            continue
        earlier, later = (i, j) if first.tile_index < second.tile_index else (j, i)
        partners.setdefault(later, []).append(earlier)

    dropped: Set[int] = set()
    for i in sorted(candidates, key=lambda k: (fragments[k].tile_index, k)):
        if any(p not in dropped for p in partners.get(i, [])):
            dropped.add(i)

    result = [f for i, f in enumerate(fragments) if i not in dropped]
    logger.debug(
        "duplicates_filtered",
        input_count=len(fragments),
        output_count=len(result),
        duplicates_removed=len(dropped)
    )
    return result
