# -*- coding: utf-8 -*-
import numpy as np
from typing import List, Dict, Sequence
from toonvocab.config import GROUPING_THRESHOLD
from toonvocab.log import get_logger
from toonvocab.models import BoundingBox, OcrFragment

logger = get_logger(__name__)

ROW_TOLERANCE = 0.2  # Fraction of median word height treated as "same row"


class DialogueLine:
    """Fragments that read as one piece of on-page text."""
    def __init__(self, first: OcrFragment):
        self.fragments: List[OcrFragment] = [first]
        self.bbox = BoundingBox(first.bbox.x, first.bbox.y, first.bbox.width, first.bbox.height)

    @property
    def top(self) -> float:
        return self.bbox.y

    @property
    def bottom(self) -> float:
        return self.bbox.bottom

    def add(self, fragment: OcrFragment):
        """Absorb a fragment and grow the line's box around it."""
        self.fragments.append(fragment)
        left = min(self.bbox.x, fragment.bbox.x)
        top = min(self.bbox.y, fragment.bbox.y)
        right = max(self.bbox.right, fragment.bbox.right)
        bottom = max(self.bbox.bottom, fragment.bbox.bottom)
        self.bbox = BoundingBox(left, top, right - left, bottom - top)

    def gap_to(self, fragment: OcrFragment) -> float:
        """Vertical distance from the line's bottom edge to the fragment; 0 if they overlap."""
        return max(0.0, fragment.bbox.y - self.bottom)

    def ordered_fragments(self) -> List[OcrFragment]:
        """
        Reading order inside the line.

        Fragments whose tops differ by less than a fifth of the median word
        height share a visual row and are read left to right; rows go top down.
        """
        heights = np.array([f.bbox.height for f in self.fragments], dtype=float)
        tolerance = float(np.median(heights)) * ROW_TOLERANCE

        by_top = sorted(self.fragments, key=lambda f: (f.bbox.y, f.bbox.x))
        rows: List[List[OcrFragment]] = []
        for fragment in by_top:
            if rows and abs(fragment.bbox.y - rows[-1][0].bbox.y) <= tolerance:
                rows[-1].append(fragment)
            else:
                rows.append([fragment])

        ordered = []
        for row in rows:
            ordered.extend(sorted(row, key=lambda f: f.bbox.x))
        return ordered

    @property
    def text(self) -> str:
        return ' '.join(f.text for f in self.ordered_fragments())

    def to_dict(self) -> Dict:
        return {
            'line': self.text,
            'bbox': self.bbox.to_dict(),
            'fragmentCount': len(self.fragments)
        }


class DialogueGrouper:
    """
    Merges OCR fragments into dialogue lines by vertical proximity.

    A small threshold splits speech bubbles into several lines; a large one
    glues neighbouring bubbles together. Tune it per series if needed.
    """

    def __init__(self, threshold: float = GROUPING_THRESHOLD):
        if threshold < 0:
            raise ValueError("Grouping threshold must not be negative")
        self.threshold = threshold

    def group(self, fragments: Sequence[OcrFragment]) -> List[DialogueLine]:
        """
        Args:
            fragments: Deduplicated fragments in full-image coordinates

        Returns:
            DialogueLine objects ordered top to bottom
        """
        if not fragments:
            return []

        ordered = sorted(fragments, key=lambda f: (f.bbox.y, f.bbox.x))

        lines: List[DialogueLine] = []
        current = None
        for fragment in ordered:
            if current is not None and current.gap_to(fragment) < self.threshold:
                current.add(fragment)
            else:
                current = DialogueLine(fragment)
                lines.append(current)

        logger.info("dialogue_grouped", fragment_count=len(fragments), line_count=len(lines), threshold=self.threshold)
        return lines


def combine_dialogue(lines: Sequence[DialogueLine]) -> str:
    """One dialogue line per row of text, top to bottom."""
    return '\n'.join(line.text for line in lines)
