# -*- coding: utf-8 -*-
"""Geometry and OCR fragment types shared across pipeline stages."""
from typing import Dict, Optional


class BoundingBox:
    def __init__(self, x: float, y: float, width: float, height: float):
        self.x = x
        self.y = y
        self.width = width
        self.height = height

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    def scaled(self, factor: float) -> 'BoundingBox':
        return BoundingBox(self.x * factor, self.y * factor, self.width * factor, self.height * factor)

    def to_dict(self) -> Dict:
        return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}

    def __eq__(self, other) -> bool:
        if not isinstance(other, BoundingBox):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"BoundingBox(x={self.x}, y={self.y}, width={self.width}, height={self.height})"


class OcrFragment:
    """One recognised word and where it sits in the OCR'd buffer."""

    def __init__(self, text: str, bbox: BoundingBox, tile_index: Optional[int] = None):
        self.text = text
        self.bbox = bbox
        self.tile_index = tile_index

    def to_dict(self) -> Dict:
        data = {'text': self.text, 'bbox': self.bbox.to_dict()}
        if self.tile_index is not None:
            data['tileIndex'] = self.tile_index
        return data

    def __eq__(self, other) -> bool:
        if not isinstance(other, OcrFragment):
            return NotImplemented
        return (self.text, self.bbox, self.tile_index) == (other.text, other.bbox, other.tile_index)

    def __repr__(self) -> str:
        return f"OcrFragment({self.text!r}, {self.bbox!r}, tile_index={self.tile_index})"
