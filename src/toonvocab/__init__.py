# -*- coding: utf-8 -*-
"""
ToonVocab - Webtoon Vocabulary Extractor

Pipeline:
- Zip extraction and vertical stitching of chapter screenshots
- Size-adaptive tiling for the OCR provider, with overlap reconciliation
- Proximity grouping of OCR fragments into dialogue lines
- Single-request vocabulary and grammar extraction with Gemini
- Idempotent per-chapter storage
"""
__version__ = "1.0.0"

from toonvocab.errors import PipelineError, StageError
from toonvocab.models import BoundingBox, OcrFragment
from toonvocab.ocr import OcrSpaceClient, TiledOcrService
from toonvocab.grouper import DialogueGrouper, DialogueLine
from toonvocab.llm import VocabularyExtractor, ExtractedItem, ExtractionResult
from toonvocab.db import VocabularyStore
from toonvocab.anki import AnkiDeckBuilder
from toonvocab.pipeline import VocabularyPipeline, ChapterSubmission, PipelineResult
from toonvocab.image_processing import (
    stitch_images,
    create_adaptive_tiles,
    detect_image_format
)
from toonvocab.archive import extract_images_from_zip

__all__ = [
    'PipelineError',
    'StageError',
    'BoundingBox',
    'OcrFragment',
    'OcrSpaceClient',
    'TiledOcrService',
    'DialogueGrouper',
    'DialogueLine',
    'VocabularyExtractor',
    'ExtractedItem',
    'ExtractionResult',
    'VocabularyStore',
    'AnkiDeckBuilder',
    'VocabularyPipeline',
    'ChapterSubmission',
    'PipelineResult',
    'stitch_images',
    'create_adaptive_tiles',
    'detect_image_format',
    'extract_images_from_zip'
]
