# -*- coding: utf-8 -*-
"""
Error taxonomy for the extraction pipeline.

ValidationError       caller supplied something unusable (4xx-like)
ProviderError         OCR or model provider misbehaved (5xx-like)
ExtractionEmptyError  nothing to learn from this chapter, not a bug
StageError            orchestrator wrapper carrying the failed stage prefix
"""
from typing import List, Optional


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class ConfigurationError(PipelineError):
    """A required setting (usually a provider key) is missing."""


# ── Validation ───────────────────────────────────────────────────────────

class ValidationError(PipelineError):
    pass


class InvalidArchive(ValidationError):
    pass


class ArchiveTooLarge(ValidationError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Zip file size ({size}) exceeds max size ({limit})")
        self.size = size
        self.limit = limit


class TooManyEntries(ValidationError):
    def __init__(self, count: int, limit: int):
        super().__init__(f"Too many entries ({count}) in zip, max is {limit}")
        self.count = count
        self.limit = limit


class EntryTooLarge(ValidationError):
    def __init__(self, name: str, size: int, limit: int):
        super().__init__(f"Image {name} size ({size}) exceeds max size ({limit})")
        self.name = name
        self.size = size
        self.limit = limit


class NoValidImages(ValidationError):
    def __init__(self, message: str = "No valid images found in zip file"):
        super().__init__(message)


class EmptyInput(ValidationError):
    pass


class InvalidDimensions(ValidationError):
    pass


class InvalidImage(ValidationError):
    pass


class SeriesNotFound(ValidationError):
    def __init__(self, slug: str):
        super().__init__(f"Series not found: {slug}")
        self.slug = slug


class InvalidSubmission(ValidationError):
    pass


# ── Provider ─────────────────────────────────────────────────────────────

class ProviderError(PipelineError):
    pass


class OcrProviderError(ProviderError):
    """OCR provider answered but reported a non-success exit code."""

    def __init__(self, exit_code: Optional[int], messages: Optional[List[str]] = None,
                 tile_index: Optional[int] = None):
        self.exit_code = exit_code
        self.messages = list(messages or [])
        self.tile_index = tile_index
        detail = "; ".join(self.messages) or "Unknown error"
        where = f" (tile {tile_index})" if tile_index is not None else ""
        super().__init__(f"OCR provider exit code {exit_code}{where}: {detail}")


class InvalidModelResponse(ProviderError):
    pass


# ── Empty outcomes ───────────────────────────────────────────────────────

class ExtractionEmptyError(PipelineError):
    pass


class NoTextDetected(ExtractionEmptyError):
    def __init__(self, message: str = "No text detected in image"):
        super().__init__(message)


class EmptyDialogue(ExtractionEmptyError):
    def __init__(self, message: str = "No dialogue extracted from OCR results"):
        super().__init__(message)


class NoItemsExtracted(ExtractionEmptyError):
    def __init__(self, message: str = "No vocabulary words extracted from dialogue"):
        super().__init__(message)


# ── Orchestration ────────────────────────────────────────────────────────

class StageError(PipelineError):
    """A pipeline stage failed; message is prefixed with the stage label."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {str(cause) or type(cause).__name__}")

    @property
    def is_validation(self) -> bool:
        return isinstance(self.cause, ValidationError)

    @property
    def is_empty(self) -> bool:
        return isinstance(self.cause, ExtractionEmptyError)
