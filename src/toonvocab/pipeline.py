# -*- coding: utf-8 -*-
"""
Chapter submission -> vocabulary rows.

    image/zip -> stitched image -> tiles -> OCR fragments -> dialogue lines
              -> extracted items -> persisted rows

Stages run one after another. A stage either hands back its output or the
run fails with a StageError naming the stage; nothing is retried here.
"""
import enum
from typing import Dict, List, Optional

from toonvocab.archive import extract_images_from_zip, is_zip_buffer
from toonvocab.config import Settings
from toonvocab.db import StoreResult, VocabularyStore
from toonvocab.debug import DebugTrace, NullTrace, new_job_id
from toonvocab.errors import (
    EmptyDialogue,
    EmptyInput,
    InvalidSubmission,
    NoItemsExtracted,
    NoTextDetected,
    StageError
)
from toonvocab.grouper import DialogueGrouper, combine_dialogue
from toonvocab.image_processing import stitch_images
from toonvocab.llm import ExtractionResult, VocabularyExtractor
from toonvocab.log import get_logger
from toonvocab.ocr import OcrSpaceClient, TiledOcrService

logger = get_logger(__name__)

OCR_STAGE = "OCR"
EXTRACTION_STAGE = "Word extraction"
STORAGE_STAGE = "Database storage"


class PipelineState(enum.Enum):
    IDLE = "idle"
    OCR_RUNNING = "ocr_running"
    GROUPING = "grouping"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = (PipelineState.COMPLETED, PipelineState.FAILED)


class PipelineRun:
    """State of one pipeline invocation. Never shared between runs."""

    def __init__(self, job_id: Optional[str] = None):
        self.job_id = job_id or new_job_id()
        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.error: Optional[BaseException] = None

    def advance(self, state: PipelineState):
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Run {self.job_id} already {self.state.value}")
        self.state = state
        self.history.append(state)
        logger.debug("pipeline_state", job_id=self.job_id, state=state.value)

    def fail(self, error: BaseException):
        self.error = error
        if self.state not in TERMINAL_STATES:
            self.advance(PipelineState.FAILED)


class ChapterSubmission:
    """Which chapter the uploaded screenshots belong to."""

    def __init__(self, series_slug: str, chapter_number: int,
                 chapter_title: Optional[str] = None, chapter_link: Optional[str] = None):
        if not series_slug or not series_slug.strip():
            raise InvalidSubmission("seriesSlug is required")
        if isinstance(chapter_number, bool) or not isinstance(chapter_number, int) or chapter_number < 1:
            raise InvalidSubmission("chapterNumber must be a positive integer")
        self.series_slug = series_slug.strip()
        self.chapter_number = chapter_number
        self.chapter_title = chapter_title or None
        self.chapter_link = chapter_link or None


class PipelineResult:
    def __init__(self, submission: ChapterSubmission, stored: StoreResult,
                 dialogue_lines_count: int, extraction: ExtractionResult):
        self.series_slug = submission.series_slug
        self.chapter_number = submission.chapter_number
        self.chapter_id = stored.chapter_id
        self.new_words_inserted = stored.vocabulary.new_inserted
        self.total_words_in_chapter = stored.vocabulary.total_in_chapter
        self.new_grammar_inserted = stored.grammar.new_inserted
        self.total_grammar_in_chapter = stored.grammar.total_in_chapter
        self.dialogue_lines_count = dialogue_lines_count
        self.words_extracted = len(extraction.vocabulary)
        self.grammar_extracted = len(extraction.grammar)

    def to_dict(self) -> Dict:
        return {
            'chapterId': self.chapter_id,
            'seriesSlug': self.series_slug,
            'chapterNumber': self.chapter_number,
            'newWordsInserted': self.new_words_inserted,
            'totalWordsInChapter': self.total_words_in_chapter,
            'newGrammarInserted': self.new_grammar_inserted,
            'totalGrammarInChapter': self.total_grammar_in_chapter,
            'dialogueLinesCount': self.dialogue_lines_count,
            'wordsExtracted': self.words_extracted,
            'grammarExtracted': self.grammar_extracted
        }


def prepare_image(data: bytes) -> bytes:
    """A zip becomes one stitched image; anything else is taken as an image."""
    if not data:
        raise EmptyInput("Image file is empty")
    if is_zip_buffer(data):
        return stitch_images(extract_images_from_zip(data))
    return data


class VocabularyPipeline:
    """
    Sequences OCR, grouping, extraction and storage for one chapter at a time.

    The OCR service and extractor can be injected; otherwise they are built
    from settings when their stage starts, so a missing key fails that stage.
    """

    def __init__(self, settings: Settings, store: VocabularyStore,
                 ocr_service: Optional[TiledOcrService] = None,
                 extractor: Optional[VocabularyExtractor] = None):
        self.settings = settings
        self.store = store
        self._ocr_service = ocr_service
        self._extractor = extractor

    def make_trace(self, job_id: Optional[str] = None):
        if self.settings.debug_dir:
            return DebugTrace(self.settings.debug_dir, job_id)
        return NullTrace()

    def process_submission(self, data: bytes, submission: ChapterSubmission,
                           trace=None, run: Optional[PipelineRun] = None) -> PipelineResult:
        """Entry point for uploads: a single image or a zip of strips."""
        run = run or PipelineRun()
        try:
            image = prepare_image(data)
        except Exception as e:
            self._fail(run, e)
            raise
        return self.process_image(image, submission, trace, run)

    def process_image(self, image: bytes, submission: ChapterSubmission,
                      trace=None, run: Optional[PipelineRun] = None) -> PipelineResult:
        run = run or PipelineRun()
        trace = trace or self.make_trace(run.job_id)

        logger.info(
            "pipeline_started",
            job_id=run.job_id,
            series=submission.series_slug,
            chapter=submission.chapter_number,
            image_size=len(image)
        )
        trace.save_image('original-image', image)

        try:
            result = self._run(image, submission, trace, run)
        except Exception as e:
            self._fail(run, e)
            raise

        run.advance(PipelineState.COMPLETED)
        trace.save_json('final-result', result.to_dict())
        logger.info("pipeline_completed", job_id=run.job_id, **result.to_dict())
        return result

    def _run(self, image: bytes, submission: ChapterSubmission, trace, run: PipelineRun) -> PipelineResult:
        run.advance(PipelineState.OCR_RUNNING)
        owned = None
        try:
            service = self._ocr_service
            if service is None:
                service = owned = self._build_ocr_service()
            fragments = service.recognize(image, trace)
        except Exception as e:
            raise StageError(OCR_STAGE, e) from e
        finally:
            if owned is not None:
                owned.client.close()

        if not fragments:
            raise NoTextDetected()

        run.advance(PipelineState.GROUPING)
        lines = DialogueGrouper(self.settings.grouping_threshold).group(fragments)
        dialogue = combine_dialogue(lines)
        trace.save_json('dialogue-grouped', [line.to_dict() for line in lines])
        trace.save_text('dialogue-combined', dialogue)

        if not dialogue.strip():
            raise EmptyDialogue()

        run.advance(PipelineState.EXTRACTING)
        try:
            extraction = self._extractor_for_run().extract(dialogue, trace)
        except Exception as e:
            raise StageError(EXTRACTION_STAGE, e) from e
        trace.save_json('word-extraction-result', extraction.to_dict())

        if not extraction.vocabulary:
            raise NoItemsExtracted()

        run.advance(PipelineState.PERSISTING)
        try:
            stored = self.store.store_chapter_items(
                extraction.vocabulary,
                extraction.grammar,
                submission.series_slug,
                submission.chapter_number,
                submission.chapter_title,
                submission.chapter_link
            )
        except Exception as e:
            raise StageError(STORAGE_STAGE, e) from e

        return PipelineResult(submission, stored, len(lines), extraction)

    def _fail(self, run: PipelineRun, error: Exception):
        run.fail(error)
        logger.error("pipeline_failed", job_id=run.job_id, state=run.history[-2].value, error=str(error))

    def _build_ocr_service(self) -> TiledOcrService:
        s = self.settings
        client = OcrSpaceClient(
            s.ocr_api_key,
            language=s.ocr_language,
            ocr_engine=s.ocr_engine,
            scale=s.ocr_scale,
            timeout=s.ocr_timeout,
            endpoint=s.ocr_endpoint
        )
        return TiledOcrService(
            client,
            tile_size_threshold=s.tile_size_threshold,
            tile_overlap=s.tile_overlap,
            tile_delay=s.ocr_tile_delay,
            dedup_epsilon=s.dedup_epsilon,
            upscale_factor=s.upscale_factor if s.enable_upscale else None
        )

    def _extractor_for_run(self) -> VocabularyExtractor:
        if self._extractor is not None:
            return self._extractor
        return VocabularyExtractor(self.settings.gemini_api_key, self.settings.gemini_model)
