# -*- coding: utf-8 -*-
import base64
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from toonvocab.config import (
    DEDUP_EPSILON,
    OCR_ENDPOINT,
    OCR_ENGINE,
    OCR_LANGUAGE,
    OCR_SCALE,
    OCR_TILE_DELAY_SECONDS,
    OCR_TIMEOUT_SECONDS,
    TILE_OVERLAP,
    TILE_SIZE_THRESHOLD
)
from toonvocab.debug import NullTrace
from toonvocab.errors import ConfigurationError, OcrProviderError
from toonvocab.image_processing import create_adaptive_tiles, detect_image_format, upscale_image
from toonvocab.log import get_logger
from toonvocab.models import BoundingBox, OcrFragment
from toonvocab.reconciler import adjust_coordinates, filter_duplicates

logger = get_logger(__name__)

OCR_SUCCESS = 1


class OcrCallResult:
    """
    Outcome of one OCR.space request.

    The provider answers HTTP 200 for bad keys, exhausted quota and failed
    recognition alike, signalling all of them through OCRExitCode. That is
    surfaced here as data (ok=False) instead of an exception.
    """

    def __init__(self, ok: bool, data: Any, exit_code: Optional[int] = None,
                 messages: Optional[List[str]] = None):
        self.ok = ok
        self.data = data
        self.exit_code = exit_code
        self.messages = messages or []

    @property
    def reason(self) -> str:
        return "; ".join(self.messages) or "Unknown error"

    @classmethod
    def from_payload(cls, payload: Any) -> 'OcrCallResult':
        if not isinstance(payload, dict):
            return cls(False, payload, None, ["Malformed OCR response"])

        raw_code = payload.get('OCRExitCode')
        try:
            exit_code = int(raw_code) if raw_code is not None else None
        except (TypeError, ValueError):
            exit_code = None

        if exit_code == OCR_SUCCESS:
            return cls(True, payload, exit_code)
        return cls(False, payload, exit_code, _error_messages(payload))


def _error_messages(payload: Dict) -> List[str]:
    messages = []
    for key in ('ErrorMessage', 'ErrorDetails'):
        value = payload.get(key)
        if not value:
            continue
        if isinstance(value, (list, tuple)):
            messages.extend(str(v) for v in value if v)
        else:
            messages.append(str(value))
    return messages


def _dicts(value: Any) -> List[Dict]:
    return [entry for entry in value or [] if isinstance(entry, dict)]


def parse_ocr_response(payload: Dict) -> List[OcrFragment]:
    """
    Flattens ParsedResults[].TextOverlay.Lines[].Words[] into fragments.

    Missing levels are treated as empty; blank words are dropped.
    """
    fragments: List[OcrFragment] = []
    for parsed in _dicts(payload.get('ParsedResults')):
        overlay = parsed.get('TextOverlay')
        if not isinstance(overlay, dict):
            continue
        for line in _dicts(overlay.get('Lines')):
            for word in _dicts(line.get('Words')):
                text = str(word.get('WordText') or '').strip()
                if not text:
                    continue
                fragments.append(OcrFragment(text, BoundingBox(
                    float(word.get('Left') or 0),
                    float(word.get('Top') or 0),
                    float(word.get('Width') or 0),
                    float(word.get('Height') or 0)
                )))

    logger.debug("ocr_response_parsed", fragment_count=len(fragments))
    return fragments


class OcrSpaceClient:
    """Thin client over the OCR.space parse endpoint. One call, one request."""

    def __init__(
        self,
        api_key: Optional[str],
        language: str = OCR_LANGUAGE,
        ocr_engine: int = OCR_ENGINE,
        scale: bool = OCR_SCALE,
        is_overlay_required: bool = True,
        timeout: float = OCR_TIMEOUT_SECONDS,
        endpoint: str = OCR_ENDPOINT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("OCR_API_KEY not configured")
        if ocr_engine not in (1, 2):
            raise ValueError(f"ocr_engine must be 1 or 2, got {ocr_engine}")

        self.api_key = api_key
        self.language = language
        self.ocr_engine = ocr_engine
        self.scale = scale
        self.is_overlay_required = is_overlay_required
        self.endpoint = endpoint
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def __enter__(self) -> 'OcrSpaceClient':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def build_form(self, image: bytes) -> Dict[str, str]:
        mime_type, filetype = detect_image_format(image)
        data_uri = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
        return {
            'base64Image': data_uri,
            'language': self.language,
            'isOverlayRequired': str(self.is_overlay_required).lower(),
            'detectOrientation': 'false',
            'isCreateSearchablePdf': 'false',
            'scale': str(self.scale).lower(),
            'isTable': 'false',
            'OCREngine': str(self.ocr_engine),
            'filetype': filetype,
        }

    def call(self, image: bytes) -> OcrCallResult:
        """
        Sends one image. httpx errors (timeouts, non-2xx) propagate as-is;
        a provider-level failure comes back as an OcrCallResult with ok=False.
        """
        form = self.build_form(image)
        logger.debug(
            "ocr_request",
            buffer_size=len(image),
            filetype=form['filetype'],
            engine=self.ocr_engine,
            language=self.language
        )
        response = self._client.post(self.endpoint, data=form, headers={'apikey': self.api_key})
        response.raise_for_status()

        result = OcrCallResult.from_payload(response.json())
        if result.ok:
            logger.debug("ocr_response_ok", exit_code=result.exit_code)
        else:
            logger.warning("ocr_response_failed", exit_code=result.exit_code, reason=result.reason)
        return result


class TiledOcrService:
    """
    Runs OCR over an image of any height.

    Oversized images are tiled and the tiles are sent one at a time with a
    pause between requests. A failing tile aborts the whole run.
    """

    def __init__(
        self,
        client: OcrSpaceClient,
        tile_size_threshold: int = TILE_SIZE_THRESHOLD,
        tile_overlap: float = TILE_OVERLAP,
        tile_delay: float = OCR_TILE_DELAY_SECONDS,
        dedup_epsilon: float = DEDUP_EPSILON,
        upscale_factor: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.tile_size_threshold = tile_size_threshold
        self.tile_overlap = tile_overlap
        self.tile_delay = tile_delay
        self.dedup_epsilon = dedup_epsilon
        self.upscale_factor = upscale_factor
        self._sleep = sleep

    def recognize(self, image: bytes, trace=None) -> List[OcrFragment]:
        """Returns deduplicated fragments in the coordinate space of `image`."""
        trace = trace or NullTrace()

        if self.upscale_factor and self.upscale_factor != 1.0:
            image = upscale_image(image, self.upscale_factor)
            trace.save_image('upscaled-image', image)

        tiles = create_adaptive_tiles(image, self.tile_size_threshold, self.tile_overlap)
        trace.save_json('tiles-metadata', [tile.to_dict() for tile in tiles])

        image_width = tiles[0].width
        image_height = tiles[-1].end_y
        logger.info("ocr_started", tile_count=len(tiles), image_height=image_height)

        collected: List[OcrFragment] = []
        for tile in tiles:
            if tile.index > 0 and self.tile_delay > 0:
                self._sleep(self.tile_delay)

            trace.save_image(f'tile-{tile.index}', tile.buffer)
            result = self.client.call(tile.buffer)
            trace.save_json(f'tile-{tile.index}-ocr-raw', result.data)

            if not result.ok:
                raise OcrProviderError(result.exit_code, result.messages, tile.index)

            parsed = parse_ocr_response(result.data)
            trace.save_json(f'tile-{tile.index}-ocr-parsed', [f.to_dict() for f in parsed])

            adjusted = adjust_coordinates(parsed, tile, image_height, image_width)
            trace.save_json(f'tile-{tile.index}-ocr-adjusted', [f.to_dict() for f in adjusted])

            if not parsed:
                logger.warning("tile_ocr_empty", tile_index=tile.index, start_y=tile.start_y)
            logger.info("tile_ocr_completed", tile_index=tile.index, fragment_count=len(parsed))
            collected.extend(adjusted)

        fragments = filter_duplicates(collected, tiles, self.dedup_epsilon)

        if self.upscale_factor and self.upscale_factor != 1.0:
            inverse = 1.0 / self.upscale_factor
            fragments = [OcrFragment(f.text, f.bbox.scaled(inverse), f.tile_index) for f in fragments]

        trace.save_json('ocr-combined', [f.to_dict() for f in fragments])
        logger.info("ocr_completed", fragment_count=len(fragments), duplicates_removed=len(collected) - len(fragments))
        return fragments
