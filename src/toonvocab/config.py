# -*- coding: utf-8 -*-
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Archive Limits
MAX_ARCHIVE_SIZE = 100 * 1024 * 1024
MAX_ARCHIVE_ENTRIES = 500
MAX_ENTRY_SIZE = 10 * 1024 * 1024
SUPPORTED_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.webp')

# Tiling
TILE_SIZE_THRESHOLD = 1 * 1024 * 1024  # OCR.space free tier rejects uploads over 1MB
TILE_OVERLAP = 0.10  # Fraction of tile height shared with the next tile
TILE_JPEG_QUALITY = 85
DEDUP_EPSILON = 5  # Pixels

# Dialogue Grouping
GROUPING_THRESHOLD = 100  # Pixels between a fragment and the running line

# OCR Provider
OCR_ENDPOINT = "https://api.ocr.space/parse/image"
OCR_LANGUAGE = "kor"
OCR_ENGINE = 2
OCR_SCALE = False  # Scaling can push large tiles past the 5000px provider limit
OCR_TILE_DELAY_SECONDS = 1.0
OCR_TIMEOUT_SECONDS = 60.0

# Upscaling
UPSCALE_FACTOR = 2.0

# Generative Model
GEMINI_MODEL = "gemini-2.5-flash"

# Storage
DATABASE_URL = "sqlite:///toonvocab.db"

# Anki Deck Configuration
DECK_NAME = "Webtoon Vocabulary"
MODEL_NAME = "Webtoon Term Model"
MODEL_ID = 1607392319
DECK_ID = 2059400110

FIELDS = [
    {'name': 'Term'},
    {'name': 'Definition'},
    {'name': 'Kind'},
    {'name': 'ChapterExample'},
    {'name': 'GlobalExample'}
]

CSS = """
* { box-sizing: border-box; margin: 0; padding: 0; }

.card {
    font-family: "Noto Sans KR", "Apple SD Gothic Neo", "Malgun Gothic", sans-serif;
    background: #FAFAF7;
    color: #1a1a1a;
    display: flex;
    justify-content: center;
    align-items: center;
    min-height: 100vh;
    padding: 16px;
}

.card-inner {
    background: #ffffff;
    border: 1px solid #e8e4db;
    border-radius: 16px;
    padding: 32px 28px;
    max-width: 480px;
    width: 100%;
    box-shadow: 0 2px 12px rgba(0,0,0,0.07);
    text-align: center;
}

.term-display {
    font-size: 56px;
    line-height: 1.2;
    margin-bottom: 8px;
}

.kind {
    font-size: 11px;
    color: #999;
    letter-spacing: 1.5px;
    text-transform: uppercase;
}

.divider {
    border: none;
    border-top: 1px solid #e8e4db;
    margin: 20px 0;
}

.definition {
    font-size: 22px;
    font-weight: 600;
    margin-bottom: 18px;
}

.example-box {
    background: #f9f7f2;
    border-left: 3px solid #c8b97a;
    border-radius: 0 8px 8px 0;
    padding: 10px 14px;
    margin-bottom: 10px;
    text-align: left;
    font-size: 15px;
    color: #444;
    line-height: 1.6;
}

.example-label {
    font-size: 10px;
    font-weight: 700;
    letter-spacing: 1.5px;
    text-transform: uppercase;
    color: #c8b97a;
    margin-bottom: 4px;
}
"""

TEMPLATES = [
    {
        'name': 'Recognition card',
        'qfmt': """
<div class="card-inner">
    <div class="term-display">{{Term}}</div>
    <div class="kind">{{Kind}}</div>
</div>
""",
        'afmt': """
<div class="card-inner">
    <div class="term-display">{{Term}}</div>
    <div class="kind">{{Kind}}</div>
    <hr class="divider">
    <div class="definition">{{Definition}}</div>

    {{#ChapterExample}}
    <div class="example-box">
        <div class="example-label">In this chapter</div>
        {{ChapterExample}}
    </div>
    {{/ChapterExample}}

    {{#GlobalExample}}
    <div class="example-box">
        <div class="example-label">Example</div>
        {{GlobalExample}}
    </div>
    {{/GlobalExample}}
</div>
"""
    }
]


def _get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _get_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be an integer") from exc


def _get_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be a number") from exc


def _get_bool(key: str, default: bool) -> bool:
    value = _get_env(key)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(f"Environment variable {key} must be a boolean")


class Settings:
    """Runtime settings for one pipeline deployment."""

    def __init__(
        self,
        ocr_api_key: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        gemini_model: str = GEMINI_MODEL,
        database_url: str = DATABASE_URL,
        ocr_language: str = OCR_LANGUAGE,
        ocr_engine: int = OCR_ENGINE,
        ocr_scale: bool = OCR_SCALE,
        ocr_endpoint: str = OCR_ENDPOINT,
        ocr_tile_delay: float = OCR_TILE_DELAY_SECONDS,
        ocr_timeout: float = OCR_TIMEOUT_SECONDS,
        tile_size_threshold: int = TILE_SIZE_THRESHOLD,
        tile_overlap: float = TILE_OVERLAP,
        dedup_epsilon: float = DEDUP_EPSILON,
        grouping_threshold: float = GROUPING_THRESHOLD,
        enable_upscale: bool = False,
        upscale_factor: float = UPSCALE_FACTOR,
        debug_dir: Optional[Path] = None,
        log_level: str = "INFO",
    ):
        if ocr_engine not in (1, 2):
            raise ValueError(f"ocr_engine must be 1 or 2, got {ocr_engine}")
        if not 0 <= tile_overlap < 1:
            raise ValueError(f"tile_overlap must be in [0, 1), got {tile_overlap}")
        if tile_size_threshold <= 0:
            raise ValueError("tile_size_threshold must be positive")

        self.ocr_api_key = ocr_api_key
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.database_url = database_url
        self.ocr_language = ocr_language
        self.ocr_engine = ocr_engine
        self.ocr_scale = ocr_scale
        self.ocr_endpoint = ocr_endpoint
        self.ocr_tile_delay = ocr_tile_delay
        self.ocr_timeout = ocr_timeout
        self.tile_size_threshold = tile_size_threshold
        self.tile_overlap = tile_overlap
        self.dedup_epsilon = dedup_epsilon
        self.grouping_threshold = grouping_threshold
        self.enable_upscale = enable_upscale
        self.upscale_factor = upscale_factor
        self.debug_dir = debug_dir
        self.log_level = log_level


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Builds Settings from the environment, reading a .env file first if present."""
    load_dotenv(env_file)

    debug_dir = _get_env("PIPELINE_DEBUG_DIR")

    return Settings(
        ocr_api_key=_get_env("OCR_API_KEY"),
        gemini_api_key=_get_env("GEMINI_API_KEY"),
        gemini_model=_get_env("GEMINI_MODEL", GEMINI_MODEL),
        database_url=_get_env("DATABASE_URL", DATABASE_URL),
        ocr_language=_get_env("OCR_LANGUAGE", OCR_LANGUAGE),
        ocr_engine=_get_int("OCR_ENGINE", OCR_ENGINE),
        ocr_scale=_get_bool("OCR_SCALE", OCR_SCALE),
        ocr_endpoint=_get_env("OCR_ENDPOINT", OCR_ENDPOINT),
        ocr_tile_delay=max(0.0, _get_float("OCR_TILE_DELAY_SECONDS", OCR_TILE_DELAY_SECONDS)),
        ocr_timeout=_get_float("OCR_TIMEOUT_SECONDS", OCR_TIMEOUT_SECONDS),
        tile_size_threshold=_get_int("TILE_SIZE_THRESHOLD", TILE_SIZE_THRESHOLD),
        tile_overlap=_get_float("TILE_OVERLAP", TILE_OVERLAP),
        dedup_epsilon=_get_float("DEDUP_EPSILON", DEDUP_EPSILON),
        grouping_threshold=_get_float("GROUPING_THRESHOLD", GROUPING_THRESHOLD),
        enable_upscale=_get_bool("ENABLE_UPSCALE", False),
        upscale_factor=_get_float("UPSCALE_FACTOR", UPSCALE_FACTOR),
        debug_dir=Path(debug_dir) if debug_dir else None,
        log_level=_get_env("LOG_LEVEL", "INFO").upper(),
    )
