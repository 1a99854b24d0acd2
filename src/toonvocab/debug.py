# -*- coding: utf-8 -*-
"""
Debug artifact sinks.

A trace is handed to one pipeline run and records what each stage produced
under a per-job directory. Nothing in the pipeline reads these files back,
and a failed write never changes the outcome of the run.
"""
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from toonvocab.image_processing import sniff_image_type
from toonvocab.log import get_logger

logger = get_logger(__name__)

IMAGE_SUFFIXES = {'png': '.png', 'jpeg': '.jpg', 'webp': '.webp'}


def new_job_id() -> str:
    stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S')
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


class NullTrace:
    """Trace that records nothing. Used when debugging is off."""

    enabled = False
    job_id: Optional[str] = None

    def save_image(self, name: str, buffer: bytes) -> None:
        pass

    def save_json(self, name: str, data: Any) -> None:
        pass

    def save_text(self, name: str, content: str) -> None:
        pass


class DebugTrace(NullTrace):
    """Writes stage outputs to <base_dir>/<job_id>/."""

    enabled = True

    def __init__(self, base_dir: Path, job_id: Optional[str] = None):
        self.base_dir = Path(base_dir)
        self.job_id = job_id or new_job_id()
        self._dir: Optional[Path] = None

    @property
    def path(self) -> Path:
        return self.base_dir / self.job_id

    def _ensure_dir(self) -> Path:
        if self._dir is None:
            self.path.mkdir(parents=True, exist_ok=True)
            self._dir = self.path
            logger.info("debug_trace_created", path=str(self._dir))
        return self._dir

    def _write(self, filename: str, payload: bytes) -> None:
        try:
            target = self._ensure_dir() / filename
            target.write_bytes(payload)
            logger.debug("debug_artifact_saved", path=str(target), size=len(payload))
        except OSError as e:
            logger.error("debug_artifact_failed", artifact=filename, error=str(e))

    def save_image(self, name: str, buffer: bytes) -> None:
        suffix = IMAGE_SUFFIXES.get(sniff_image_type(buffer) or '', '.bin')
        self._write(f"{name}{suffix}", buffer)

    def save_json(self, name: str, data: Any) -> None:
        try:
            content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            logger.error("debug_artifact_failed", artifact=name, error=str(e))
            return
        self._write(f"{name}.json", content.encode('utf-8'))

    def save_text(self, name: str, content: str) -> None:
        self._write(f"{name}.txt", content.encode('utf-8'))
