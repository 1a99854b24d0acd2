# -*- coding: utf-8 -*-
import io
import zipfile
import zlib
from pathlib import PurePosixPath
from typing import List

from toonvocab.config import (
    MAX_ARCHIVE_SIZE,
    MAX_ARCHIVE_ENTRIES,
    MAX_ENTRY_SIZE,
    SUPPORTED_EXTENSIONS
)
from toonvocab.errors import (
    ArchiveTooLarge,
    EntryTooLarge,
    InvalidArchive,
    NoValidImages,
    TooManyEntries
)
from toonvocab.image_processing import sniff_image_type
from toonvocab.log import get_logger

logger = get_logger(__name__)

ZIP_SIGNATURES = (b'PK\x03\x04', b'PK\x05\x06')


def is_zip_buffer(buffer: bytes) -> bool:
    """True when the buffer starts with a zip local header or is an empty zip."""
    return buffer[:4] in ZIP_SIGNATURES


def extract_images_from_zip(
    zip_buffer: bytes,
    max_archive_size: int = MAX_ARCHIVE_SIZE,
    max_entries: int = MAX_ARCHIVE_ENTRIES,
    max_entry_size: int = MAX_ENTRY_SIZE,
) -> List[bytes]:
    """
    Unpacks the image entries of a zip archive in archive-listing order.

    Directories, zero-byte entries, entries outside the extension allowlist and
    entries whose magic bytes are not PNG/JPEG/WEBP are skipped.

    Raises:
        ArchiveTooLarge, TooManyEntries, EntryTooLarge, NoValidImages, InvalidArchive
    """
    if len(zip_buffer) > max_archive_size:
        raise ArchiveTooLarge(len(zip_buffer), max_archive_size)

    logger.debug("zip_extract_started", zip_size=len(zip_buffer))

    try:
        archive = zipfile.ZipFile(io.BytesIO(zip_buffer))
    except zipfile.BadZipFile as e:
        raise InvalidArchive("Invalid zip file format") from e

    with archive:
        entries = [info for info in archive.infolist() if not info.is_dir()]
        if len(entries) > max_entries:
            raise TooManyEntries(len(entries), max_entries)

        images: List[bytes] = []
        for info in entries:
            name = info.filename
            extension = PurePosixPath(name).suffix.lower()

            if extension not in SUPPORTED_EXTENSIONS:
                logger.debug("zip_entry_skipped", entry=name, reason="extension")
                continue

            if info.file_size == 0:
                logger.warning("zip_entry_skipped", entry=name, reason="empty")
                continue

            if info.file_size > max_entry_size:
                raise EntryTooLarge(name, info.file_size, max_entry_size)

            # Declared sizes can lie, so cap the read as well
            try:
                with archive.open(info) as handle:
                    data = handle.read(max_entry_size + 1)
            except (zipfile.BadZipFile, RuntimeError, NotImplementedError, zlib.error) as e:
                raise InvalidArchive(f"Could not read {name} from zip file") from e

            if len(data) > max_entry_size:
                raise EntryTooLarge(name, len(data), max_entry_size)

            if not data:
                logger.warning("zip_entry_skipped", entry=name, reason="empty")
                continue

            if sniff_image_type(data) is None:
                logger.warning("zip_entry_skipped", entry=name, reason="signature")
                continue

            images.append(data)

    if not images:
        raise NoValidImages()

    logger.info("zip_extract_completed", image_count=len(images), entry_count=len(entries))
    return images
