"""
Input checks before a run and an openability check after it.
"""

import io
import logging
import zipfile

from lxml import etree
from pptx import Presentation
from pptx.exc import PackageNotFoundError

from .archive import Archive
from .config import (
    CONTENT_TYPES_PATH,
    MAX_FILE_SIZE,
    PACKAGE_RELS_PATH,
    PRESENTATION_PATH,
    SLIDE_PREFIX,
)
from .errors import ValidationError

REQUIRED_PARTS = (PRESENTATION_PATH, CONTENT_TYPES_PATH, PACKAGE_RELS_PATH)


def validate_upload(filename: str, data: bytes, max_size: int = MAX_FILE_SIZE) -> None:
    """
    Reject input that is obviously not a usable .pptx.

    Raises:
        ValidationError: On a wrong extension, empty input or input over ``max_size``
    """
    if not filename or not filename.lower().endswith('.pptx'):
        raise ValidationError(f"not a .pptx file: {filename}")
    if not data:
        raise ValidationError(f"{filename} is empty")
    if len(data) > max_size:
        raise ValidationError(
            f"{filename} is {len(data) / (1024 * 1024):.1f} MB, "
            f"larger than the {max_size / (1024 * 1024):.0f} MB limit"
        )


def validate_structure(archive: Archive) -> None:
    """
    Check that the archive has the parts every presentation needs.

    Raises:
        ValidationError: If a required part or every slide is missing
    """
    missing = [path for path in REQUIRED_PARTS if path not in archive]
    if missing:
        raise ValidationError(f"not a PowerPoint package, missing: {', '.join(missing)}")
    slides = [p for p in archive.iter_paths(prefix=SLIDE_PREFIX, suffix='.xml') if '/_rels/' not in p]
    if not slides:
        raise ValidationError("presentation has no slides")


def verify_presentation(data: bytes) -> int:
    """
    Re-open optimized output with python-pptx.

    Returns:
        Number of slides in the presentation

    Raises:
        ValidationError: If python-pptx cannot open the package
    """
    try:
        prs = Presentation(io.BytesIO(data))
        count = len(prs.slides)
    except (PackageNotFoundError, zipfile.BadZipFile, etree.XMLSyntaxError, KeyError, ValueError, OSError) as e:
        raise ValidationError(f"optimized presentation cannot be opened: {e}") from e
    logging.debug(f"Verified output: {count} slides")
    return count
