"""
pptx-slim: shrink PowerPoint files.

Removes hidden slides and unreachable layouts, masters and media, and
recompresses embedded images, keeping the package openable.
"""

__version__ = "1.0.0"

from .archive import Archive
from .config import FormatPolicy, OptimizeOptions
from .errors import (
    ArchiveError,
    CodecError,
    ParseError,
    PptxSlimError,
    SafetyAbortWarning,
    ValidationError,
)
from .hidden import remove_hidden_slides
from .optimizer import analyze_pptx, optimize_file, optimize_pptx
from .pruning import prune_unused_resources

__all__ = [
    'Archive',
    'ArchiveError',
    'CodecError',
    'FormatPolicy',
    'OptimizeOptions',
    'ParseError',
    'PptxSlimError',
    'SafetyAbortWarning',
    'ValidationError',
    'analyze_pptx',
    'optimize_file',
    'optimize_pptx',
    'prune_unused_resources',
    'remove_hidden_slides',
]
