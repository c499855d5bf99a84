"""
Exception hierarchy for pptx-slim.

Failures local to one part (ParseError, CodecError) are caught at that part's
boundary and logged. ValidationError and ArchiveError end the run.
"""


class PptxSlimError(Exception):
    """Base class for all pptx-slim errors."""


class ValidationError(PptxSlimError, ValueError):
    """Input is not an acceptable .pptx (wrong extension, oversized, missing parts)."""


class ParseError(PptxSlimError):
    """An XML or relationship part could not be parsed."""

    def __init__(self, path: str | None, original: Exception):
        self.path = path
        self.original = original
        where = path or "<xml>"
        super().__init__(f"failed to parse {where}: {original}")


class CodecError(PptxSlimError):
    """An image part could not be decoded or re-encoded."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ArchiveError(PptxSlimError, IOError):
    """The ZIP container could not be read or written."""


class SafetyAbortWarning(UserWarning):
    """A bulk deletion looked suspicious and was skipped."""
