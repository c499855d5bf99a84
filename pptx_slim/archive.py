"""
In-memory model of a .pptx ZIP archive.

An Archive maps normalized POSIX paths to payload bytes. Mutations made
during an optimization run go through an ArchiveTransaction, which works on
a snapshot and only replaces the base archive's entries on commit.
"""

import io
import logging
import posixpath
import re
import zipfile
from collections.abc import Iterator

from .config import CONTENT_TYPES_PATH, ZIP_COMPRESSION_LEVEL
from .errors import ArchiveError


def normalize_path(path: str) -> str:
    """Normalize an archive member name: forward slashes, no leading/trailing slash."""
    path = path.replace('\\', '/').strip('/')
    if not path:
        return ''
    normalized = posixpath.normpath(path)
    return '' if normalized == '.' else normalized


class Archive:
    """Mutable path -> bytes mapping backing one optimization run."""

    def __init__(self, entries: dict[str, bytes] | None = None) -> None:
        self._entries: dict[str, bytes] = {}
        self._folded: dict[str, str] = {}  # casefolded path -> stored path
        for path, data in (entries or {}).items():
            self.set(path, data)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Archive':
        """
        Read a ZIP byte buffer into an Archive.

        Args:
            data: Raw ZIP bytes

        Returns:
            Archive holding every file member (directory entries are skipped)

        Raises:
            ArchiveError: If the buffer is not a readable ZIP
        """
        archive = cls()
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    archive.set(info.filename, zf.read(info))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, OSError) as e:
            raise ArchiveError(f"failed to read archive: {e}") from e
        except MemoryError as e:
            raise ArchiveError("out of memory while reading archive") from e

        logging.debug(f"Loaded archive with {len(archive)} entries")
        return archive

    def to_bytes(self, compresslevel: int = ZIP_COMPRESSION_LEVEL) -> bytes:
        """
        Serialize to a DEFLATE-compressed ZIP. [Content_Types].xml is written first.

        Raises:
            ArchiveError: If the ZIP cannot be produced
        """
        order = sorted(self._entries, key=lambda p: p != CONTENT_TYPES_PATH)
        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED, compresslevel=compresslevel) as zf:
                for path in order:
                    zf.writestr(path, self._entries[path])
        except (OSError, ValueError, zipfile.LargeZipFile) as e:
            raise ArchiveError(f"failed to write archive: {e}") from e
        except MemoryError as e:
            raise ArchiveError("out of memory while writing archive") from e
        return buffer.getvalue()

    def get(self, path: str) -> bytes | None:
        return self._entries.get(self.canonical(path))

    def set(self, path: str, data: bytes) -> None:
        key = normalize_path(path)
        if not key:
            raise ValueError(f"invalid archive path: {path!r}")
        self._entries[key] = bytes(data)
        self._folded.setdefault(key.casefold(), key)

    def remove(self, path: str) -> bool:
        """Delete an entry. Returns False when it did not exist."""
        key = self.canonical(path)
        if self._entries.pop(key, None) is None:
            return False
        folded = key.casefold()
        if self._folded.get(folded) == key:
            del self._folded[folded]
            for other in self._entries:
                if other.casefold() == folded:
                    self._folded[folded] = other
                    break
        return True

    def canonical(self, path: str) -> str:
        """
        Stored spelling of ``path``. OPC part names are case-insensitive, so a
        reference that differs from the stored name only by case still resolves.
        """
        key = normalize_path(path)
        if key in self._entries:
            return key
        return self._folded.get(key.casefold(), key)

    def size_of(self, path: str) -> int:
        data = self.get(path)
        return len(data) if data is not None else 0

    def iter_paths(
        self,
        prefix: str | None = None,
        suffix: str | None = None,
        pattern: str | re.Pattern | None = None,
    ) -> Iterator[str]:
        """
        Lazily yield paths in insertion order, filtered by prefix, suffix and/or regex.

        The underlying table must not be mutated while this iterator is live;
        use find() to get a materialized list when deleting.
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        for path in self._entries:
            if prefix is not None and not path.startswith(prefix):
                continue
            if suffix is not None and not path.endswith(suffix):
                continue
            if regex is not None and not regex.search(path):
                continue
            yield path

    def find(self, prefix=None, suffix=None, pattern=None) -> list[str]:
        return list(self.iter_paths(prefix=prefix, suffix=suffix, pattern=pattern))

    def snapshot(self) -> 'Archive':
        """Cheap copy: payloads are immutable bytes, only the table is copied."""
        copy = Archive()
        copy._entries = dict(self._entries)
        copy._folded = dict(self._folded)
        return copy

    def transaction(self) -> 'ArchiveTransaction':
        return ArchiveTransaction(self)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.canonical(path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))


class ArchiveTransaction:
    """
    Copy-on-write scope around one optimization run.

    Work on ``txn.archive``; ``commit()`` publishes it to the base archive and
    ``discard()`` throws it away. As a context manager the transaction commits
    on normal exit and discards if an exception (or cancellation) escapes.
    """

    def __init__(self, base: Archive) -> None:
        self._base = base
        self.archive = base.snapshot()
        self.closed = False

    def commit(self) -> None:
        self._ensure_open()
        self._base._entries = self.archive._entries
        self._base._folded = self.archive._folded
        self.closed = True

    def discard(self) -> None:
        self._ensure_open()
        self.archive = self._base.snapshot()
        self.closed = True

    def _ensure_open(self) -> None:
        if self.closed:
            raise RuntimeError("transaction already committed or discarded")

    def __enter__(self) -> 'ArchiveTransaction':
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self.closed:
            if exc_type is None:
                self.commit()
            else:
                logging.debug(f"Discarding archive changes after {exc_type.__name__}")
                self.discard()
        return False
