"""
LRU cache for image recompression results, bounded by total bytes.
"""

import hashlib
import threading
from collections import OrderedDict

SAMPLE_SIZE = 64 * 1024  # bytes hashed from each end of the payload


def fingerprint(data: bytes) -> str:
    """
    Content fingerprint: blake2b over the length, the head and the tail.

    Large media is only sampled, which keeps hashing cheap for videos and
    multi-megabyte photos.
    """
    digest = hashlib.blake2b(digest_size=20)
    digest.update(len(data).to_bytes(8, 'little'))
    if len(data) <= 2 * SAMPLE_SIZE:
        digest.update(data)
    else:
        digest.update(data[:SAMPLE_SIZE])
        digest.update(data[-SAMPLE_SIZE:])
    return digest.hexdigest()


class ImageCache:
    """
    Maps (fingerprint, quality, max_dimension, policy) to a compressed result.

    Values are (bytes, format) pairs; the stored payload size counts toward
    ``max_bytes``. Safe to share between worker threads.
    """

    def __init__(self, max_bytes: int = 64 * 1024 * 1024) -> None:
        if max_bytes < 0:
            raise ValueError(f"max_bytes must not be negative, got {max_bytes}")
        self.max_bytes = max_bytes
        self.current_bytes = 0
        self.hits = 0
        self.misses = 0
        self._entries: OrderedDict[tuple, tuple[bytes, str]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key(data: bytes, quality: int, max_dimension: int, policy: str) -> tuple:
        return (fingerprint(data), quality, max_dimension, str(policy))

    def get(self, key: tuple) -> tuple[bytes, str] | None:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: tuple, data: bytes, fmt: str) -> bool:
        """Store a result. Returns False when it is larger than the whole budget."""
        size = len(data)
        if size > self.max_bytes:
            return False
        with self._lock:
            old = self._entries.pop(key, None)
            if old is not None:
                self.current_bytes -= len(old[0])
            self._entries[key] = (data, fmt)
            self.current_bytes += size
            while self.current_bytes > self.max_bytes:
                _, (evicted, _) = self._entries.popitem(last=False)
                self.current_bytes -= len(evicted)
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.current_bytes = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
