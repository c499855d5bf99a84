"""
Progress reporting for an optimization run.

Events are plain dicts handed to a caller-supplied callback. The tracker
keeps the reported percentage from ever going backwards.
"""

import logging
from collections.abc import Callable
from typing import Any, TypedDict

STAGES = ('init', 'media', 'finalize', 'complete', 'error')

# Share of the bar given to each stage
INIT_END = 10.0
PRUNE_END = 20.0
MEDIA_END = 90.0
FINALIZE_END = 99.0


class ProgressEvent(TypedDict):
    """A single progress update."""
    stage: str  # one of STAGES
    percentage: float
    status: str
    details: dict[str, Any]


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressTracker:
    """Builds ProgressEvents and forwards them to an optional callback."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self.callback = callback
        self.percentage = 0.0
        self.last_event: ProgressEvent | None = None

    def emit(self, stage: str, percentage: float, status: str = '', **details) -> ProgressEvent:
        if stage not in STAGES:
            raise ValueError(f"unknown progress stage: {stage}")
        self.percentage = max(self.percentage, min(100.0, float(percentage)))
        event: ProgressEvent = {
            'stage': stage,
            'percentage': round(self.percentage, 1),
            'status': status,
            'details': details,
        }
        self.last_event = event
        logging.debug(f"[{stage}] {event['percentage']:.1f}% {status}")
        if self.callback is not None:
            self.callback(event)
        return event

    def init(self, percentage: float, status: str, **details) -> ProgressEvent:
        return self.emit('init', min(percentage, PRUNE_END), status, **details)

    def media(self, processed_files: int, total_files: int, file_index: int | None = None,
              batch_files: list[str] | None = None, elapsed: float | None = None) -> ProgressEvent:
        """
        Media-stage event. ``batch_files`` are the base names of the batch just
        finished; with ``elapsed`` seconds the remaining time is extrapolated
        from the average time per file so far.
        """
        fraction = processed_files / total_files if total_files else 1.0
        remaining = None
        if elapsed is not None and processed_files:
            remaining = round(elapsed / processed_files * (total_files - processed_files), 1)
        return self.emit(
            'media',
            PRUNE_END + (MEDIA_END - PRUNE_END) * fraction,
            f"Processed {processed_files}/{total_files} media files",
            file_index=file_index if file_index is not None else processed_files,
            total_files=total_files,
            processed_files=processed_files,
            batch_files=list(batch_files or []),
            estimated_time_remaining=remaining,
        )

    def finalize(self, status: str, percentage: float = FINALIZE_END) -> ProgressEvent:
        return self.emit('finalize', max(MEDIA_END, min(percentage, FINALIZE_END)), status)

    def complete(self, stats: dict) -> ProgressEvent:
        return self.emit('complete', 100.0, 'Optimization complete', stats=stats)

    def error(self, message: str) -> ProgressEvent:
        return self.emit('error', self.percentage, message,
                         message=message, percentage=round(self.percentage, 1))
