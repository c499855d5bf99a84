"""
Tests for progress events.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from pptx_slim.progress import ProgressTracker


def test_progress_never_decreases():
    events = []
    tracker = ProgressTracker(events.append)
    tracker.init(5, 'start')
    tracker.media(3, 4)
    tracker.init(10, 'late init event')
    tracker.finalize('writing')
    tracker.complete({'original_size': 1})

    percentages = [e['percentage'] for e in events]
    assert percentages == sorted(percentages)
    assert events[-1]['stage'] == 'complete'
    assert events[-1]['percentage'] == 100.0
    assert events[1]['details'] == {
        'file_index': 3,
        'total_files': 4,
        'processed_files': 3,
        'batch_files': [],
        'estimated_time_remaining': None,
    }


def test_media_event_carries_batch_names_and_eta():
    tracker = ProgressTracker()
    event = tracker.media(2, 6, batch_files=['image1.png', 'image2.jpeg'], elapsed=3.0)

    assert event['details']['batch_files'] == ['image1.png', 'image2.jpeg']
    assert event['details']['estimated_time_remaining'] == 6.0   # 1.5s per file, 4 left
    assert event['details']['file_index'] == 2


def test_progress_error_event_carries_last_percentage():
    events = []
    tracker = ProgressTracker(events.append)
    tracker.media(1, 2)
    event = tracker.error('archive is corrupt')

    assert event['stage'] == 'error'
    assert event['details']['message'] == 'archive is corrupt'
    assert event['details']['percentage'] == events[0]['percentage']


def test_progress_rejects_unknown_stage():
    with pytest.raises(ValueError):
        ProgressTracker().emit('upload', 10)
