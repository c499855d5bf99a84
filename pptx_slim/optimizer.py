"""
Optimization pipeline.

optimize_pptx() validates the input, loads the archive and runs the passes
inside one archive transaction: hidden slides, then unused resources, then
image recompression. Any exception discards the transaction so the loaded
archive is never left half-modified.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import TypedDict

from .archive import Archive
from .config import OptimizeOptions
from .hidden import remove_hidden_slides
from .images import compress_media
from .progress import INIT_END, PRUNE_END, ProgressCallback, ProgressTracker
from .pruning import prune_unused_resources
from .validation import validate_structure, validate_upload


class OptimizationStats(TypedDict):
    """Summary of one run."""
    filename: str
    original_size: int
    compressed_size: int
    bytes_saved: int
    percent_saved: float
    media_files_found: int
    media_compressed: int
    media_failed: int
    media_bytes_saved: int
    hidden_slides_removed: int
    layouts_removed: int
    masters_removed: int
    media_removed: int
    unused_media_bytes: int
    renamed_media: dict[str, str]
    warnings: list[str]
    elapsed_seconds: float
    dry_run: bool


def _empty_stats(filename: str, original_size: int, dry_run: bool) -> OptimizationStats:
    return {
        'filename': filename,
        'original_size': original_size,
        'compressed_size': original_size,
        'bytes_saved': 0,
        'percent_saved': 0.0,
        'media_files_found': 0,
        'media_compressed': 0,
        'media_failed': 0,
        'media_bytes_saved': 0,
        'hidden_slides_removed': 0,
        'layouts_removed': 0,
        'masters_removed': 0,
        'media_removed': 0,
        'unused_media_bytes': 0,
        'renamed_media': {},
        'warnings': [],
        'elapsed_seconds': 0.0,
        'dry_run': dry_run,
    }


async def optimize_pptx(
    data: bytes,
    filename: str = 'presentation.pptx',
    options: OptimizeOptions | None = None,
    on_progress: ProgressCallback | None = None,
    dry_run: bool = False,
) -> tuple[bytes, OptimizationStats]:
    """
    Optimize a .pptx held in memory.

    Args:
        data: Input .pptx bytes
        filename: Name used for validation and reporting
        options: Run settings (defaults to the balanced preset)
        on_progress: Callback receiving ProgressEvents
        dry_run: Compute everything but discard the changes

    Returns:
        Tuple of (output bytes, stats). On a dry run the output bytes are what
        would have been written.

    Raises:
        ValidationError: If the input is rejected
        ArchiveError: If the ZIP cannot be read or written
    """
    options = options or OptimizeOptions()
    tracker = ProgressTracker(on_progress)
    started = time.perf_counter()
    stats = _empty_stats(filename, len(data) if data else 0, dry_run)

    try:
        tracker.init(0, f"Validating {filename}")
        validate_upload(filename, data, options.max_file_size)
        archive = await asyncio.to_thread(Archive.from_bytes, data)
        validate_structure(archive)
        tracker.init(5, f"Loaded {len(archive)} parts")

        with archive.transaction() as txn:
            work = txn.archive

            if options.remove_hidden_slides:
                hidden = remove_hidden_slides(work)
                stats['hidden_slides_removed'] = len(hidden['removed_slides'])
                stats['warnings'].extend(hidden['warnings'])
            tracker.init(INIT_END, 'Hidden slides processed')

            if options.remove_unused:
                pruned = prune_unused_resources(work)
                stats['layouts_removed'] = len(pruned['removed_layouts'])
                stats['masters_removed'] = len(pruned['removed_masters'])
                stats['media_removed'] = len(pruned['removed_media'])
                stats['unused_media_bytes'] = pruned['media_bytes_removed']
                stats['warnings'].extend(pruned['warnings'])
            tracker.init(PRUNE_END, 'Unused resources removed')

            if options.compress_images:
                media = await compress_media(work, options, tracker)
                stats['media_files_found'] = media['media_files_found']
                stats['media_compressed'] = media['compressed']
                stats['media_failed'] = media['failed']
                stats['media_bytes_saved'] = media['bytes_saved']
                stats['renamed_media'] = media['renamed']

            tracker.finalize('Writing optimized archive')
            output = await asyncio.to_thread(work.to_bytes)
            if dry_run:
                txn.discard()
    except Exception as e:
        tracker.error(str(e))
        raise

    stats['compressed_size'] = len(output)
    stats['bytes_saved'] = stats['original_size'] - len(output)
    if stats['original_size']:
        stats['percent_saved'] = round(stats['bytes_saved'] / stats['original_size'] * 100, 1)
    stats['elapsed_seconds'] = round(time.perf_counter() - started, 3)

    logging.info(f"{filename}: {stats['original_size']} -> {stats['compressed_size']} bytes "
                 f"({stats['percent_saved']}% saved)")
    tracker.complete(dict(stats))
    return output, stats


def default_output_path(input_path: str | Path) -> Path:
    """``deck.pptx`` -> ``deck_compressed.pptx`` next to the input."""
    input_path = Path(input_path)
    return input_path.with_name(f"{input_path.stem}_compressed.pptx")


def optimize_file(
    input_path: str | Path,
    output_path: str | Path | None = None,
    options: OptimizeOptions | None = None,
    on_progress: ProgressCallback | None = None,
    dry_run: bool = False,
) -> OptimizationStats:
    """
    Optimize a .pptx on disk. Nothing is written on a dry run.

    Raises:
        FileNotFoundError: If the input does not exist
        ValidationError, ArchiveError: As for optimize_pptx()
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"File not found: {input_path}")

    data = input_path.read_bytes()
    output, stats = asyncio.run(optimize_pptx(data, input_path.name, options, on_progress, dry_run))

    if not dry_run:
        output_path = Path(output_path) if output_path else default_output_path(input_path)
        output_path.write_bytes(output)
        logging.info(f"Wrote {output_path}")
    return stats


def analyze_pptx(input_path: str | Path, options: OptimizeOptions | None = None) -> OptimizationStats:
    """Report what optimize_file() would achieve without writing anything."""
    return optimize_file(input_path, options=options, dry_run=True)
