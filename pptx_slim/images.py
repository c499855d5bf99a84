"""
Image recompression.

Each raster part under ppt/media/ is decoded with Pillow, classified as an
icon, diagram or photo, downscaled to the dimension bound and re-encoded into
a few candidate formats. The smallest candidate replaces the original only
when it saves at least 5%.
"""

import asyncio
import io
import logging
import posixpath
import time
from enum import Enum
from typing import TypedDict

from PIL import Image

from . import rels, xmlpart
from .archive import Archive
from .config import (
    CONTENT_TYPES_PATH,
    DIAGRAM_ICON_QUALITY_FACTOR,
    MEDIA_PREFIX,
    MIN_COMPRESSION_SIZE_BYTES,
    MIN_SAVING_RATIO,
    SUPPORTED_IMAGE_EXTENSIONS,
    FormatPolicy,
    OptimizeOptions,
)
from .errors import CodecError, ParseError
from .progress import ProgressTracker
from .pruning import prune_content_types


ICON_MAX_SIDE = 128
DIAGRAM_MAX_COLORS = 50
COLOR_SAMPLE_PIXELS = 1000

# Magic bytes -> format name
SIGNATURES = [
    (b'\x89PNG\r\n\x1a\n', 'png'),
    (b'\xff\xd8\xff', 'jpeg'),
    (b'GIF87a', 'gif'),
    (b'GIF89a', 'gif'),
    (b'BM', 'bmp'),
    (b'II*\x00', 'tiff'),
    (b'MM\x00*', 'tiff'),
]

EXTENSION_FORMATS = {'png': 'png', 'jpg': 'jpeg', 'jpeg': 'jpeg', 'gif': 'gif', 'bmp': 'bmp', 'webp': 'webp'}
FORMAT_EXTENSIONS = {'png': 'png', 'jpeg': 'jpg', 'webp': 'webp'}
CONTENT_TYPES = {'png': 'image/png', 'jpeg': 'image/jpeg', 'webp': 'image/webp'}
PIL_FORMATS = {'png': 'PNG', 'jpeg': 'JPEG', 'webp': 'WEBP'}


class ImageType(str, Enum):
    ICON = 'icon'
    DIAGRAM = 'diagram'
    PHOTO = 'photo'


class CompressionResult(TypedDict):
    """Outcome for one media part."""
    path: str
    status: str  # "compressed", "unchanged", "skipped", "failed"
    original_size: int
    compressed_size: int
    format: str | None  # format of the new payload
    image_type: str | None
    data: bytes | None  # new payload, only when compressed
    reason: str | None


class MediaReport(TypedDict):
    """Totals over all media parts of one run."""
    media_files_found: int
    compressed: int
    unchanged: int
    skipped: int
    failed: int
    original_bytes: int
    compressed_bytes: int
    bytes_saved: int
    renamed: dict[str, str]
    failed_files: list[str]


def detect_format(data: bytes) -> str:
    """Container format from magic bytes; 'unknown' when unrecognized."""
    for signature, fmt in SIGNATURES:
        if data.startswith(signature):
            return fmt
    if len(data) >= 12 and data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'webp'
    return 'unknown'


def classify_image(image: Image.Image) -> ImageType:
    """
    ICON when both sides are under 128px. Otherwise DIAGRAM when an even
    sample of up to 1000 pixels has fewer than 50 distinct colors, else PHOTO.
    """
    width, height = image.size
    if width < ICON_MAX_SIDE and height < ICON_MAX_SIDE:
        return ImageType.ICON

    rgb = image if image.mode == 'RGB' else image.convert('RGB')
    total = width * height
    step = max(1, total // COLOR_SAMPLE_PIXELS)
    colors = set()
    for index in range(0, total, step):
        colors.add(rgb.getpixel((index % width, index // width)))
        if len(colors) >= DIAGRAM_MAX_COLORS:
            return ImageType.PHOTO
    return ImageType.DIAGRAM


def target_quality(quality: int, image_type: ImageType) -> int:
    if image_type in (ImageType.DIAGRAM, ImageType.ICON):
        return max(1, round(quality * DIAGRAM_ICON_QUALITY_FACTOR))
    return quality


def target_dimensions(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale the longer side down to ``max_dimension``, keeping the aspect ratio."""
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width >= height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def has_alpha(image: Image.Image) -> bool:
    """True when at least one pixel is not fully opaque."""
    if image.mode in ('RGBA', 'LA'):
        alpha = image.getchannel('A')
    elif image.mode == 'PA' or 'transparency' in image.info:
        alpha = image.convert('RGBA').getchannel('A')
    else:
        return False
    return alpha.getextrema()[0] < 255


def allowed_formats(image_type: ImageType, alpha: bool, policy: FormatPolicy,
                    own_format: str | None) -> list[str]:
    """
    Candidate formats for an image.

    WebP always, JPEG only for opaque images, lossless PNG only for icons
    and diagrams. Under the preserve policy the part keeps its own format.
    """
    if policy == FormatPolicy.PRESERVE:
        if own_format == 'jpeg' and alpha:
            return []
        return [own_format] if own_format in PIL_FORMATS else []

    formats = ['webp']
    if not alpha:
        formats.append('jpeg')
    if image_type in (ImageType.DIAGRAM, ImageType.ICON):
        formats.append('png')
    return formats


def encode(image: Image.Image, fmt: str, quality: int, alpha: bool) -> bytes:
    """Encode into one format. Raises OSError/ValueError/KeyError from Pillow."""
    buffer = io.BytesIO()
    if fmt == 'jpeg':
        image.convert('RGB').save(buffer, format='JPEG', quality=quality, optimize=True, progressive=True)
    elif fmt == 'webp':
        image.convert('RGBA' if alpha else 'RGB').save(buffer, format='WEBP', quality=quality, method=6)
    elif fmt == 'png':
        if image.mode not in ('1', 'L', 'LA', 'P', 'RGB', 'RGBA'):
            image = image.convert('RGBA' if alpha else 'RGB')
        image.save(buffer, format='PNG', optimize=True)
    else:
        raise ValueError(f"unsupported output format: {fmt}")
    return buffer.getvalue()


def encode_candidates(image: Image.Image, formats: list[str], quality: int,
                      alpha: bool, path: str = '') -> list[tuple[str, bytes]]:
    """Encode into every format that works; failures of one format are logged and skipped."""
    candidates = []
    for fmt in formats:
        try:
            candidates.append((fmt, encode(image, fmt, quality, alpha)))
        except (OSError, ValueError, KeyError) as e:
            logging.debug(f"{path}: {fmt} encoding failed: {e}")
    return candidates


def compress_image(
    data: bytes,
    path: str,
    quality: int,
    max_dimension: int,
    policy: FormatPolicy = FormatPolicy.PRESERVE,
) -> tuple[bytes, str, ImageType] | None:
    """
    Recompress one image.

    Args:
        data: Original image bytes
        path: Archive path (used for the own-format rule and in messages)
        quality: Base quality 1-100
        max_dimension: Bound for the longer side
        policy: Format-label policy

    Returns:
        (payload, format, image type) when a candidate beats the saving
        threshold, None to keep the original

    Raises:
        CodecError: If the image cannot be decoded or no candidate can be encoded
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise CodecError(path, f"cannot decode image: {e}") from e

    if getattr(image, 'is_animated', False):
        logging.debug(f"{path}: animated image, leaving as is")
        return None

    width, height = image.size
    image_type = classify_image(image)
    alpha = has_alpha(image)

    new_size = target_dimensions(width, height, max_dimension)
    if new_size != (width, height):
        if image.mode not in ('L', 'LA', 'RGB', 'RGBA'):
            image = image.convert('RGBA' if alpha else 'RGB')
        image = image.resize(new_size, Image.Resampling.LANCZOS)
        logging.debug(f"{path}: resized {width}x{height} -> {new_size[0]}x{new_size[1]}")

    extension = posixpath.splitext(path)[1].lstrip('.').lower()
    formats = allowed_formats(image_type, alpha, policy, EXTENSION_FORMATS.get(extension))
    if not formats:
        return None

    candidates = encode_candidates(image, formats, target_quality(quality, image_type), alpha, path)
    if not candidates:
        raise CodecError(path, f"no encoder succeeded for {', '.join(formats)}")

    fmt, best = min(candidates, key=lambda c: len(c[1]))
    if len(best) >= MIN_SAVING_RATIO * len(data):
        logging.debug(f"{path}: best candidate {fmt} ({len(best)} bytes) does not beat {len(data)} bytes")
        return None
    return best, fmt, image_type


def is_compressible(path: str) -> bool:
    extension = posixpath.splitext(path)[1].lstrip('.').lower()
    return path.startswith(MEDIA_PREFIX) and '/_rels/' not in path and extension in SUPPORTED_IMAGE_EXTENSIONS


def process_media_part(path: str, data: bytes, options: OptimizeOptions) -> CompressionResult:
    """
    Compress one part, consulting the cache. Codec failures stop here: the
    part is reported as failed and left untouched.
    """
    result: CompressionResult = {
        'path': path,
        'status': 'unchanged',
        'original_size': len(data),
        'compressed_size': len(data),
        'format': None,
        'image_type': None,
        'data': None,
        'reason': None,
    }
    if len(data) < MIN_COMPRESSION_SIZE_BYTES:
        result['status'] = 'skipped'
        result['reason'] = 'below minimum size'
        return result
    if detect_format(data) == 'unknown':
        result['status'] = 'skipped'
        result['reason'] = 'unrecognized image format'
        return result

    cache = options.cache
    key = cache.key(data, options.quality, options.max_dimension, options.format_policy.value) if cache else None
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            payload, fmt = cached
            if not payload:
                return result
            result.update(status='compressed', compressed_size=len(payload), format=fmt, data=payload)
            return result

    try:
        outcome = compress_image(data, path, options.quality, options.max_dimension, options.format_policy)
    except CodecError as e:
        logging.warning(f"Leaving {path} unchanged: {e}")
        result['status'] = 'failed'
        result['reason'] = str(e)
        return result

    if outcome is None:
        if cache is not None:
            cache.put(key, b'', '')
        return result

    payload, fmt, image_type = outcome
    if cache is not None:
        cache.put(key, payload, fmt)
    result.update(status='compressed', compressed_size=len(payload), format=fmt,
                  image_type=image_type.value, data=payload)
    logging.debug(f"{path}: {len(data)} -> {len(payload)} bytes as {fmt} ({image_type.value})")
    return result


def ensure_default_content_type(archive: Archive, extension: str, content_type: str) -> bool:
    """
    Add a ``Default`` entry for ``extension`` to the content-types manifest
    unless one exists. Returns True when the manifest was changed.
    """
    try:
        root = xmlpart.parse(archive.get(CONTENT_TYPES_PATH), CONTENT_TYPES_PATH)
    except ParseError as e:
        logging.warning(f"Cannot register .{extension} content type: {e.original}")
        return False

    defaults = xmlpart.children(root, 'Default')
    for default in defaults:
        if (xmlpart.get_attr(default, 'Extension') or '').lower() == extension.lower():
            return False

    index = root.index(defaults[-1]) + 1 if defaults else 0
    xmlpart.add_child(root, 'Default', {'Extension': extension, 'ContentType': content_type}, index)
    archive.set(CONTENT_TYPES_PATH, xmlpart.serialize(root))
    return True


def _renamed_path(archive: Archive, path: str, fmt: str) -> str:
    stem = posixpath.splitext(path)[0]
    extension = FORMAT_EXTENSIONS[fmt]
    candidate = f"{stem}.{extension}"
    counter = 1
    while candidate in archive:
        candidate = f"{stem}_{counter}.{extension}"
        counter += 1
    return candidate


def apply_result(archive: Archive, result: CompressionResult, policy: FormatPolicy) -> str:
    """
    Write a compressed payload back. Returns the path the payload ended up at.

    Under the rename policy a format change moves the part to a path with the
    matching extension and retargets every relationship to it.
    """
    path = result['path']
    own_format = EXTENSION_FORMATS.get(posixpath.splitext(path)[1].lstrip('.').lower())
    if policy != FormatPolicy.RENAME or result['format'] == own_format:
        archive.set(path, result['data'])
        return path

    new_path = _renamed_path(archive, path, result['format'])
    archive.set(new_path, result['data'])
    retargeted = rels.retarget_relationships(archive, path, new_path)
    archive.remove(path)
    old_rels = rels.rels_path_for(path)
    if old_rels in archive:
        archive.set(rels.rels_path_for(new_path), archive.get(old_rels))
        archive.remove(old_rels)
    ensure_default_content_type(archive, FORMAT_EXTENSIONS[result['format']], CONTENT_TYPES[result['format']])
    logging.debug(f"Renamed {path} -> {new_path} ({retargeted} relationship(s) updated)")
    return new_path


async def compress_media(
    archive: Archive,
    options: OptimizeOptions,
    progress: ProgressTracker | None = None,
) -> MediaReport:
    """
    Recompress every supported image in the archive.

    Parts are processed in batches of ``options.batch_size``; each image runs
    in a worker thread and the batch's results are written back once the
    whole batch is done.
    """
    paths = [p for p in archive.find(prefix=MEDIA_PREFIX) if is_compressible(p)]
    report: MediaReport = {
        'media_files_found': len(paths),
        'compressed': 0,
        'unchanged': 0,
        'skipped': 0,
        'failed': 0,
        'original_bytes': 0,
        'compressed_bytes': 0,
        'bytes_saved': 0,
        'renamed': {},
        'failed_files': [],
    }
    logging.info(f"Found {len(paths)} image(s) to consider for recompression")
    if progress is not None:
        progress.media(0, len(paths))

    processed = 0
    started = time.monotonic()
    for start in range(0, len(paths), options.batch_size):
        batch = paths[start:start + options.batch_size]
        results = await asyncio.gather(*(
            asyncio.to_thread(process_media_part, path, archive.get(path), options)
            for path in batch
        ))

        for result in results:
            report[result['status']] += 1
            report['original_bytes'] += result['original_size']
            report['compressed_bytes'] += result['compressed_size']
            if result['status'] == 'failed':
                report['failed_files'].append(result['path'])
            elif result['status'] == 'compressed':
                final_path = apply_result(archive, result, options.format_policy)
                if final_path != result['path']:
                    report['renamed'][result['path']] = final_path

        processed += len(batch)
        if progress is not None:
            progress.media(processed, len(paths), file_index=start + len(batch),
                           batch_files=[posixpath.basename(p) for p in batch],
                           elapsed=time.monotonic() - started)

    if report['renamed']:
        prune_content_types(archive)

    report['bytes_saved'] = report['original_bytes'] - report['compressed_bytes']
    logging.info(f"Recompressed {report['compressed']} image(s), saved {report['bytes_saved']} bytes"
                 + (f", {report['failed']} failed" if report['failed'] else ''))
    return report
