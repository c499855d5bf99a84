"""
Constants, presets and run options.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .cache import ImageCache


# Well-known part paths
PRESENTATION_PATH = 'ppt/presentation.xml'
PRESENTATION_RELS_PATH = 'ppt/_rels/presentation.xml.rels'
CONTENT_TYPES_PATH = '[Content_Types].xml'
PACKAGE_RELS_PATH = '_rels/.rels'
SLIDE_PREFIX = 'ppt/slides/'
SLIDE_LAYOUT_PREFIX = 'ppt/slideLayouts/'
SLIDE_MASTER_PREFIX = 'ppt/slideMasters/'
MEDIA_PREFIX = 'ppt/media/'

SUPPORTED_IMAGE_EXTENSIONS = frozenset({'png', 'jpg', 'jpeg', 'gif', 'bmp', 'webp'})

DIAGRAM_ICON_QUALITY_FACTOR = 0.65
MIN_COMPRESSION_SIZE_BYTES = 5 * 1024
MIN_SAVING_RATIO = 0.95  # candidate must be below 95% of the original
ZIP_COMPRESSION_LEVEL = 9
MAX_FILE_SIZE = 300 * 1024 * 1024
DEFAULT_BATCH_SIZE = 5

# Safety guard: largest fraction of a resource class one pass may delete
MEDIA_REMOVAL_MAX_FRACTION = 0.80
TEMPLATE_REMOVAL_MAX_FRACTION = 1.0  # layouts/masters: only the all-removed guard


class FormatPolicy(str, Enum):
    """What to do when recompression would change an image's container format."""
    PRESERVE = 'preserve'  # only re-encode into the part's own format
    RENAME = 'rename'      # rename the part and fix rels + content types
    IN_PLACE = 'in_place'  # write new bytes under the old name (mislabels the part)


PRESETS: dict[str, dict[str, int]] = {
    'balanced': {'quality': 75, 'max_dimension': 1600},
    'aggressive': {'quality': 60, 'max_dimension': 1024},
    'conservative': {'quality': 85, 'max_dimension': 1920},
}
DEFAULT_PRESET = 'balanced'


@dataclass(frozen=True)
class OptimizeOptions:
    """Settings for one optimization run."""
    quality: int = PRESETS[DEFAULT_PRESET]['quality']
    max_dimension: int = PRESETS[DEFAULT_PRESET]['max_dimension']
    format_policy: FormatPolicy = FormatPolicy.PRESERVE
    batch_size: int = DEFAULT_BATCH_SIZE
    remove_hidden_slides: bool = True
    remove_unused: bool = True
    compress_images: bool = True
    max_file_size: int = MAX_FILE_SIZE
    cache: 'ImageCache | None' = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be between 1 and 100, got {self.quality}")
        if self.max_dimension < 1:
            raise ValueError(f"max_dimension must be positive, got {self.max_dimension}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if not isinstance(self.format_policy, FormatPolicy):
            object.__setattr__(self, 'format_policy', FormatPolicy(self.format_policy))

    @classmethod
    def from_preset(cls, name: str = DEFAULT_PRESET, **overrides) -> 'OptimizeOptions':
        """
        Build options from a named preset, applying any non-None overrides.

        Raises:
            ValueError: If the preset is unknown or a value is out of range
        """
        if name not in PRESETS:
            raise ValueError(f"unknown preset: {name} (expected one of {', '.join(PRESETS)})")
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(cls(**PRESETS[name]), **values)
