"""
Scale- and rotation-tolerant template finder for screen automation.

Locates a needle image inside a haystack (a file, an array or the current
screen) and reports regions in logical screen pixels.
"""

from .config import default_config, merge_config, resolve_confidence
from .engine import VisionEngine
from .errors import (
    EmptyImageError,
    InvalidRegionError,
    NoMatchError,
    TemplateFinderError,
    TemplateTooLargeError,
)
from .finder import TemplateMatchingFinder, finder
from .types import (
    FinderConfig,
    LoadedImage,
    MatchResult,
    MethodType,
    OrientedMatch,
    PixelDensity,
    ProviderOptions,
    Region,
    RotationOption,
    SearchRequest,
)

__version__ = "0.1.0"

__all__ = [
    "EmptyImageError",
    "FinderConfig",
    "InvalidRegionError",
    "LoadedImage",
    "MatchResult",
    "MethodType",
    "NoMatchError",
    "OrientedMatch",
    "PixelDensity",
    "ProviderOptions",
    "Region",
    "RotationOption",
    "SearchRequest",
    "TemplateFinderError",
    "TemplateMatchingFinder",
    "TemplateTooLargeError",
    "VisionEngine",
    "default_config",
    "finder",
    "merge_config",
    "resolve_confidence",
    "__version__",
]
