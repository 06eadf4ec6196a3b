"""
Coordinate normalization, region checks and final confidence validation.

Matches come out of the search in physical haystack pixels, relative to the
cropped region of interest. They leave this module in logical screen pixels,
sorted by confidence.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from .errors import InvalidRegionError, NoMatchError, TemplateTooLargeError
from .types import MatchResult, PixelDensity, Region

logger = logging.getLogger(__name__)

EPS = 1e-6


def increase_region_by_pixel_density(region: Region, pixel_density: PixelDensity) -> Region:
    """Logical to physical pixels (uniform density only)."""
    return region.scaled(pixel_density.uniform_factor)


def decrease_region_by_pixel_density(region: Region, pixel_density: PixelDensity) -> Region:
    """Physical to logical pixels (uniform density only)."""
    return region.scaled(1.0 / pixel_density.uniform_factor)


def validate_search_region(region: Region, bounds: Region, tolerance: float = EPS) -> None:
    if region.width <= 0 or region.height <= 0:
        raise InvalidRegionError(f"Search region {region} is empty.")
    padded = Region(
        bounds.left - tolerance,
        bounds.top - tolerance,
        bounds.width + 2 * tolerance,
        bounds.height + 2 * tolerance,
    )
    if not padded.contains(region):
        raise InvalidRegionError(
            f"Search region {region} extends outside of {bounds}."
        )


def throw_on_too_large_needle(
    haystack: np.ndarray, needle: np.ndarray, smallest_scale_factor: float
) -> None:
    scaled_rows = smallest_scale_factor * needle.shape[0]
    scaled_cols = smallest_scale_factor * needle.shape[1]
    if scaled_rows > haystack.shape[0] or scaled_cols > haystack.shape[1]:
        raise TemplateTooLargeError(
            "Search input is too large, try using a smaller template image."
        )


def snap_to_pixels(region: Region) -> Region:
    """Whole-pixel region that ``crop_to_region`` cuts for ``region``."""
    x0 = int(round(region.left))
    y0 = int(round(region.top))
    x1 = int(round(region.right))
    y1 = int(round(region.bottom))
    return Region(x0, y0, max(0, x1 - x0), max(0, y1 - y0))


def crop_to_region(image: np.ndarray, region: Region) -> np.ndarray:
    """Copy a physical-pixel region out of ``image``; the ROI must lie inside it."""
    h, w = image.shape[:2]
    snapped = snap_to_pixels(region)
    x0, y0 = int(snapped.left), int(snapped.top)
    x1, y1 = int(snapped.right), int(snapped.bottom)
    if x0 < 0 or y0 < 0 or x1 > w or y1 > h or x1 <= x0 or y1 <= y0:
        raise InvalidRegionError(
            f"Search region {region} extends outside of the {w}x{h} haystack."
        )
    return image[y0:y1, x0:x1].copy()


def get_validated_matches(
    matches: Sequence[MatchResult],
    pixel_density: PixelDensity,
    confidence: float,
    roi: Optional[Region] = None,
    screen_bounds: Optional[Region] = None,
) -> List[MatchResult]:
    """
    Map raw matches to logical coordinates and keep those above threshold.

    Args:
        matches: Candidates in physical pixels, relative to ``roi`` when one
            was used for cropping. Below-threshold candidates may be included;
            they only feed the failure message.
        pixel_density: Density of the haystack the matches came from.
        confidence: Required confidence.
        roi: Whole-pixel physical region the haystack was cropped to.
        screen_bounds: Logical screen rectangle the ROI must lie within.

    Returns:
        Qualifying matches sorted by descending confidence.

    Raises:
        InvalidRegionError: If the ROI is outside ``screen_bounds``.
        NoMatchError: If no candidate reaches ``confidence``.
    """
    results = list(matches)
    if roi is not None:
        results = [m.with_location(m.location.offset(roi.left, roi.top)) for m in results]
    results = [
        m.with_location(decrease_region_by_pixel_density(m.location, pixel_density))
        for m in results
    ]
    if roi is not None and screen_bounds is not None:
        # a whole-pixel ROI may sit up to half a physical pixel past the request
        validate_search_region(
            decrease_region_by_pixel_density(roi, pixel_density),
            screen_bounds,
            tolerance=0.5 / pixel_density.uniform_factor + EPS,
        )

    results.sort(key=lambda m: m.confidence, reverse=True)
    potential = [m for m in results if m.confidence >= confidence]
    if not potential:
        if results:
            best = results[0]
            raise NoMatchError(
                f"No match with required confidence {confidence}. "
                f"Best match: {best.confidence}",
                best_confidence=best.confidence,
            )
        raise NoMatchError("Unable to locate on screen with template, no match!")
    logger.debug("%d of %d candidates passed %.3f", len(potential), len(results), confidence)
    return potential
