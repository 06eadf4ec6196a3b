"""
Fixed-scale multi-match search by writing over found regions.

After each accepted match the matched rectangle is filled with a constant in
a private copy of the haystack, so the next query cannot report the same spot.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np

from .types import MatchResult, MethodType, Region, SearchOutcome

logger = logging.getLogger(__name__)

FILL_VALUE = 0
MAX_MATCHES_PER_PASS = 100


def write_over(image: np.ndarray, region: Region, fill: int = FILL_VALUE) -> None:
    """Fill ``region`` of ``image`` in place, clipped to the image bounds."""
    h, w = image.shape[:2]
    x0 = max(0, int(math.floor(region.left)))
    y0 = max(0, int(math.floor(region.top)))
    x1 = min(w, int(math.ceil(region.right)))
    y1 = min(h, int(math.ceil(region.bottom)))
    if x1 > x0 and y1 > y0:
        image[y0:y1, x0:x1] = fill


def match_images(
    engine, haystack: np.ndarray, needle: np.ndarray, method: MethodType
) -> MatchResult:
    score, (x, y) = engine.match(haystack, needle, method)
    nh, nw = needle.shape[:2]
    return MatchResult(confidence=score, location=Region(x, y, nw, nh))


def match_images_by_writing_over(
    engine,
    haystack: np.ndarray,
    needle: np.ndarray,
    confidence: float,
    method: MethodType,
    first_match: bool = False,
    debug: bool = False,
) -> SearchOutcome:
    """
    Collect every match of ``needle`` at its current size.

    Args:
        engine: Object providing ``match(haystack, needle, method)``.
        haystack: Image searched within. Never modified; the search runs on
            a copy which is returned as ``SearchOutcome.haystack``.
        needle: Template at the scale being searched.
        confidence: Minimum confidence for a match to be accepted.
        method: Similarity method passed to the engine.
        first_match: Stop after the first accepted match.
        debug: Log each accepted match.

    Returns:
        Accepted matches in haystack coordinates, the first rejected
        candidate (the best remaining score once matching stopped) and the
        written-over haystack copy.
    """
    working = haystack.copy()
    nh, nw = needle.shape[:2]
    matches = []
    rejected: Optional[MatchResult] = None

    while len(matches) < MAX_MATCHES_PER_PASS:
        score, (x, y) = engine.match(working, needle, method)
        if math.isnan(score):
            break
        candidate = MatchResult(confidence=score, location=Region(x, y, nw, nh))
        if score < confidence:
            rejected = candidate
            break
        matches.append(candidate)
        if debug:
            logger.debug(
                "overwrite match %.4f at (%d, %d) size %dx%d", score, x, y, nw, nh
            )
        write_over(working, candidate.location)
        if first_match:
            break

    return SearchOutcome(matches=matches, best_rejected=rejected, haystack=working)
