"""
Multi-scale search: shrink the needle first, then the haystack.

The needle pass runs first, each step against the unmodified haystack.
The haystack pass covers needles that appear larger on screen than in the
reference image.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from .overwrite import match_images_by_writing_over, write_over
from .types import MatchResult, MethodType, SearchOutcome, better_rejection

logger = logging.getLogger(__name__)

MIN_SIDE_PX = 10


def _too_small(img: np.ndarray) -> bool:
    h, w = img.shape[:2]
    return w <= MIN_SIDE_PX or h <= MIN_SIDE_PX or w * h == 0


def _fits(haystack: np.ndarray, needle: np.ndarray) -> bool:
    hh, hw = haystack.shape[:2]
    nh, nw = needle.shape[:2]
    return nw <= hw and nh <= hh


def scale_needle(
    engine,
    haystack: np.ndarray,
    needle: np.ndarray,
    confidence: float,
    scale_steps: Sequence[float],
    method: MethodType,
    first_match: bool = False,
    debug: bool = False,
) -> SearchOutcome:
    results: List[MatchResult] = []
    rejected: Optional[MatchResult] = None
    carried = haystack.copy()

    for scale in scale_steps:
        scaled_needle = engine.resize(needle, scale)
        if _too_small(scaled_needle) or not _fits(haystack, scaled_needle):
            logger.debug("needle pass stopped at scale %.3f", scale)
            break
        outcome = match_images_by_writing_over(
            engine, haystack, scaled_needle, confidence, method, first_match, debug
        )
        for match in outcome.matches:
            write_over(carried, match.location)
        results.extend(outcome.matches)
        rejected = better_rejection(rejected, outcome.best_rejected)
        if first_match and results:
            break

    return SearchOutcome(matches=results, best_rejected=rejected, haystack=carried)


def scale_haystack(
    engine,
    haystack: np.ndarray,
    needle: np.ndarray,
    confidence: float,
    scale_steps: Sequence[float],
    method: MethodType,
    first_match: bool = False,
    debug: bool = False,
) -> SearchOutcome:
    """
    Search shrunken copies of the haystack with the needle at its own size.

    Every step rescales the full-resolution haystack (factors never compound).
    Matches are mapped back to full-resolution coordinates and written over
    the returned haystack so later steps cannot report them again.
    """
    results: List[MatchResult] = []
    rejected: Optional[MatchResult] = None
    carried = haystack.copy()

    if _too_small(needle):
        return SearchOutcome(matches=results, haystack=carried)

    for scale in scale_steps:
        scaled_haystack = engine.resize(carried, scale)
        if _too_small(scaled_haystack) or not _fits(scaled_haystack, needle):
            logger.debug("haystack pass stopped at scale %.3f", scale)
            break
        outcome = match_images_by_writing_over(
            engine, scaled_haystack, needle, confidence, method, first_match, debug
        )
        for match in outcome.matches:
            full = match.with_location(match.location.scaled(1.0 / scale))
            write_over(carried, full.location)
            results.append(full)
        if outcome.best_rejected is not None:
            best = outcome.best_rejected
            rejected = better_rejection(
                rejected, best.with_location(best.location.scaled(1.0 / scale))
            )
        if first_match and results:
            break

    return SearchOutcome(matches=results, best_rejected=rejected, haystack=carried)


def search_multiple_scales(
    engine,
    haystack: np.ndarray,
    needle: np.ndarray,
    confidence: float,
    scale_steps: Sequence[float],
    method: MethodType,
    first_match: bool = False,
    debug: bool = False,
) -> SearchOutcome:
    needle_data = scale_needle(
        engine, haystack, needle, confidence, scale_steps, method, first_match, debug
    )
    if first_match and needle_data.matches:
        return needle_data

    haystack_data = scale_haystack(
        engine,
        needle_data.haystack,
        needle,
        confidence,
        scale_steps,
        method,
        first_match,
        debug,
    )
    return SearchOutcome(
        matches=[*needle_data.matches, *haystack_data.matches],
        best_rejected=better_rejection(
            needle_data.best_rejected, haystack_data.best_rejected
        ),
        haystack=haystack_data.haystack,
    )
