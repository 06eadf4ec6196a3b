"""Rotation-tolerant search built on the engine's keypoint correspondences."""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from .nms import iou
from .types import MatchResult, OrientedMatch, SearchOutcome, better_rejection

logger = logging.getLogger(__name__)


def oriented_to_match(match: OrientedMatch) -> MatchResult:
    return MatchResult(confidence=match.score, location=match.to_region())


def _suppress_oriented(
    matches: List[OrientedMatch], overlap: float
) -> List[OrientedMatch]:
    kept: List[OrientedMatch] = []
    for candidate in sorted(matches, key=lambda m: m.score, reverse=True):
        region = candidate.to_region()
        if any(iou(region, k.to_region()) > overlap for k in kept):
            continue
        kept.append(candidate)
    return kept


def search_rotation(
    engine,
    haystack: np.ndarray,
    needle: np.ndarray,
    min_dst_length: int,
    confidence: float,
    angle_range: float,
    overlap: float,
    debug: bool = False,
) -> SearchOutcome:
    """
    Find rotated instances of the needle.

    Oriented hits are reduced to axis-aligned bounding regions that are never
    smaller than the unrotated needle. Hits whose regions overlap a stronger
    hit by more than ``overlap`` (IoU) are dropped.
    """
    oriented = engine.feature_match(haystack, needle, angle_range, min_dst_length)
    oriented = _suppress_oriented(oriented, overlap)
    accepted: List[MatchResult] = []
    rejected: Optional[MatchResult] = None
    for hit in oriented:
        result = oriented_to_match(hit)
        if result.confidence >= confidence:
            accepted.append(result)
            if debug:
                logger.debug(
                    "rotated match %.4f corners=%s", hit.score, list(hit.corners)
                )
        else:
            rejected = better_rejection(rejected, result)
    return SearchOutcome(matches=accepted, best_rejected=rejected, haystack=haystack)
