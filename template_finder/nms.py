"""Collapse overlapping detections from different scales or rotations."""

from __future__ import annotations

from typing import List, Sequence

from .types import MatchResult, Region

NMS_OVERLAP_THRESHOLD = 0.3


def iou(a: Region, b: Region) -> float:
    inter = a.intersection_area(b)
    union = a.area + b.area - inter
    if union <= 0:
        return 0.0
    return inter / union


def filter_match_results(
    matches: Sequence[MatchResult], overlap_threshold: float = NMS_OVERLAP_THRESHOLD
) -> List[MatchResult]:
    """Greedy NMS: keep the most confident match of every overlapping cluster."""
    remaining = sorted(matches, key=lambda m: m.confidence, reverse=True)
    picked: List[MatchResult] = []
    for candidate in remaining:
        if any(
            iou(candidate.location, kept.location) >= overlap_threshold
            for kept in picked
        ):
            continue
        picked.append(candidate)
    return picked
