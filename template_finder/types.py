"""
Value types shared by the search pipeline.

Everything here is immutable: a request builds its own instances and drops
them once the results are returned.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

Point = Tuple[float, float]


class MethodType(str, Enum):
    TM_SQDIFF = "TM_SQDIFF"
    TM_SQDIFF_NORMED = "TM_SQDIFF_NORMED"
    TM_CCORR = "TM_CCORR"
    TM_CCORR_NORMED = "TM_CCORR_NORMED"
    TM_CCOEFF = "TM_CCOEFF"
    TM_CCOEFF_NORMED = "TM_CCOEFF_NORMED"

    @property
    def is_squared_difference(self) -> bool:
        return self in (MethodType.TM_SQDIFF, MethodType.TM_SQDIFF_NORMED)

    @property
    def is_normalized_correlation(self) -> bool:
        return self in (MethodType.TM_CCORR_NORMED, MethodType.TM_CCOEFF_NORMED)


@dataclass(frozen=True)
class Region:
    left: float
    top: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Region size must be non-negative, got {self.width}x{self.height}"
            )

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, other: "Region") -> bool:
        return (
            other.left >= self.left
            and other.top >= self.top
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def intersection_area(self, other: "Region") -> float:
        inter_w = min(self.right, other.right) - max(self.left, other.left)
        inter_h = min(self.bottom, other.bottom) - max(self.top, other.top)
        if inter_w <= 0 or inter_h <= 0:
            return 0.0
        return inter_w * inter_h

    def offset(self, dx: float, dy: float) -> "Region":
        return Region(self.left + dx, self.top + dy, self.width, self.height)

    def scaled(self, factor: float) -> "Region":
        return Region(
            self.left * factor,
            self.top * factor,
            self.width * factor,
            self.height * factor,
        )


@dataclass(frozen=True)
class MatchResult:
    confidence: float
    location: Region
    error: Optional[str] = None

    def with_location(self, location: Region) -> "MatchResult":
        return MatchResult(self.confidence, location, self.error)


@dataclass(frozen=True)
class PixelDensity:
    scale_x: float = 1.0
    scale_y: float = 1.0

    @property
    def uniform_factor(self) -> float:
        """Factor between physical and logical pixels, or 1.0 when non-uniform."""
        if self.scale_x and self.scale_y and self.scale_x == self.scale_y:
            return float(self.scale_x)
        return 1.0


@dataclass(frozen=True)
class LoadedImage:
    image: np.ndarray
    pixel_density: PixelDensity = field(default_factory=PixelDensity)


@dataclass(frozen=True)
class OrientedMatch:
    """Rotation-search hit: needle corners projected into haystack space."""

    corners: Tuple[Point, Point, Point, Point]
    score: float
    size: Tuple[float, float]

    def to_region(self) -> Region:
        xs = [p[0] for p in self.corners]
        ys = [p[1] for p in self.corners]
        left = min(xs)
        top = min(ys)
        width = max(max(xs) - left, self.size[0])
        height = max(max(ys) - top, self.size[1])
        return Region(left, top, width, height)


@dataclass(frozen=True)
class RotationOption:
    range: float = 180.0
    overlap: float = 0.1
    min_dst_length: int = 256


@dataclass(frozen=True)
class ProviderOptions:
    scale_steps: Tuple[float, ...] = (1.0, 0.9, 0.8, 0.7, 0.6, 0.5)
    method_type: MethodType = MethodType.TM_CCOEFF_NORMED
    debug: bool = False
    is_search_multiple_scales: bool = True
    is_rotation: bool = False
    rotation_option: RotationOption = field(default_factory=RotationOption)


@dataclass(frozen=True)
class FinderConfig:
    confidence: float = 0.8
    provider_data: ProviderOptions = field(default_factory=ProviderOptions)


ImageSource = Union[np.ndarray, LoadedImage, str, "os.PathLike[str]"]


@dataclass(frozen=True)
class SearchRequest:
    needle: ImageSource
    haystack: Optional[ImageSource] = None
    confidence: Optional[float] = None
    method_type: Optional[MethodType] = None
    scale_steps: Optional[Sequence[float]] = None
    is_search_multiple_scales: Optional[bool] = None
    is_rotation: Optional[bool] = None
    rotation_option: Optional[Union[RotationOption, Mapping[str, float]]] = None
    roi: Optional[Region] = None
    debug: Optional[bool] = None


@dataclass
class SearchOutcome:
    matches: List[MatchResult]
    best_rejected: Optional[MatchResult] = None
    haystack: Optional[np.ndarray] = None


def better_rejection(
    current: Optional[MatchResult], candidate: Optional[MatchResult]
) -> Optional[MatchResult]:
    if candidate is None:
        return current
    if current is None or candidate.confidence > current.confidence:
        return candidate
    return current
