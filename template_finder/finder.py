"""
Template finder facade consumed by the automation framework.

``find_match`` returns the single best region for a needle, ``find_matches``
every qualifying region. Both resolve the request against the process-wide
configuration, load (or capture) the images, run exactly one of the
rotation, multi-scale or single-scale searches and hand the raw candidates
to the coordinate normalizer.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple, Union

import cv2
import numpy as np

from .config import ResolvedOptions, default_config, merge_config, resolve_request
from .engine import default_engine
from .errors import EmptyImageError
from .nms import filter_match_results
from .overwrite import match_images, match_images_by_writing_over
from .render import render_matches, save_debug_image
from .rotation import search_rotation
from .scale_search import search_multiple_scales
from .types import (
    FinderConfig,
    LoadedImage,
    MatchResult,
    PixelDensity,
    Region,
    SearchOutcome,
    SearchRequest,
)
from .validation import (
    crop_to_region,
    get_validated_matches,
    increase_region_by_pixel_density,
    snap_to_pixels,
    throw_on_too_large_needle,
    validate_search_region,
)

logger = logging.getLogger(__name__)

PROFILE_ENV = "TEMPLATE_FINDER_PROFILE"


def _profile_enabled() -> bool:
    profile_value = os.getenv(PROFILE_ENV, "").strip().lower()
    return profile_value not in ("", "0", "false", "no")


@dataclass
class _RequestData:
    options: ResolvedOptions
    needle: np.ndarray
    haystack: np.ndarray
    pixel_density: PixelDensity
    roi: Optional[Region]
    screen_bounds: Optional[Region]


class TemplateMatchingFinder:
    def __init__(self, config: Optional[FinderConfig] = None, engine=None):
        self._config = config if config is not None else default_config()
        self._engine = engine if engine is not None else default_engine()

    @property
    def engine(self):
        return self._engine

    def get_config(self) -> FinderConfig:
        return self._config

    def set_config(
        self,
        config: Optional[Union[FinderConfig, Mapping[str, Any]]] = None,
        **overrides: Any,
    ) -> FinderConfig:
        """
        Merge new defaults into the configuration.

        Explicit fields override, unspecified fields keep their value. The
        merged config replaces the old object as a whole, so requests that
        already started keep the config they read.
        """
        merged = self._config
        if config is not None:
            merged = merge_config(merged, config)
        if overrides:
            merged = merge_config(merged, overrides)
        self._config = merged
        return merged

    # ---------- request setup ----------
    def _load(self, reference, what: str) -> LoadedImage:
        try:
            loaded = self._engine.load_image(reference)
        except EmptyImageError:
            raise
        except (OSError, ValueError, cv2.error) as exc:
            raise EmptyImageError(f"Failed to load {what}: {exc}") from exc
        if loaded is None or loaded.image is None or loaded.image.size == 0:
            raise EmptyImageError(f"Failed to load {what}, got empty image.")
        return loaded

    def _capture(self) -> LoadedImage:
        try:
            loaded = self._engine.capture_screen()
        except EmptyImageError:
            raise
        except (OSError, ValueError, cv2.error) as exc:
            raise EmptyImageError(f"Failed to capture screen: {exc}") from exc
        if loaded is None or loaded.image is None or loaded.image.size == 0:
            raise EmptyImageError("Failed to capture screen, got empty image.")
        return loaded

    def _screen_bounds(self) -> Region:
        width, height = self._engine.screen_size()
        return Region(0, 0, width, height)

    def _init_data(self, request: SearchRequest) -> _RequestData:
        options = resolve_request(request, self._config)

        needle = self._load(request.needle, "needle").image

        screen_bounds = None
        if options.roi is not None:
            screen_bounds = self._screen_bounds()
            validate_search_region(options.roi, screen_bounds)

        if request.haystack is None:
            loaded = self._capture()
        else:
            loaded = self._load(request.haystack, "haystack")

        physical_roi = None
        haystack = loaded.image
        if options.roi is not None:
            physical_roi = snap_to_pixels(
                increase_region_by_pixel_density(options.roi, loaded.pixel_density)
            )
            haystack = crop_to_region(haystack, physical_roi)

        if not options.is_rotation:
            smallest = (
                min(options.scale_steps) if options.is_search_multiple_scales else 1.0
            )
            throw_on_too_large_needle(haystack, needle, smallest)

        return _RequestData(
            options=options,
            needle=needle,
            haystack=haystack,
            pixel_density=loaded.pixel_density,
            roi=physical_roi,
            screen_bounds=screen_bounds,
        )

    @staticmethod
    def _as_request(request: Optional[SearchRequest], overrides: Mapping[str, Any]) -> SearchRequest:
        if request is None:
            return SearchRequest(**overrides)
        if overrides:
            return dataclasses.replace(request, **overrides)
        return request

    # ---------- search ----------
    def _rotation_outcome(self, data: _RequestData) -> SearchOutcome:
        opts = data.options
        return search_rotation(
            self._engine,
            data.haystack,
            data.needle,
            opts.rotation_option.min_dst_length,
            opts.confidence,
            opts.rotation_option.range,
            opts.rotation_option.overlap,
            debug=opts.debug,
        )

    def _debug_render(self, data: _RequestData, matches: List[MatchResult], label: str) -> None:
        logger.info(
            "%s: %d candidate(s) at confidence %.3f (%s)",
            label,
            len(matches),
            data.options.confidence,
            data.options.method_type.value,
        )
        save_debug_image(render_matches(data.haystack, matches), label)

    def _validate(self, candidates: List[MatchResult], data: _RequestData) -> List[MatchResult]:
        return get_validated_matches(
            candidates,
            data.pixel_density,
            data.options.confidence,
            roi=data.roi,
            screen_bounds=data.screen_bounds,
        )

    def find_match(self, request: Optional[SearchRequest] = None, **overrides: Any) -> MatchResult:
        request = self._as_request(request, overrides)
        profile = _profile_enabled()
        marks: List[Tuple[str, float]] = []
        t0 = time.perf_counter()

        data = self._init_data(request)
        opts = data.options
        if profile:
            marks.append(("load", time.perf_counter()))

        if opts.is_rotation:
            outcome = self._rotation_outcome(data)
            candidates = outcome.matches[:1]
        elif not opts.is_search_multiple_scales:
            best = match_images(self._engine, data.haystack, data.needle, opts.method_type)
            outcome = SearchOutcome(matches=[best], haystack=data.haystack)
            candidates = [best]
        else:
            outcome = search_multiple_scales(
                self._engine,
                data.haystack,
                data.needle,
                opts.confidence,
                opts.scale_steps,
                opts.method_type,
                first_match=True,
                debug=opts.debug,
            )
            candidates = outcome.matches[:1]
        if outcome.best_rejected is not None:
            candidates.append(outcome.best_rejected)
        if profile:
            marks.append(("search", time.perf_counter()))

        if opts.debug:
            self._debug_render(data, candidates, "find_match")

        result = self._validate(candidates, data)[0]
        if profile:
            marks.append(("validate", time.perf_counter()))
            _log_profile("find_match", t0, marks)
        return result

    def find_matches(
        self, request: Optional[SearchRequest] = None, **overrides: Any
    ) -> List[MatchResult]:
        request = self._as_request(request, overrides)
        profile = _profile_enabled()
        marks: List[Tuple[str, float]] = []
        t0 = time.perf_counter()

        data = self._init_data(request)
        opts = data.options
        if profile:
            marks.append(("load", time.perf_counter()))

        if opts.is_rotation:
            outcome = self._rotation_outcome(data)
        elif not opts.is_search_multiple_scales:
            outcome = match_images_by_writing_over(
                self._engine,
                data.haystack,
                data.needle,
                opts.confidence,
                opts.method_type,
                debug=opts.debug,
            )
        else:
            outcome = search_multiple_scales(
                self._engine,
                data.haystack,
                data.needle,
                opts.confidence,
                opts.scale_steps,
                opts.method_type,
                debug=opts.debug,
            )
        if profile:
            marks.append(("search", time.perf_counter()))

        suppressed = filter_match_results(outcome.matches)
        if profile:
            marks.append(("suppress", time.perf_counter()))
        if opts.debug:
            self._debug_render(data, suppressed, "find_matches")

        candidates = list(suppressed)
        if outcome.best_rejected is not None:
            candidates.append(outcome.best_rejected)
        results = self._validate(candidates, data)
        if profile:
            marks.append(("validate", time.perf_counter()))
            _log_profile("find_matches", t0, marks)
        return results


def _log_profile(label: str, t0: float, marks: List[Tuple[str, float]]) -> None:
    prev = t0
    parts = []
    for name, ts in marks:
        parts.append(f"{name}={((ts - prev) * 1000.0):.2f}ms")
        prev = ts
    parts.append(f"total={((prev - t0) * 1000.0):.2f}ms")
    logger.info("%s profile: %s", label, " ".join(parts))


finder = TemplateMatchingFinder()
