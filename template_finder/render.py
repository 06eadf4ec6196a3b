"""
Diagnostic rendering of match results.

Used by the ``debug`` request flag and by the demo app; none of it feeds back
into the search.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Dict, Optional, Sequence

import cv2
import numpy as np

from .types import MatchResult, Region

logger = logging.getLogger(__name__)

DEBUG_DIR_ENV = "TEMPLATE_FINDER_DEBUG_DIR"
MATCH_COLOR = (0, 255, 0)
SELECTED_COLOR = (0, 0, 255)


def _ensure_three_channel(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return np.stack([img] * 3, axis=-1)
    return img


def _rect_corners(region: Region):
    tl = (int(round(region.left)), int(round(region.top)))
    br = (int(round(region.right)), int(round(region.bottom)))
    return tl, br


def render_matches(
    haystack_bgr: np.ndarray,
    matches: Sequence[MatchResult],
    selected: Optional[int] = None,
) -> np.ndarray:
    """Draw every match rectangle on a copy of the haystack; returns RGB."""
    canvas = _ensure_three_channel(haystack_bgr).copy()
    for idx, match in enumerate(matches):
        tl, br = _rect_corners(match.location)
        color = SELECTED_COLOR if idx == selected else MATCH_COLOR
        cv2.rectangle(canvas, tl, br, color, 2)
        cv2.putText(
            canvas,
            f"{match.confidence:.3f}",
            (tl[0], max(12, tl[1] - 4)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.4,
            color,
            1,
            cv2.LINE_AA,
        )
    return cv2.cvtColor(canvas, cv2.COLOR_BGR2RGB)


def render_zoom_image(
    haystack_rgb: np.ndarray, match: MatchResult, zoom: int = 98
) -> np.ndarray:
    """
    Crop the haystack around a match.

    ``zoom`` interpolates between the full image (0) and the match rectangle
    with a small margin (100).
    """
    th, tw = haystack_rgb.shape[:2]
    (tlx, tly), (brx, bry) = _rect_corners(match.location)

    if zoom <= 0:
        zx0, zy0 = 0, 0
        zx1, zy1 = tw, th
    elif zoom >= 100:
        zx0, zy0 = max(0, tlx), max(0, tly)
        zx1, zy1 = min(tw, brx), min(th, bry)
    else:
        max_pad = max(8, int(min(th, tw) * 0.02))
        t = zoom / 100.0
        pad_factor = (100 - zoom) / 100.0
        pad = int(max_pad * (1 + 9 * pad_factor))
        bbox_x0 = max(0, tlx - pad)
        bbox_y0 = max(0, tly - pad)
        bbox_x1 = min(tw, brx + pad)
        bbox_y1 = min(th, bry + pad)
        zx0 = int(bbox_x0 * t)
        zy0 = int(bbox_y0 * t)
        zx1 = int(tw * (1 - t) + bbox_x1 * t)
        zy1 = int(th * (1 - t) + bbox_y1 * t)

    zx0 = max(0, min(zx0, tw - 1))
    zy0 = max(0, min(zy0, th - 1))
    zx1 = max(zx0 + 1, min(zx1, tw))
    zy1 = max(zy0 + 1, min(zy1, th))

    region = haystack_rgb[zy0:zy1, zx0:zx1].copy()
    cv2.rectangle(
        region,
        (tlx - zx0, tly - zy0),
        (brx - zx0, bry - zy0),
        SELECTED_COLOR[::-1],
        2,
    )
    return region


def render_primary_views(
    haystack_bgr: np.ndarray,
    needle_bgr: np.ndarray,
    matches: Sequence[MatchResult],
    match_index: int,
) -> Dict[str, np.ndarray]:
    if not matches:
        raise RuntimeError("No matches available to render")
    idx = max(0, min(match_index, len(matches) - 1))
    overview = render_matches(haystack_bgr, matches, selected=idx)
    haystack_rgb = cv2.cvtColor(_ensure_three_channel(haystack_bgr), cv2.COLOR_BGR2RGB)
    return {
        "needle": cv2.cvtColor(_ensure_three_channel(needle_bgr), cv2.COLOR_BGR2RGB),
        "overview": overview,
        "zoom_focus": render_zoom_image(haystack_rgb, matches[idx], zoom=98),
    }


def format_match_summary(matches: Sequence[MatchResult], match_index: int) -> str:
    if not matches:
        return "No matches available."
    idx = max(0, min(match_index, len(matches) - 1))
    match = matches[idx]
    loc = match.location
    lines = [
        f"Match #{idx + 1} / {len(matches)}",
        f"Confidence: {match.confidence:.3f}",
        f"Region: left {loc.left:.1f}, top {loc.top:.1f}, "
        f"{loc.width:.1f} x {loc.height:.1f}",
    ]
    return "  \n".join(lines)


def save_debug_image(image_rgb: np.ndarray, label: str) -> Optional[str]:
    """Write an RGB image to the debug directory, if one is configured."""
    out_dir = os.getenv(DEBUG_DIR_ENV, "").strip()
    if not out_dir:
        return None
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, f"{label}_{time.time_ns()}.png")
    cv2.imwrite(path, cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR))
    logger.info("debug image written to %s", path)
    return path
