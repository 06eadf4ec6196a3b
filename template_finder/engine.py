"""
Default vision engine: the pixel-level primitives the search pipeline calls.

The pipeline only depends on the method names below, so any object with the
same shape (a fake in tests, a GPU backend) can be passed to the finder.
OpenCV provides score maps, resizing and ORB features; ``mss`` grabs the
screen.
"""

from __future__ import annotations

import logging
import math
import os
from typing import Dict, List, Optional, Tuple

import cv2
import mss
import numpy as np
from PIL import Image

from .errors import EmptyImageError
from .types import LoadedImage, MethodType, OrientedMatch, PixelDensity

logger = logging.getLogger(__name__)

# ---------- configuration ----------
# Every family is evaluated through its normalized OpenCV variant so the
# scores share one 0..1 "higher is better" scale.
CV_METHODS: Dict[MethodType, int] = {
    MethodType.TM_SQDIFF: cv2.TM_SQDIFF_NORMED,
    MethodType.TM_SQDIFF_NORMED: cv2.TM_SQDIFF_NORMED,
    MethodType.TM_CCORR: cv2.TM_CCORR_NORMED,
    MethodType.TM_CCORR_NORMED: cv2.TM_CCORR_NORMED,
    MethodType.TM_CCOEFF: cv2.TM_CCOEFF_NORMED,
    MethodType.TM_CCOEFF_NORMED: cv2.TM_CCOEFF_NORMED,
}

ORB_FEATURES = 5000
ORB_RATIO = 0.75
MIN_INLIERS = 6
RANSAC_REPROJ_THRESHOLD = 5.0
MAX_ROTATED_INSTANCES = 16
MAX_FEATURE_UPSCALE = 2.0


def ensure_bgr(img: np.ndarray) -> np.ndarray:
    """Normalize any decoded buffer to 3-channel uint8 BGR."""
    if img.dtype == np.uint16:
        img = (img >> 8).astype(np.uint8)
    elif np.issubdtype(img.dtype, np.floating) and img.size and img.max() <= 1.0:
        img = np.round(np.clip(img, 0.0, 1.0) * 255.0).astype(np.uint8)
    elif img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    channels = img.shape[2]
    if channels == 1:
        return cv2.cvtColor(img[:, :, 0], cv2.COLOR_GRAY2BGR)
    if channels == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    return img


def _to_gray(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return img
    return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)


class VisionEngine:
    """OpenCV/mss implementation of the engine contract."""

    # ---------- score map ----------
    def score_map(
        self, haystack: np.ndarray, needle: np.ndarray, method: MethodType
    ) -> np.ndarray:
        res = cv2.matchTemplate(haystack, needle, CV_METHODS[MethodType(method)])
        if MethodType(method).is_squared_difference:
            res = 1.0 - res
        return res

    def match(
        self, haystack: np.ndarray, needle: np.ndarray, method: MethodType
    ) -> Tuple[float, Tuple[int, int]]:
        """Best confidence and its top-left location for one needle/haystack pair."""
        res = self.score_map(haystack, needle, method)
        _, max_val, _, max_loc = cv2.minMaxLoc(res)
        return float(max_val), (int(max_loc[0]), int(max_loc[1]))

    # ---------- geometry ----------
    def resize(self, image: np.ndarray, factor: float) -> np.ndarray:
        h, w = image.shape[:2]
        ws = int(round(w * factor))
        hs = int(round(h * factor))
        if ws <= 0 or hs <= 0:
            return image[:0, :0].copy()
        if ws == w and hs == h:
            return image.copy()
        interpolation = cv2.INTER_AREA if factor < 1.0 else cv2.INTER_LINEAR
        return cv2.resize(image, (ws, hs), interpolation=interpolation)

    # ---------- features ----------
    def feature_match(
        self,
        haystack: np.ndarray,
        needle: np.ndarray,
        angle_range: float,
        min_dim: int,
    ) -> List[OrientedMatch]:
        """
        Locate rotated copies of the needle from ORB correspondences.

        Instances are peeled off one at a time: a RANSAC similarity fit over
        the remaining correspondences, then its inliers are removed and the
        fit is repeated. Fits rotated further than ``angle_range`` degrees are
        discarded.

        Args:
            haystack: BGR image searched within.
            needle: BGR template.
            angle_range: Maximum absolute rotation in degrees.
            min_dim: Needles whose longer side is below this are upsampled
                (together with the haystack, up to ``MAX_FEATURE_UPSCALE``)
                before keypoint extraction.

        Returns:
            Oriented matches in haystack pixel coordinates, possibly empty.
        """
        nh, nw = needle.shape[:2]
        factor = 1.0
        if min_dim and max(nh, nw) < min_dim:
            factor = min(MAX_FEATURE_UPSCALE, float(min_dim) / max(nh, nw))
        needle_f = _to_gray(self.resize(needle, factor) if factor != 1.0 else needle)
        hay_f = _to_gray(self.resize(haystack, factor) if factor != 1.0 else haystack)

        orb = cv2.ORB_create(ORB_FEATURES)
        kp1, des1 = orb.detectAndCompute(needle_f, None)
        kp2, des2 = orb.detectAndCompute(hay_f, None)
        if des1 is None or des2 is None or len(kp1) < MIN_INLIERS or len(kp2) < MIN_INLIERS:
            logger.debug("feature match: not enough keypoints")
            return []

        bf = cv2.BFMatcher(cv2.NORM_HAMMING)
        good = []
        for pair in bf.knnMatch(des1, des2, k=2):
            if len(pair) != 2:
                continue
            m, n = pair
            if m.distance < ORB_RATIO * n.distance:
                good.append(m)

        src = np.float32([kp1[m.queryIdx].pt for m in good]).reshape(-1, 1, 2)
        dst = np.float32([kp2[m.trainIdx].pt for m in good]).reshape(-1, 1, 2)
        corners = np.float32(
            [[0, 0], [needle_f.shape[1], 0], [needle_f.shape[1], needle_f.shape[0]], [0, needle_f.shape[0]]]
        ).reshape(-1, 1, 2)

        results: List[OrientedMatch] = []
        while len(src) >= MIN_INLIERS and len(results) < MAX_ROTATED_INSTANCES:
            M, inliers = cv2.estimateAffinePartial2D(
                src, dst, method=cv2.RANSAC, ransacReprojThreshold=RANSAC_REPROJ_THRESHOLD
            )
            if M is None or inliers is None:
                break
            inlier_mask = inliers.ravel().astype(bool)
            if inlier_mask.sum() < MIN_INLIERS:
                break
            src = src[~inlier_mask]
            dst = dst[~inlier_mask]

            angle = math.degrees(math.atan2(M[1, 0], M[0, 0]))
            if abs(angle) > angle_range:
                logger.debug("feature match: rejected fit at %.1f deg", angle)
                continue
            M_orig = M.copy()
            M_orig[:, 2] /= factor
            projected = cv2.transform(corners, M) / factor
            pts = tuple((float(p[0][0]), float(p[0][1])) for p in projected)
            score = self._warped_similarity(haystack, needle, M_orig)
            results.append(OrientedMatch(corners=pts, score=score, size=(float(nw), float(nh))))
        return results

    def _warped_similarity(
        self, haystack: np.ndarray, needle: np.ndarray, M: np.ndarray
    ) -> float:
        nh, nw = needle.shape[:2]
        # M maps needle to haystack; WARP_INVERSE_MAP samples the haystack at M(x)
        patch = cv2.warpAffine(
            haystack,
            M,
            (nw, nh),
            flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
        res = cv2.matchTemplate(patch, needle, cv2.TM_CCOEFF_NORMED)
        score = float(res[0, 0])
        if not np.isfinite(score):
            return 0.0
        return max(0.0, min(1.0, score))

    # ---------- io ----------
    def load_image(self, reference) -> LoadedImage:
        """Decode a path, PIL image or array; raises EmptyImageError on failure."""
        if isinstance(reference, LoadedImage):
            img = reference.image
            density = reference.pixel_density
        elif isinstance(reference, np.ndarray):
            img = reference
            density = PixelDensity()
        elif isinstance(reference, Image.Image):
            img = cv2.cvtColor(np.array(reference.convert("RGB")), cv2.COLOR_RGB2BGR)
            density = PixelDensity()
        elif isinstance(reference, (str, os.PathLike)):
            img = cv2.imread(os.fspath(reference), cv2.IMREAD_COLOR)
            density = PixelDensity()
        else:
            raise EmptyImageError(
                f"Failed to load {reference!r}, unsupported image reference."
            )
        if img is None or img.size == 0:
            raise EmptyImageError(f"Failed to load {_describe(reference)}, got empty image.")
        return LoadedImage(image=ensure_bgr(img), pixel_density=density)

    def capture_screen(self) -> LoadedImage:
        try:
            with mss.mss() as sct:
                monitor = sct.monitors[0]
                shot = sct.grab(monitor)
        except mss.ScreenShotError as exc:
            raise EmptyImageError(f"Failed to capture screen: {exc}") from exc
        frame = np.array(shot)[:, :, :3]
        density = PixelDensity(
            scale_x=shot.width / float(monitor["width"]),
            scale_y=shot.height / float(monitor["height"]),
        )
        return LoadedImage(image=np.ascontiguousarray(frame), pixel_density=density)

    def screen_size(self) -> Tuple[int, int]:
        with mss.mss() as sct:
            monitor = sct.monitors[0]
        return int(monitor["width"]), int(monitor["height"])


def _describe(reference) -> str:
    if isinstance(reference, (str, os.PathLike)):
        return os.fspath(reference)
    return type(reference).__name__


_DEFAULT_ENGINE: Optional[VisionEngine] = None


def default_engine() -> VisionEngine:
    global _DEFAULT_ENGINE
    if _DEFAULT_ENGINE is None:
        _DEFAULT_ENGINE = VisionEngine()
    return _DEFAULT_ENGINE
