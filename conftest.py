"""Pytest configuration: synthetic images and a screen-less engine"""
from typing import List, Optional, Tuple

import numpy as np
import pytest

from create_sample_images import create_haystack, create_texture
from template_finder import LoadedImage, PixelDensity, TemplateMatchingFinder, VisionEngine


class FakeScreenEngine(VisionEngine):
    """OpenCV engine whose screen is a fixed array instead of a real display"""

    def __init__(self, screen: Optional[np.ndarray] = None, density: PixelDensity = PixelDensity(), size=None):
        self.screen = screen
        self.density = density
        self.size = size
        self.match_calls: List[Tuple[Tuple[int, int], Tuple[int, int]]] = []

    def capture_screen(self) -> LoadedImage:
        if self.screen is None:
            return LoadedImage(image=np.zeros((0, 0, 3), dtype=np.uint8))
        return LoadedImage(image=self.screen.copy(), pixel_density=self.density)

    def screen_size(self) -> Tuple[int, int]:
        if self.size is not None:
            return self.size
        if self.screen is None:
            return 1920, 1080
        h, w = self.screen.shape[:2]
        return int(round(w / self.density.scale_x)), int(round(h / self.density.scale_y))

    def match(self, haystack, needle, method):
        self.match_calls.append((haystack.shape[:2], needle.shape[:2]))
        return super().match(haystack, needle, method)


@pytest.fixture
def needle():
    """Smooth random texture, 40x32"""
    return create_texture(40, 32, cell=4, seed=11)


@pytest.fixture
def noise_needle():
    """Pixel-level noise: correlates with itself only at zero shift"""
    rng = np.random.default_rng(5)
    return rng.integers(0, 256, size=(24, 30, 3), dtype=np.uint8)


@pytest.fixture
def plain_haystack(needle):
    return create_haystack(needle, [], size=(320, 240))


@pytest.fixture
def engine():
    return FakeScreenEngine()


@pytest.fixture
def make_finder():
    def _make(screen=None, density=PixelDensity(), size=None):
        return TemplateMatchingFinder(engine=FakeScreenEngine(screen, density, size))

    return _make
