import logging
import os
from concurrent.futures import ThreadPoolExecutor

import cv2
import numpy as np
import pytest
from PIL import Image

from create_sample_images import create_haystack
from template_finder import (
    EmptyImageError,
    InvalidRegionError,
    MethodType,
    NoMatchError,
    PixelDensity,
    Region,
    SearchRequest,
    TemplateMatchingFinder,
    TemplateTooLargeError,
)
from template_finder.render import DEBUG_DIR_ENV
from template_finder.finder import PROFILE_ENV

PLANTED = [(30, 30), (200, 40), (90, 160), (240, 180)]


def _locations(matches):
    return sorted((int(m.location.left), int(m.location.top)) for m in matches)


@pytest.mark.e2e
@pytest.mark.parametrize("k", [1, 3, 4])
def test_find_matches_returns_every_planted_copy(make_finder, needle, k):
    haystack = create_haystack(needle, [(x, y, 1.0) for x, y in PLANTED[:k]], size=(320, 240))

    matches = make_finder().find_matches(needle=needle, haystack=haystack, confidence=0.9)

    assert _locations(matches) == sorted(PLANTED[:k])
    assert all(m.location.width == 40 and m.location.height == 32 for m in matches)
    confidences = [m.confidence for m in matches]
    assert confidences == sorted(confidences, reverse=True)


@pytest.mark.e2e
@pytest.mark.parametrize("multi_scale", [True, False])
def test_find_match_returns_best_region(make_finder, needle, multi_scale):
    haystack = create_haystack(needle, [(120, 70, 1.0)], size=(320, 240))

    result = make_finder().find_match(
        needle=needle, haystack=haystack, is_search_multiple_scales=multi_scale
    )

    assert result.location == Region(120, 70, 40, 32)
    assert result.confidence > 0.99


@pytest.mark.e2e
def test_find_matches_single_scale(make_finder, needle):
    haystack = create_haystack(needle, [(x, y, 1.0) for x, y in PLANTED], size=(320, 240))

    matches = make_finder().find_matches(
        SearchRequest(needle=needle, haystack=haystack, is_search_multiple_scales=False)
    )

    assert _locations(matches) == sorted(PLANTED)


@pytest.mark.e2e
def test_find_matches_shrunken_copy(make_finder, needle):
    haystack = create_haystack(needle, [(100, 60, 0.8)], size=(320, 240))

    matches = make_finder().find_matches(needle=needle, haystack=haystack, confidence=0.9)

    assert matches[0].location == Region(100, 60, 32, 26)


@pytest.mark.e2e
def test_squared_difference_sentinel_confidence(make_finder, needle):
    haystack = create_haystack(needle, [(64, 48, 1.0)], size=(320, 240))

    result = make_finder().find_match(
        needle=needle,
        haystack=haystack,
        confidence=0.99,
        method_type=MethodType.TM_SQDIFF_NORMED,
    )

    assert result.location == Region(64, 48, 40, 32)
    assert result.confidence >= 0.998


@pytest.mark.e2e
def test_find_match_no_match_reports_best_confidence(make_finder, needle, plain_haystack):
    with pytest.raises(NoMatchError) as excinfo:
        make_finder().find_match(needle=needle, haystack=plain_haystack, confidence=0.95)
    assert excinfo.value.best_confidence is not None
    assert excinfo.value.best_confidence < 0.95


@pytest.mark.e2e
def test_find_matches_no_match_reports_best_confidence(make_finder, needle, plain_haystack):
    with pytest.raises(NoMatchError) as excinfo:
        make_finder().find_matches(needle=needle, haystack=plain_haystack, confidence=0.95)
    assert excinfo.value.best_confidence is not None


@pytest.mark.unit
def test_missing_needle_file_raises_empty_image(make_finder, plain_haystack, tmp_path):
    missing = os.path.join(tmp_path, "missing.png")
    with pytest.raises(EmptyImageError):
        make_finder().find_match(needle=missing, haystack=plain_haystack)


@pytest.mark.unit
def test_empty_screen_capture_raises_empty_image(make_finder, needle):
    with pytest.raises(EmptyImageError):
        make_finder().find_match(needle=needle)


@pytest.mark.unit
def test_needle_larger_than_haystack(make_finder):
    haystack = np.zeros((100, 100, 3), dtype=np.uint8)
    needle = np.zeros((60, 300, 3), dtype=np.uint8)
    with pytest.raises(TemplateTooLargeError):
        make_finder().find_match(needle=needle, haystack=haystack)
    # single-scale searches check the needle at full size
    with pytest.raises(TemplateTooLargeError):
        make_finder().find_match(
            needle=np.zeros((120, 50, 3), dtype=np.uint8),
            haystack=haystack,
            is_search_multiple_scales=False,
        )


@pytest.mark.e2e
def test_images_loaded_from_files_and_pil(make_finder, needle, tmp_path):
    haystack = create_haystack(needle, [(150, 100, 1.0)], size=(320, 240))
    hay_path = os.path.join(tmp_path, "haystack.png")
    cv2.imwrite(hay_path, haystack)
    needle_pil = Image.fromarray(cv2.cvtColor(needle, cv2.COLOR_BGR2RGB))

    result = make_finder().find_match(needle=needle_pil, haystack=hay_path)

    assert result.location == Region(150, 100, 40, 32)


@pytest.mark.e2e
def test_screen_capture_is_scaled_to_logical_pixels(make_finder, needle):
    screen = create_haystack(needle, [(200, 100, 1.0)], size=(640, 480))
    finder = make_finder(screen=screen, density=PixelDensity(2.0, 2.0))

    result = finder.find_match(needle=needle)

    assert result.location == Region(100, 50, 20, 16)


@pytest.mark.e2e
def test_roi_restricts_search_and_offsets_results(make_finder, needle):
    screen = create_haystack(needle, [(200, 100, 1.0), (20, 400, 1.0)], size=(640, 480))
    finder = make_finder(screen=screen, density=PixelDensity(2.0, 2.0))

    matches = finder.find_matches(needle=needle, roi=Region(50, 25, 150, 100))

    assert len(matches) == 1
    assert matches[0].location == Region(100, 50, 20, 16)


@pytest.mark.unit
@pytest.mark.parametrize(
    "roi",
    [Region(300, 0, 50, 50), Region(-10, 0, 50, 50), Region(0, 200, 100, 41)],
)
def test_roi_outside_screen_never_clips(make_finder, needle, roi):
    screen = np.zeros((240, 320, 3), dtype=np.uint8)
    finder = make_finder(screen=screen)
    with pytest.raises(InvalidRegionError):
        finder.find_matches(needle=needle, roi=roi)


@pytest.mark.unit
def test_set_config_merges_and_isolates(make_finder):
    finder = make_finder()
    before = finder.get_config()

    after = finder.set_config(confidence=0.9, provider_data={"method_type": "TM_CCORR_NORMED"})
    finder.set_config({"provider_data": {"scale_steps": (1.0, 0.75)}})

    current = finder.get_config()
    assert after is not before
    assert before.confidence == 0.8
    assert before.provider_data.method_type is MethodType.TM_CCOEFF_NORMED
    assert current.confidence == 0.9
    assert current.provider_data.method_type is MethodType.TM_CCORR_NORMED
    assert current.provider_data.scale_steps == (1.0, 0.75)


@pytest.mark.unit
def test_set_config_unknown_option(make_finder):
    with pytest.raises(KeyError):
        make_finder().set_config(treshold=0.5)


@pytest.mark.e2e
def test_configured_confidence_applies(make_finder, needle, plain_haystack):
    finder = make_finder()
    finder.set_config(confidence=0.0)

    # every candidate passes a zero threshold
    result = finder.find_match(needle=needle, haystack=plain_haystack)
    assert result.confidence >= 0.0


@pytest.mark.e2e
def test_debug_writes_images_and_profile_logs(make_finder, needle, tmp_path, monkeypatch, caplog):
    monkeypatch.setenv(DEBUG_DIR_ENV, str(tmp_path))
    monkeypatch.setenv(PROFILE_ENV, "1")
    caplog.set_level(logging.INFO, logger="template_finder")
    haystack = create_haystack(needle, [(120, 70, 1.0)], size=(320, 240))

    make_finder().find_matches(needle=needle, haystack=haystack, debug=True)

    assert any(name.endswith(".png") for name in os.listdir(tmp_path))
    assert "find_matches profile" in caplog.text


@pytest.mark.e2e
def test_roi_result_matches_full_screen_result_at_fractional_density(make_finder, needle):
    screen = create_haystack(needle, [(201, 101, 1.0)], size=(640, 480))
    finder = make_finder(screen=screen, density=PixelDensity(1.5, 1.5))

    full = finder.find_match(needle=needle)
    cropped = finder.find_match(needle=needle, roi=Region(101, 51, 150, 100))

    for loc in (full.location, cropped.location):
        assert loc.left == pytest.approx(201 / 1.5)
        assert loc.top == pytest.approx(101 / 1.5)
        assert loc.width == pytest.approx(40 / 1.5)
        assert loc.height == pytest.approx(32 / 1.5)


@pytest.mark.e2e
def test_concurrent_requests_are_isolated_from_set_config(make_finder, needle):
    haystack = create_haystack(needle, [(x, y, 1.0) for x, y in PLANTED], size=(320, 240))
    before = haystack.copy()
    finder = make_finder()
    expected = _locations(finder.find_matches(needle=needle, haystack=haystack, confidence=0.9))

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [
            pool.submit(finder.find_matches, needle=needle, haystack=haystack, confidence=0.9)
            for _ in range(8)
        ]
        flip = 0
        while not all(f.done() for f in futures):
            steps = (1.0, 0.9, 0.8) if flip % 2 else (1.0, 0.9, 0.8, 0.7)
            finder.set_config(provider_data={"scale_steps": steps})
            flip += 1
        results = [f.result() for f in futures]

    assert all(_locations(r) == expected for r in results)
    assert np.array_equal(haystack, before)


@pytest.mark.unit
def test_running_request_keeps_the_config_it_started_with(engine, needle, plain_haystack):
    class ConfigChangingEngine(type(engine)):
        finder = None

        def match(self, haystack, needle, method):
            self.finder.set_config(confidence=0.0)
            return super().match(haystack, needle, method)

    engine = ConfigChangingEngine()
    finder = TemplateMatchingFinder(engine=engine)
    engine.finder = finder
    finder.set_config(confidence=0.95)

    with pytest.raises(NoMatchError):
        finder.find_match(needle=needle, haystack=plain_haystack)
    assert finder.get_config().confidence == 0.0
    # the next request reads the new config
    assert finder.find_match(needle=needle, haystack=plain_haystack).confidence >= 0.0
