import pytest

from template_finder import (
    FinderConfig,
    MethodType,
    RotationOption,
    SearchRequest,
    default_config,
    merge_config,
    resolve_confidence,
)
from template_finder.config import resolve_request


@pytest.mark.unit
@pytest.mark.parametrize(
    "requested,method,expected",
    [
        (None, MethodType.TM_CCOEFF_NORMED, 0.8),
        (0.99, MethodType.TM_SQDIFF_NORMED, 0.998),
        (0.99, MethodType.TM_SQDIFF, 0.998),
        (0.99, MethodType.TM_CCORR_NORMED, 0.8),
        (0.99, MethodType.TM_CCOEFF_NORMED, 0.8),
        (0.95, MethodType.TM_SQDIFF_NORMED, 0.95),
        (0.5, MethodType.TM_CCOEFF_NORMED, 0.5),
    ],
)
def test_resolve_confidence(requested, method, expected):
    assert resolve_confidence(requested, method, 0.8) == pytest.approx(expected)


@pytest.mark.unit
def test_merge_config_keeps_unspecified_fields():
    base = default_config()
    merged = merge_config(
        base, {"confidence": 0.7, "provider_data": {"method_type": "TM_SQDIFF_NORMED"}}
    )

    assert merged.confidence == 0.7
    assert merged.provider_data.method_type is MethodType.TM_SQDIFF_NORMED
    assert merged.provider_data.scale_steps == base.provider_data.scale_steps
    assert merged.provider_data.rotation_option == base.provider_data.rotation_option
    # the old object is untouched
    assert base.confidence == 0.8
    assert base.provider_data.method_type is MethodType.TM_CCOEFF_NORMED


@pytest.mark.unit
def test_merge_config_nested_rotation_option():
    merged = merge_config(
        default_config(), {"provider_data": {"rotation_option": {"overlap": 0.4}}}
    )

    option = merged.provider_data.rotation_option
    assert option.overlap == 0.4
    assert option.range == 180.0
    assert option.min_dst_length == 256


@pytest.mark.unit
def test_merge_config_accepts_full_instance():
    replacement = FinderConfig(confidence=0.6)
    assert merge_config(default_config(), replacement) is replacement


@pytest.mark.unit
def test_merge_config_rejects_unknown_option():
    with pytest.raises(KeyError):
        merge_config(default_config(), {"threshold": 0.5})
    with pytest.raises(KeyError):
        merge_config(default_config(), {"provider_data": {"scales": [1.0]}})


@pytest.mark.unit
def test_merge_config_coerces_scale_steps():
    merged = merge_config(default_config(), {"provider_data": {"scale_steps": [1, 0.5]}})
    assert merged.provider_data.scale_steps == (1.0, 0.5)


@pytest.mark.unit
def test_resolve_request_uses_config_defaults():
    options = resolve_request(SearchRequest(needle="n.png"), default_config())

    assert options.confidence == 0.8
    assert options.method_type is MethodType.TM_CCOEFF_NORMED
    assert options.scale_steps == (1.0, 0.9, 0.8, 0.7, 0.6, 0.5)
    assert options.is_search_multiple_scales is True
    assert options.is_rotation is False
    assert options.roi is None
    assert options.debug is False


@pytest.mark.unit
def test_resolve_request_overrides():
    request = SearchRequest(
        needle="n.png",
        confidence=0.99,
        method_type=MethodType.TM_SQDIFF_NORMED,
        scale_steps=[1.0, 0.75],
        is_rotation=True,
        rotation_option={"range": 30.0},
        debug=True,
    )
    options = resolve_request(request, default_config())

    assert options.confidence == pytest.approx(0.998)
    assert options.scale_steps == (1.0, 0.75)
    assert options.is_rotation is True
    assert options.rotation_option == RotationOption(range=30.0, overlap=0.1, min_dst_length=256)
    assert options.debug is True


@pytest.mark.unit
def test_empty_scale_steps_disable_multi_scale():
    options = resolve_request(SearchRequest(needle="n.png", scale_steps=[]), default_config())
    assert options.is_search_multiple_scales is False
