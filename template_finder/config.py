"""
Process-wide defaults and per-request option resolution.

The configuration is an immutable ``FinderConfig``; ``merge_config`` builds a
new object so a request that already read the old one is unaffected.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union

from .types import (
    FinderConfig,
    MethodType,
    ProviderOptions,
    Region,
    RotationOption,
    SearchRequest,
)

# ---------- defaults ----------
DEFAULT_CONFIDENCE = 0.8
SENTINEL_CONFIDENCE = 0.99
SQDIFF_CONFIDENCE_FLOOR = 0.998
DEFAULT_SCALE_STEPS = (1.0, 0.9, 0.8, 0.7, 0.6, 0.5)
DEFAULT_METHOD = MethodType.TM_CCOEFF_NORMED
DEFAULT_ROTATION_RANGE = 180.0
DEFAULT_ROTATION_OVERLAP = 0.1
DEFAULT_ROTATION_MIN_DST_LENGTH = 256


def default_config() -> FinderConfig:
    return FinderConfig(
        confidence=DEFAULT_CONFIDENCE,
        provider_data=ProviderOptions(
            scale_steps=DEFAULT_SCALE_STEPS,
            method_type=DEFAULT_METHOD,
            debug=False,
            is_search_multiple_scales=True,
            is_rotation=False,
            rotation_option=RotationOption(
                range=DEFAULT_ROTATION_RANGE,
                overlap=DEFAULT_ROTATION_OVERLAP,
                min_dst_length=DEFAULT_ROTATION_MIN_DST_LENGTH,
            ),
        ),
    )


def _coerce_field(name: str, value: Any) -> Any:
    if name == "method_type" and value is not None:
        return MethodType(value)
    if name == "scale_steps" and value is not None:
        return tuple(float(v) for v in value)
    return value


def merge_config(config: Any, overrides: Union[Mapping[str, Any], Any]) -> Any:
    """
    Merge overrides into a config dataclass, recursing into nested dataclasses.

    Explicit fields replace the current value; unspecified fields keep it.
    Nested dataclass fields accept either a mapping (merged recursively) or a
    full replacement instance.

    Args:
        config: A frozen dataclass instance (``FinderConfig`` or one of its
            nested option types).
        overrides: Mapping of field name to new value, or an instance of the
            same dataclass whose fields all take precedence.

    Returns:
        A new instance of the same type.

    Raises:
        KeyError: If ``overrides`` names a field the dataclass does not have.
    """
    if dataclasses.is_dataclass(overrides) and not isinstance(overrides, type):
        if type(overrides) is type(config):
            return overrides
        overrides = {
            f.name: getattr(overrides, f.name) for f in dataclasses.fields(overrides)
        }
    known = {f.name for f in dataclasses.fields(config)}
    changes = {}
    for name, value in overrides.items():
        if name not in known:
            raise KeyError(f"Unknown option '{name}' for {type(config).__name__}")
        current = getattr(config, name)
        if dataclasses.is_dataclass(current) and isinstance(value, Mapping):
            changes[name] = merge_config(current, value)
        else:
            changes[name] = _coerce_field(name, value)
    return dataclasses.replace(config, **changes)


def resolve_confidence(
    requested: Optional[float], method: MethodType, default: float
) -> float:
    """
    Effective threshold for a request.

    0.99 is the host framework's untouched default. Squared-difference scores
    crowd near 1.0, so that sentinel becomes 0.998 for them; every other
    method falls back to the configured default instead.
    """
    if requested is None:
        return default
    if requested == SENTINEL_CONFIDENCE:
        if method.is_squared_difference:
            return SQDIFF_CONFIDENCE_FLOOR
        return default
    return float(requested)


@dataclass(frozen=True)
class ResolvedOptions:
    confidence: float
    method_type: MethodType
    scale_steps: Tuple[float, ...]
    is_search_multiple_scales: bool
    is_rotation: bool
    rotation_option: RotationOption
    roi: Optional[Region]
    debug: bool


def resolve_request(request: SearchRequest, config: FinderConfig) -> ResolvedOptions:
    provider = config.provider_data
    method = (
        MethodType(request.method_type)
        if request.method_type is not None
        else provider.method_type
    )
    confidence = resolve_confidence(request.confidence, method, config.confidence)
    if request.scale_steps is not None:
        scale_steps = tuple(float(s) for s in request.scale_steps)
    else:
        scale_steps = tuple(provider.scale_steps)
    if request.is_search_multiple_scales is not None:
        multi_scale = bool(request.is_search_multiple_scales)
    else:
        multi_scale = provider.is_search_multiple_scales
    if not scale_steps:
        multi_scale = False
    is_rotation = (
        bool(request.is_rotation)
        if request.is_rotation is not None
        else provider.is_rotation
    )
    rotation_option = provider.rotation_option
    if request.rotation_option is not None:
        rotation_option = merge_config(rotation_option, request.rotation_option)
    debug = bool(request.debug) if request.debug is not None else provider.debug
    return ResolvedOptions(
        confidence=confidence,
        method_type=method,
        scale_steps=scale_steps,
        is_search_multiple_scales=multi_scale,
        is_rotation=is_rotation,
        rotation_option=rotation_option,
        roi=request.roi,
        debug=debug,
    )
