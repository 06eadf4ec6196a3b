#!/usr/bin/env python3

import argparse
import math
import statistics
import time
from typing import Dict, List, Tuple

import numpy as np

from create_sample_images import create_haystack, create_needle, rotate_image
from template_finder import TemplateMatchingFinder

CASE_MATRIX: List[Tuple[str, float, int, bool]] = [
    # name, needle scale in haystack, planted copies, rotation
    ("single_1x", 1.0, 1, False),
    ("multi_1x", 1.0, 4, False),
    ("shrunk_0p8x", 0.8, 2, False),
    ("grown_1p25x", 1.25, 2, False),
    ("rotated_30deg", 1.0, 1, True),
]


def _percentile(sorted_vals: List[float], p: float) -> float:
    if not sorted_vals:
        return 0.0
    k = (len(sorted_vals) - 1) * (p / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_vals[int(k)]
    return sorted_vals[f] * (c - k) + sorted_vals[c] * (k - f)


def _format_ms(value_s: float) -> str:
    return f"{value_s * 1000.0:.2f} ms"


def _resolve_cases(selected: List[str]) -> List[Tuple[str, float, int, bool]]:
    if not selected:
        return CASE_MATRIX
    by_name = {case[0]: case for case in CASE_MATRIX}
    resolved = []
    for name in selected:
        item = by_name.get(name)
        if not item:
            raise ValueError(f"Unknown case '{name}'. Available: {', '.join(by_name)}")
        resolved.append(item)
    return resolved


def _build_case(scale: float, copies: int, rotation: bool, size: Tuple[int, int]):
    needle = create_needle()
    if rotation:
        haystack = create_haystack(needle, [], size=size)
        rotated = rotate_image(create_needle(96, 80), 30.0)
        h, w = rotated.shape[:2]
        haystack[60:60 + h, 80:80 + w] = rotated
        return create_needle(96, 80), haystack
    step_x = int(needle.shape[1] * scale) + 40
    placements = [
        (30 + (i % 4) * step_x, 40 + (i // 4) * (int(needle.shape[0] * scale) + 40), scale)
        for i in range(copies)
    ]
    return needle, create_haystack(needle, placements, size=size)


def _run_benchmark(
    finder: TemplateMatchingFinder,
    cases: List[Tuple[str, float, int, bool]],
    size: Tuple[int, int],
    iterations: int,
    repeats: int,
    warmup: int,
) -> Dict[str, List[float]]:
    timings: Dict[str, List[float]] = {case[0]: [] for case in cases}
    images: Dict[str, Tuple[np.ndarray, np.ndarray]] = {
        name: _build_case(scale, copies, rotation, size)
        for name, scale, copies, rotation in cases
    }

    for _ in range(warmup):
        for name, _, _, rotation in cases:
            needle, haystack = images[name]
            finder.find_matches(needle=needle, haystack=haystack, is_rotation=rotation)

    for _ in range(repeats):
        for _ in range(iterations):
            for name, _, _, rotation in cases:
                needle, haystack = images[name]
                start = time.perf_counter()
                finder.find_matches(needle=needle, haystack=haystack, is_rotation=rotation)
                timings[name].append(time.perf_counter() - start)

    return timings


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark find_matches runtime.")
    parser.add_argument(
        "--iterations",
        type=int,
        default=5,
        help="Iterations per repeat (per case).",
    )
    parser.add_argument(
        "--repeats",
        type=int,
        default=3,
        help="Repeat count for the iteration loop.",
    )
    parser.add_argument(
        "--warmup",
        type=int,
        default=1,
        help="Warmup passes before timing.",
    )
    parser.add_argument(
        "--case",
        action="append",
        default=[],
        help="Case name to benchmark (repeatable).",
    )
    parser.add_argument(
        "--width",
        type=int,
        default=960,
        help="Synthetic haystack width.",
    )
    parser.add_argument(
        "--height",
        type=int,
        default=540,
        help="Synthetic haystack height.",
    )
    parser.add_argument(
        "--method",
        default=None,
        help="Override the similarity method (e.g. TM_SQDIFF_NORMED).",
    )
    parser.add_argument(
        "--single-scale",
        action="store_true",
        help="Disable the multi-scale search.",
    )
    args = parser.parse_args()

    finder = TemplateMatchingFinder()
    overrides = {}
    if args.method:
        overrides["method_type"] = args.method
    if args.single_scale:
        overrides["is_search_multiple_scales"] = False
    if overrides:
        finder.set_config(provider_data=overrides)

    cases = _resolve_cases(args.case)
    timings = _run_benchmark(
        finder=finder,
        cases=cases,
        size=(args.width, args.height),
        iterations=args.iterations,
        repeats=args.repeats,
        warmup=args.warmup,
    )

    options = finder.get_config().provider_data
    total_runs = sum(len(v) for v in timings.values())
    print(
        f"Runs: {total_runs} | cases: {len(cases)} | "
        f"iterations: {args.iterations} | repeats: {args.repeats} | warmup: {args.warmup}"
    )
    print(
        "options:",
        f"method={options.method_type.value}",
        f"multi_scale={options.is_search_multiple_scales}",
        f"scales={list(options.scale_steps)}",
    )

    combined = []
    for name, values in timings.items():
        combined.extend(values)
        sorted_vals = sorted(values)
        print(
            f"{name}: median {_format_ms(statistics.median(sorted_vals))}, "
            f"mean {_format_ms(statistics.mean(sorted_vals))}, "
            f"p95 {_format_ms(_percentile(sorted_vals, 95))}, "
            f"min {_format_ms(sorted_vals[0])}, "
            f"max {_format_ms(sorted_vals[-1])}"
        )

    if combined:
        sorted_all = sorted(combined)
        print(
            f"overall: median {_format_ms(statistics.median(sorted_all))}, "
            f"mean {_format_ms(statistics.mean(sorted_all))}, "
            f"p95 {_format_ms(_percentile(sorted_all, 95))}, "
            f"min {_format_ms(sorted_all[0])}, "
            f"max {_format_ms(sorted_all[-1])}"
        )


if __name__ == "__main__":
    main()
