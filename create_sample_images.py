"""Create synthetic haystack and needle images for tests and benchmarks"""
import argparse
import os
from typing import List, Sequence, Tuple

import cv2
import numpy as np

Placement = Tuple[int, int, float]


def create_needle(width: int = 48, height: int = 40, seed: int = 7) -> np.ndarray:
    """Draw a high-contrast icon-like needle that matches nowhere else"""
    rng = np.random.default_rng(seed)
    img = np.full((height, width, 3), 235, dtype=np.uint8)
    cv2.rectangle(img, (2, 2), (width - 3, height - 3), (30, 30, 160), 2)
    cv2.circle(img, (width // 3, height // 2), max(3, min(width, height) // 5), (20, 140, 20), -1)
    cv2.line(img, (width // 2, 6), (width - 6, height - 6), (160, 40, 20), 3)
    cv2.putText(
        img,
        "A",
        (width // 2, height // 2 + 4),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.5,
        (0, 0, 0),
        1,
        cv2.LINE_AA,
    )
    noise = rng.integers(0, 12, size=img.shape, dtype=np.uint8)
    return cv2.add(img, noise)


def create_texture(width: int, height: int, cell: int = 4, seed: int = 3) -> np.ndarray:
    """Smooth random texture; survives resampling and has no repeating pattern"""
    rng = np.random.default_rng(seed)
    coarse = rng.integers(0, 256, size=(max(2, height // cell), max(2, width // cell), 3), dtype=np.uint8)
    return cv2.resize(coarse, (width, height), interpolation=cv2.INTER_CUBIC)


def create_haystack(
    needle: np.ndarray,
    placements: Sequence[Placement],
    size: Tuple[int, int] = (480, 360),
    seed: int = 1,
) -> np.ndarray:
    """
    Paste scaled copies of the needle onto a smooth textured background.

    Each placement is (left, top, scale). The background is low-frequency
    so it never correlates strongly with the needle.
    """
    width, height = size
    rng = np.random.default_rng(seed)
    coarse = rng.integers(90, 170, size=(height // 40 + 2, width // 40 + 2, 3), dtype=np.uint8)
    background = cv2.resize(coarse, (width, height), interpolation=cv2.INTER_CUBIC)
    for left, top, scale in placements:
        nh, nw = needle.shape[:2]
        ws = int(round(nw * scale))
        hs = int(round(nh * scale))
        patch = needle if (ws, hs) == (nw, nh) else cv2.resize(needle, (ws, hs), interpolation=cv2.INTER_AREA if scale < 1 else cv2.INTER_LINEAR)
        background[top:top + hs, left:left + ws] = patch
    return background


def rotate_image(img: np.ndarray, angle: float, border_value=(128, 128, 128)) -> np.ndarray:
    h, w = img.shape[:2]
    M = cv2.getRotationMatrix2D((w / 2, h / 2), -angle, 1.0)
    cos = abs(M[0, 0])
    sin = abs(M[0, 1])
    nw = int(h * sin + w * cos)
    nh = int(h * cos + w * sin)
    M[0, 2] += nw / 2 - w / 2
    M[1, 2] += nh / 2 - h / 2
    return cv2.warpAffine(
        img,
        M,
        (nw, nh),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border_value,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Write sample needle/haystack images.")
    parser.add_argument("--out-dir", default=os.path.join("media", "samples"))
    parser.add_argument("--copies", type=int, default=3)
    args = parser.parse_args()

    os.makedirs(args.out_dir, exist_ok=True)
    needle = create_needle()
    placements: List[Placement] = [
        (40 + i * 120, 60 + (i % 2) * 140, 1.0) for i in range(args.copies)
    ]
    haystack = create_haystack(needle, placements)
    needle_path = os.path.join(args.out_dir, "needle.png")
    haystack_path = os.path.join(args.out_dir, "haystack.png")
    cv2.imwrite(needle_path, needle)
    cv2.imwrite(haystack_path, haystack)
    print(f"Wrote {needle_path} and {haystack_path}")


if __name__ == "__main__":
    main()
