from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class LetterboxGeometry:
    """
    Mapping from network input space back to the original image.

    - ratio: resize ratio applied to the original image (network / original)
    - pad: (pad_x, pad_y) offset of the resized image inside the network input
    """

    ratio: float = 1.0
    pad: Tuple[float, float] = (0.0, 0.0)

    def __post_init__(self) -> None:
        if not self.ratio > 0:
            raise ValueError(f"ratio must be > 0 (got {self.ratio})")
        if len(self.pad) != 2:
            raise ValueError(f"pad must be (pad_x, pad_y) (got {self.pad!r})")
        if self.pad[0] < 0 or self.pad[1] < 0:
            raise ValueError(f"pad must be >= 0 (got {self.pad!r})")


IDENTITY = LetterboxGeometry()


def project_xyxy(boxes: np.ndarray, geometry: LetterboxGeometry) -> np.ndarray:
    """
    Map (N, 4) xyxy boxes from network space to original-image space.

    Returns a new float64 array; the input is left untouched.
    """

    out = np.array(boxes, dtype=np.float64).reshape(-1, 4)
    pad_x, pad_y = geometry.pad
    out[:, [0, 2]] = (out[:, [0, 2]] - pad_x) / geometry.ratio
    out[:, [1, 3]] = (out[:, [1, 3]] - pad_y) / geometry.ratio
    return out


def clip_xyxy(boxes: np.ndarray, image_size: Tuple[int, int]) -> np.ndarray:
    """
    Clamp xyxy boxes to the pixel grid of an image of size (width, height).
    """

    out = np.array(boxes, dtype=np.float64).reshape(-1, 4)
    w, h = image_size
    out[:, [0, 2]] = np.clip(out[:, [0, 2]], 0, w - 1)
    out[:, [1, 3]] = np.clip(out[:, [1, 3]], 0, h - 1)
    return out


def letterbox_geometry(
    image_size: Tuple[int, int],
    input_size: Tuple[int, int],
    centered: bool = True,
    scaleup: bool = True,
) -> LetterboxGeometry:
    """
    Compute the ratio/padding of an aspect-preserving resize of an image of
    `image_size` (width, height) into a network input of `input_size`.

    With `centered=False` the image sits in the upper-left corner and no padding
    has to be subtracted when projecting back.
    """

    w, h = image_size
    in_w, in_h = input_size
    if w <= 0 or h <= 0:
        raise ValueError(f"image_size must be positive (got {image_size!r})")

    r = min(in_w / w, in_h / h)
    if not scaleup:
        r = min(r, 1.0)

    if not centered:
        return LetterboxGeometry(ratio=r)

    pad_x = (in_w - w * r) / 2
    pad_y = (in_h - h * r) / 2
    return LetterboxGeometry(ratio=r, pad=(max(pad_x, 0.0), max(pad_y, 0.0)))
