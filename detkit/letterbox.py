from typing import Tuple

import numpy as np

from .projection import LetterboxGeometry


def letterbox(
    image: np.ndarray,
    new_shape: Tuple[int, int] = (640, 640),
    color: Tuple[int, int, int] = (114, 114, 114),
    centered: bool = True,
    scaleup: bool = True,
) -> Tuple[np.ndarray, LetterboxGeometry]:
    """
    Resize an image into a (width, height) network input, keeping its aspect ratio.

    With `centered=True` the padding is split evenly on both sides (anchor heads);
    otherwise the image is placed in the upper-left corner and only the right
    and bottom edges are padded (grid heads).

    Returns:
        padded: resized + padded image
        geometry: ratio and (left, top) padding to project boxes back
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if isinstance(new_shape, int):
        new_shape = (new_shape, new_shape)

    h, w = image.shape[:2]
    new_w, new_h = new_shape

    # Scale ratio (new / old)
    r = min(new_w / w, new_h / h)
    if not scaleup:  # only scale down
        r = min(r, 1.0)

    resized_w, resized_h = int(round(w * r)), int(round(h * r))
    dw, dh = new_w - resized_w, new_h - resized_h

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    if centered:
        left, top = dw // 2, dh // 2
    else:
        left, top = 0, 0
    right, bottom = dw - left, dh - top
    padded = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)

    return padded, LetterboxGeometry(ratio=r, pad=(float(left), float(top)))


def stretch(image: np.ndarray, new_shape: Tuple[int, int] = (640, 640)) -> np.ndarray:
    """
    Resize an image to exactly (width, height), ignoring its aspect ratio.

    Used for end-to-end heads that receive the original image size as a
    separate input and emit boxes in original image coordinates, so no
    geometry is needed to map them back.
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for stretch(). Install with `pip install opencv-python`.") from e

    if isinstance(new_shape, int):
        new_shape = (new_shape, new_shape)

    h, w = image.shape[:2]
    if (w, h) == tuple(new_shape):
        return image
    return cv2.resize(image, tuple(new_shape), interpolation=cv2.INTER_LINEAR)
