from __future__ import annotations

import numpy as np

from .types import Rect


def overlaps(a: Rect, b: Rect) -> bool:
    """
    True when the extents of `a` and `b` intersect on both axes.

    Edges that only touch do not count as overlapping.
    """

    return b.x2 > a.x and b.x < a.x2 and b.y2 > a.y and b.y < a.y2


def iou(a: Rect, b: Rect) -> float:
    """
    Intersection over union of two rectangles.

    Returns 0.0 for disjoint rectangles and for degenerate inputs whose union
    area is not positive.
    """

    if not overlaps(a, b):
        return 0.0

    ix1 = max(a.x, b.x)
    iy1 = max(a.y, b.y)
    ix2 = min(a.x2, b.x2)
    iy2 = min(a.y2, b.y2)
    if ix2 <= ix1 or iy2 <= iy1:
        return 0.0

    intersection = (ix2 - ix1) * (iy2 - iy1)
    union = a.area + b.area - intersection
    if union <= 0.0:
        return 0.0
    return intersection / union


def iou_matrix(boxes_a: np.ndarray, boxes_b: np.ndarray) -> np.ndarray:
    """
    Pairwise IoU between (N, 4) and (M, 4) xyxy arrays, returned as (N, M) float64.

    Same semantics as `iou()`: pairs that do not strictly overlap, or whose
    union is not positive, get 0.0.
    """

    a = np.asarray(boxes_a, dtype=np.float64).reshape(-1, 4)
    b = np.asarray(boxes_b, dtype=np.float64).reshape(-1, 4)

    xx1 = np.maximum(a[:, None, 0], b[None, :, 0])
    yy1 = np.maximum(a[:, None, 1], b[None, :, 1])
    xx2 = np.minimum(a[:, None, 2], b[None, :, 2])
    yy2 = np.minimum(a[:, None, 3], b[None, :, 3])

    w = xx2 - xx1
    h = yy2 - yy1
    overlap = (w > 0) & (h > 0)

    area_a = (a[:, 2] - a[:, 0]) * (a[:, 3] - a[:, 1])
    area_b = (b[:, 2] - b[:, 0]) * (b[:, 3] - b[:, 1])
    inter = np.where(overlap, w * h, 0.0)
    union = area_a[:, None] + area_b[None, :] - inter

    valid = overlap & (union > 0)
    out = np.zeros_like(inter)
    np.divide(inter, union, out=out, where=valid)
    return out
