from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .geometry import iou_matrix
from .types import Detection


@dataclass(frozen=True)
class NMSConfig:
    score_threshold: float = 0.5
    iou_threshold: float = 0.4
    # Treat every candidate as the same class.
    class_agnostic: bool = False


def detections_to_arrays(detections: Sequence[Detection]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split detections into (N, 4) xyxy boxes, (N,) scores and (N,) class ids.
    """

    if not detections:
        return np.empty((0, 4), dtype=np.float64), np.empty((0,), dtype=np.float64), np.empty((0,), dtype=np.int64)

    boxes = np.array([d.as_xyxy() for d in detections], dtype=np.float64)
    scores = np.array([d.score for d in detections], dtype=np.float64)
    class_ids = np.array([d.class_id for d in detections], dtype=np.int64)
    return boxes, scores, class_ids


def nms_indices(
    boxes: np.ndarray,
    scores: np.ndarray,
    class_ids: np.ndarray,
    score_threshold: float,
    iou_threshold: float,
    class_agnostic: bool = False,
) -> np.ndarray:
    """
    Greedy class-aware NMS over arrays. Expects boxes (N, 4) xyxy, scores (N,)
    and class_ids (N,). Returns indices into the inputs of the kept candidates,
    ordered by descending score (ties keep their input order).

    Candidate j is suppressed when any earlier candidate i (i < j in score
    order) of the same class has IoU > iou_threshold with it. Suppressed
    candidates still suppress later ones.
    """

    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if scores.size == 0:
        return np.empty((0,), dtype=np.int64)

    candidates = np.flatnonzero(scores > score_threshold)
    if candidates.size == 0:
        return np.empty((0,), dtype=np.int64)

    # Stable descending sort: equal scores keep their relative order.
    order = candidates[np.argsort(-scores[candidates], kind="stable")]

    b = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)[order]
    ious = iou_matrix(b, b)

    pairs = np.triu(ious > iou_threshold, k=1)
    if not class_agnostic:
        cls = np.asarray(class_ids).reshape(-1)[order]
        pairs &= cls[:, None] == cls[None, :]

    suppressed = pairs.any(axis=0)
    return order[~suppressed].astype(np.int64)


def non_maximum_suppression(
    detections: Sequence[Detection],
    score_threshold: float,
    iou_threshold: float,
    class_agnostic: bool = False,
) -> List[Detection]:
    """
    Reduce overlapping detections to the highest-scoring one per class.

    Detections with score <= score_threshold are dropped first. The result is
    sorted by descending score.
    """

    boxes, scores, class_ids = detections_to_arrays(detections)
    keep = nms_indices(boxes, scores, class_ids, score_threshold, iou_threshold, class_agnostic=class_agnostic)
    return [detections[int(i)] for i in keep]


def nms(detections: Sequence[Detection], cfg: NMSConfig) -> List[Detection]:
    return non_maximum_suppression(
        detections,
        score_threshold=cfg.score_threshold,
        iou_threshold=cfg.iou_threshold,
        class_agnostic=cfg.class_agnostic,
    )
