from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Tuple

import numpy as np

from ..errors import OutputShapeError
from ..projection import LetterboxGeometry, project_xyxy
from ..types import Detection
from .base import RawOutputs, as_output_list, squeeze_batch, to_detections

logger = logging.getLogger(__name__)


def _split_flat(p: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split an already decoded (N, 6) or (6, N) array of
    [x1, y1, x2, y2, score, class_id] rows.
    """

    if p.ndim != 2 or 6 not in p.shape:
        raise OutputShapeError(f"Expected an (N, 6) decoded output, got shape {p.shape}.")
    if p.shape[1] != 6:
        p = p.T
    return p[:, 0:4], p[:, 4], p[:, 5].astype(np.int64)


@dataclass(frozen=True)
class PassthroughDecoder:
    """
    Decoder for end-to-end models that already emit final boxes.

    Accepts either named `labels`/`boxes`/`scores` outputs (DETR-style) or a
    single (N, 6) array. Boxes are xyxy; they are only projected through the
    letterbox geometry when `boxes_in_network_space` is set.
    """

    labels_name: str = "labels"
    boxes_name: str = "boxes"
    scores_name: str = "scores"
    boxes_in_network_space: bool = False
    requires_nms: bool = field(default=False, init=False)

    def _split(self, outputs: RawOutputs) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if isinstance(outputs, Mapping) and self.boxes_name in outputs:
            missing = [n for n in (self.labels_name, self.scores_name) if n not in outputs]
            if missing:
                raise OutputShapeError(f"Missing end-to-end outputs: {missing}")
            boxes = np.asarray(outputs[self.boxes_name])
            scores = np.asarray(outputs[self.scores_name]).reshape(-1)
            labels = np.asarray(outputs[self.labels_name]).reshape(-1).astype(np.int64)
            if boxes.size != 4 * scores.size or labels.size != scores.size:
                raise OutputShapeError(
                    f"End-to-end outputs disagree: {boxes.size // 4} boxes, {scores.size} scores, {labels.size} labels."
                )
            return boxes.reshape(-1, 4), scores, labels

        tensors = as_output_list(outputs)
        if len(tensors) != 1:
            raise OutputShapeError(
                f"Expected named {self.labels_name}/{self.boxes_name}/{self.scores_name} outputs "
                f"or a single (N, 6) array, got {len(tensors)} output(s)."
            )
        return _split_flat(squeeze_batch(tensors[0], 2, "end-to-end output"))

    def decode(self, outputs: RawOutputs, geometry: LetterboxGeometry, score_threshold: float) -> List[Detection]:
        boxes, scores, labels = self._split(outputs)

        keep = np.flatnonzero(~(scores < score_threshold))
        if keep.size == 0:
            return []

        xyxy = boxes[keep].astype(np.float64)
        if self.boxes_in_network_space:
            xyxy = project_xyxy(xyxy, geometry)

        logger.debug("end-to-end head: %d/%d boxes above score threshold %.3f", keep.size, scores.size, score_threshold)
        return to_detections(xyxy, scores[keep].astype(np.float64), labels[keep])
