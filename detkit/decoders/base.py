from __future__ import annotations

from typing import List, Mapping, Protocol, Sequence, Union

import numpy as np

from ..errors import OutputShapeError
from ..projection import LetterboxGeometry
from ..types import Detection, Rect

RawOutputs = Union[np.ndarray, Sequence[np.ndarray], Mapping[str, np.ndarray]]


class Decoder(Protocol):
    """
    Turns raw model outputs into candidate detections in original-image space.
    """

    requires_nms: bool

    def decode(
        self,
        outputs: RawOutputs,
        geometry: LetterboxGeometry,
        score_threshold: float,
    ) -> List[Detection]:
        ...


def as_output_list(outputs: RawOutputs) -> List[np.ndarray]:
    """
    Normalise a single array, a sequence of arrays or a name -> array mapping
    into a list of arrays in output order.
    """

    if isinstance(outputs, np.ndarray):
        return [outputs]
    if isinstance(outputs, Mapping):
        return [np.asarray(v) for v in outputs.values()]
    return [np.asarray(v) for v in outputs]


def squeeze_batch(t: np.ndarray, ndim: int, name: str = "output") -> np.ndarray:
    """
    Drop the leading batch axis of a batched `ndim`-dimensional output.
    Batches larger than one are rejected.
    """

    p = np.asarray(t)
    if p.ndim == ndim + 1:
        if p.shape[0] != 1:
            raise OutputShapeError(f"Batch > 1 is not supported for {name} (got shape {p.shape}).")
        p = p[0]
    return p


def to_detections(boxes_xyxy: np.ndarray, scores: np.ndarray, class_ids: np.ndarray) -> List[Detection]:
    return [
        Detection(rect=Rect.from_xyxy(x1, y1, x2, y2), class_id=int(cls_id), score=float(score))
        for (x1, y1, x2, y2), score, cls_id in zip(boxes_xyxy.tolist(), scores.tolist(), class_ids.tolist())
    ]
