from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .decoders.base import Decoder, RawOutputs
from .nms import detections_to_arrays, nms_indices
from .projection import IDENTITY, LetterboxGeometry, clip_xyxy
from .types import Detection, Rect

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostConfig:
    """
    Post-processing settings applied after decoding.
    """

    score_threshold: float = 0.5
    iou_threshold: float = 0.4
    # None follows the decoder: grid/anchor heads run NMS, end-to-end heads do not.
    apply_nms: Optional[bool] = None
    class_agnostic_nms: bool = False
    # Optional list of class IDs to keep; None keeps all.
    class_ids: Optional[Sequence[int]] = None
    # Keep at most this many detections (highest score first); None keeps all.
    max_detections: Optional[int] = None
    # Clamp boxes to the image when `image_size` is passed to process().
    clip_boxes: bool = False


class DetectionPostprocessor:
    """
    Decode -> class filter -> NMS -> drop empty boxes -> clip -> top-K.

    The decoder is swapped atomically by `reconfigure()`; a call already in
    progress finishes with the decoder (and tables) it started with.
    """

    def __init__(self, decoder: Decoder, cfg: PostConfig = PostConfig()):
        self.cfg = cfg
        self._decoder = decoder
        self._lock = threading.Lock()

    @property
    def decoder(self) -> Decoder:
        with self._lock:
            return self._decoder

    def reconfigure(self, decoder: Decoder) -> None:
        with self._lock:
            self._decoder = decoder

    def process(
        self,
        outputs: RawOutputs,
        geometry: LetterboxGeometry = IDENTITY,
        image_size: Optional[Tuple[int, int]] = None,
    ) -> List[Detection]:
        """
        Convert raw model outputs into final detections in original image coordinates.

        Args:
            outputs: raw output(s) of one inference call
            geometry: letterbox ratio/padding used when preparing the input
            image_size: (width, height) of the original image, used for clipping
        """

        decoder = self.decoder
        cfg = self.cfg

        candidates = decoder.decode(outputs, geometry, cfg.score_threshold)
        logger.debug("decoded %d candidate(s)", len(candidates), extra={"stage": "decode", "count": len(candidates)})
        if not candidates:
            return []

        boxes, scores, class_ids = detections_to_arrays(candidates)

        if cfg.class_ids is not None:
            mask = np.isin(class_ids, np.asarray(list(cfg.class_ids), dtype=np.int64))
            idx = np.flatnonzero(mask)
        else:
            idx = np.arange(len(candidates))

        apply_nms = decoder.requires_nms if cfg.apply_nms is None else cfg.apply_nms
        if apply_nms:
            keep = nms_indices(
                boxes[idx],
                scores[idx],
                class_ids[idx],
                cfg.score_threshold,
                cfg.iou_threshold,
                class_agnostic=cfg.class_agnostic_nms,
            )
            idx = idx[keep]
            logger.debug("%d detection(s) left after NMS", idx.size, extra={"stage": "nms", "count": int(idx.size)})
        else:
            idx = idx[np.argsort(-scores[idx], kind="stable")]

        boxes = boxes[idx]
        if cfg.clip_boxes and image_size is not None:
            boxes = clip_xyxy(boxes, image_size)

        nonempty = (boxes[:, 2] > boxes[:, 0]) & (boxes[:, 3] > boxes[:, 1])
        if not np.all(nonempty):
            logger.debug("dropping %d zero-area detection(s)", int(np.sum(~nonempty)))
        boxes, idx = boxes[nonempty], idx[nonempty]

        if cfg.max_detections is not None:
            boxes, idx = boxes[: cfg.max_detections], idx[: cfg.max_detections]

        return [
            Detection(rect=Rect.from_xyxy(x1, y1, x2, y2), class_id=int(class_ids[i]), score=float(scores[i]))
            for (x1, y1, x2, y2), i in zip(boxes.tolist(), idx.tolist())
        ]
