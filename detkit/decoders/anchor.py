from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import OutputShapeError
from ..projection import LetterboxGeometry, project_xyxy
from ..types import Detection
from .base import RawOutputs, as_output_list, squeeze_batch, to_detections

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class AnchorTable:
    """
    Anchor points (cell centres, network pixels) and the stride each came from.

    Levels are concatenated in model output order; within a level anchors run
    row by row, then column by column.
    """

    points: np.ndarray  # (N, 2) int, (x, y)
    scales: np.ndarray  # (N,) float, stride of the originating level

    def __len__(self) -> int:
        return int(self.scales.shape[0])


def strides_from_output_shapes(
    input_width: int,
    output_shapes: Sequence[Sequence[int]],
    outputs_per_level: int = 3,
    box_index: int = 2,
) -> List[int]:
    """
    Derive the stride of each feature level from the NCHW shapes of its
    box-regression output (input_width // feature_width).
    """

    if outputs_per_level <= 0 or not 0 <= box_index < outputs_per_level:
        raise ValueError(f"Invalid output grouping: outputs_per_level={outputs_per_level}, box_index={box_index}")
    if len(output_shapes) % outputs_per_level != 0:
        raise OutputShapeError(
            f"Expected outputs in groups of {outputs_per_level} per level, got {len(output_shapes)} outputs."
        )

    strides = []
    for i in range(box_index, len(output_shapes), outputs_per_level):
        shape = tuple(output_shapes[i])
        if len(shape) != 4 or not isinstance(shape[3], int) or shape[3] <= 0:
            raise OutputShapeError(f"Box output {i} must be NCHW with a known width (got shape {shape}).")
        strides.append(int(input_width) // int(shape[3]))
    return strides


def make_anchor_table(input_size: Tuple[int, int], strides: Sequence[int]) -> AnchorTable:
    """
    Build anchors for a network input of size (width, height): one anchor at
    (i * stride + stride // 2) per axis for every cell of every level.
    """

    width, height = input_size
    points = []
    scales = []
    for stride in strides:
        if stride <= 0:
            raise ValueError(f"strides must be > 0 (got {stride})")
        shift = stride // 2
        xs = np.arange(width // stride) * stride + shift
        ys = np.arange(height // stride) * stride + shift
        gy, gx = np.meshgrid(ys, xs, indexing="ij")
        points.append(np.stack([gx.reshape(-1), gy.reshape(-1)], axis=1))
        scales.append(np.full((gx.size,), float(stride), dtype=np.float64))

    if points:
        points_arr = np.concatenate(points, axis=0).astype(np.int64)
        scales_arr = np.concatenate(scales, axis=0)
    else:
        points_arr = np.empty((0, 2), dtype=np.int64)
        scales_arr = np.empty((0,), dtype=np.float64)

    points_arr.setflags(write=False)
    scales_arr.setflags(write=False)
    return AnchorTable(points=points_arr, scales=scales_arr)


def _channel_last(t: np.ndarray, name: str) -> np.ndarray:
    # (C, H, W) -> (H * W, C)
    p = squeeze_batch(t, 3, name)
    if p.ndim != 3:
        raise OutputShapeError(f"{name} must be NCHW (got shape {np.shape(t)}).")
    c, h, w = p.shape
    return np.transpose(p, (1, 2, 0)).reshape(h * w, c)


def prepare_anchor_outputs(
    outputs: Sequence[np.ndarray],
    table: AnchorTable,
    outputs_per_level: int = 3,
    class_index: int = 0,
    box_index: int = 2,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Rearrange per-level NCHW outputs into (N, C) class logits and (N, 4) box
    offsets scaled by the stride of each anchor.

    Levels are concatenated in output order, which must match the anchor table.
    """

    if len(outputs) == 0 or len(outputs) % outputs_per_level != 0:
        raise OutputShapeError(
            f"Expected outputs in groups of {outputs_per_level} per level, got {len(outputs)} outputs."
        )

    classes = []
    boxes = []
    for level, i in enumerate(range(0, len(outputs), outputs_per_level)):
        cls = _channel_last(outputs[i + class_index], f"class output of level {level}")
        box = _channel_last(outputs[i + box_index], f"box output of level {level}")
        if box.shape[1] != 4:
            raise OutputShapeError(f"Box output of level {level} must have 4 channels (got {box.shape[1]}).")
        if cls.shape[0] != box.shape[0]:
            raise OutputShapeError(
                f"Level {level} class/box outputs disagree on cell count ({cls.shape[0]} vs {box.shape[0]})."
            )
        classes.append(cls)
        boxes.append(box)

    classes_arr = np.concatenate(classes, axis=0)
    boxes_arr = np.concatenate(boxes, axis=0).astype(np.float64)
    if boxes_arr.shape[0] != len(table):
        raise OutputShapeError(
            f"Outputs hold {boxes_arr.shape[0]} boxes but the anchor table has {len(table)} anchors."
        )
    return classes_arr, boxes_arr * table.scales[:, None]


def sigmoid(x: np.ndarray) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    pos = x >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-x[pos]))
    ex = np.exp(x[~pos])
    out[~pos] = ex / (1.0 + ex)
    return out


def decode_anchor(
    classes: np.ndarray,
    boxes: np.ndarray,
    table: AnchorTable,
    geometry: LetterboxGeometry,
    score_threshold: float,
    truncate_offsets: bool = True,
) -> List[Detection]:
    """
    Decode prepared anchor-head outputs.

    Args:
        classes: (1, N, C) or (N, C) class logits
        boxes: (1, N, 4) or (N, 4) stride-scaled (left, top, right, bottom) offsets
        table: anchors the N rows are aligned with
        truncate_offsets: drop the fractional part of the offsets before use
    """

    logits = squeeze_batch(classes, 2, "class logits")
    offsets = squeeze_batch(boxes, 2, "box offsets")
    if logits.ndim != 2 or offsets.ndim != 2 or offsets.shape[1] != 4:
        raise OutputShapeError(f"Expected (N, C) logits and (N, 4) offsets, got {logits.shape} and {offsets.shape}.")
    if not logits.shape[0] == offsets.shape[0] == len(table):
        raise OutputShapeError(
            f"Logits ({logits.shape[0]}), offsets ({offsets.shape[0]}) and anchors ({len(table)}) disagree on box count."
        )
    if logits.shape[0] == 0 or logits.shape[1] == 0:
        return []

    # The logistic function is monotonic, so the best class is the best logit.
    class_ids = np.argmax(logits, axis=1)
    confidence = sigmoid(logits[np.arange(logits.shape[0]), class_ids])

    keep = np.flatnonzero(~(confidence < score_threshold))
    if keep.size == 0:
        return []

    ltrb = offsets[keep].astype(np.float64)
    if truncate_offsets:
        ltrb = np.trunc(ltrb)
    anchor = table.points[keep].astype(np.float64)

    xyxy = np.concatenate([anchor - ltrb[:, 0:2], anchor + ltrb[:, 2:4]], axis=1)
    xyxy = project_xyxy(xyxy, geometry)

    logger.debug("anchor head: %d/%d boxes above score threshold %.3f", keep.size, logits.shape[0], score_threshold)
    return to_detections(xyxy, confidence[keep], class_ids[keep])


@dataclass(frozen=True)
class AnchorDecoder:
    """
    Decoder for stride-scaled anchor heads (YOLOv9-style) with one group of
    outputs per feature level.

    With `prepared_outputs=True` the model already emits the concatenated,
    stride-scaled (1, N, C) logits and (1, N, 4) offsets, in that order.
    """

    table: AnchorTable
    outputs_per_level: int = 3
    class_index: int = 0
    box_index: int = 2
    truncate_offsets: bool = True
    prepared_outputs: bool = False
    num_classes: Optional[int] = None
    requires_nms: bool = field(default=True, init=False)

    @classmethod
    def from_output_shapes(
        cls,
        input_size: Tuple[int, int],
        output_shapes: Sequence[Sequence[int]],
        outputs_per_level: int = 3,
        class_index: int = 0,
        box_index: int = 2,
        **kwargs,
    ) -> "AnchorDecoder":
        strides = strides_from_output_shapes(
            input_size[0], output_shapes, outputs_per_level=outputs_per_level, box_index=box_index
        )
        logger.debug("anchor head strides derived from output shapes: %s", strides)
        return cls(
            table=make_anchor_table(input_size, strides),
            outputs_per_level=outputs_per_level,
            class_index=class_index,
            box_index=box_index,
            **kwargs,
        )

    def decode(self, outputs: RawOutputs, geometry: LetterboxGeometry, score_threshold: float) -> List[Detection]:
        tensors = as_output_list(outputs)
        if self.prepared_outputs:
            if len(tensors) < 2:
                raise OutputShapeError(f"Prepared anchor head expects logits and offsets, got {len(tensors)} output(s).")
            classes, boxes = tensors[0], tensors[1]
        else:
            classes, boxes = prepare_anchor_outputs(
                tensors,
                self.table,
                outputs_per_level=self.outputs_per_level,
                class_index=self.class_index,
                box_index=self.box_index,
            )

        num_classes = np.shape(classes)[-1]
        if self.num_classes is not None and num_classes != self.num_classes:
            raise OutputShapeError(f"Expected {self.num_classes} class logits per box, got {num_classes}.")
        return decode_anchor(classes, boxes, self.table, geometry, score_threshold, truncate_offsets=self.truncate_offsets)
