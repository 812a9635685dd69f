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

DEFAULT_STRIDES: Tuple[int, ...] = (8, 16, 32, 64)


@dataclass(frozen=True, eq=False)
class GridTable:
    """
    Per-cell grid coordinates and strides, one row per output cell.

    Cells are ordered stride by stride, then row by row, then column by column,
    matching the cell axis of the model output.
    """

    cells: np.ndarray  # (N, 2) int, (grid_x, grid_y)
    strides: np.ndarray  # (N,) int

    def __len__(self) -> int:
        return int(self.strides.shape[0])


def make_grid_table(input_size: Tuple[int, int], strides: Sequence[int] = DEFAULT_STRIDES) -> GridTable:
    """
    Build the grid table for a network input of size (width, height).
    """

    width, height = input_size
    cells = []
    expanded = []
    for stride in strides:
        if stride <= 0:
            raise ValueError(f"strides must be > 0 (got {stride})")
        wsize, hsize = width // stride, height // stride
        ys, xs = np.meshgrid(np.arange(hsize), np.arange(wsize), indexing="ij")
        cells.append(np.stack([xs.reshape(-1), ys.reshape(-1)], axis=1))
        expanded.append(np.full((wsize * hsize,), stride, dtype=np.int64))

    if cells:
        cells_arr = np.concatenate(cells, axis=0).astype(np.int64)
        strides_arr = np.concatenate(expanded, axis=0)
    else:
        cells_arr = np.empty((0, 2), dtype=np.int64)
        strides_arr = np.empty((0,), dtype=np.int64)

    cells_arr.setflags(write=False)
    strides_arr.setflags(write=False)
    return GridTable(cells=cells_arr, strides=strides_arr)


def _cell_major(p: np.ndarray, num_cells: int) -> np.ndarray:
    """
    Return the output as (num_cells, 5 + C), transposing channel-first layouts.
    """

    if p.ndim != 2:
        raise OutputShapeError(f"Grid head output must be 2D after batch squeeze (got shape {p.shape}).")
    if p.shape[0] == num_cells:
        return p
    if p.shape[1] == num_cells:
        return p.T
    raise OutputShapeError(
        f"Grid head output has shape {p.shape} but the grid table has {num_cells} cells; "
        "check the configured input size and strides."
    )


def decode_grid(
    output: np.ndarray,
    table: GridTable,
    geometry: LetterboxGeometry,
    score_threshold: float,
    num_classes: Optional[int] = None,
) -> List[Detection]:
    """
    Decode a dense per-cell head: [cx, cy, log_w, log_h, objectness, class_scores...].

    Cells whose score (best class score * objectness) is below `score_threshold`
    are skipped before any box geometry is computed.
    """

    p = _cell_major(squeeze_batch(output, 2, "grid head output"), len(table))
    if p.shape[1] < 6:
        raise OutputShapeError(f"Grid head needs at least 6 channels per cell (got {p.shape[1]}).")
    if num_classes is not None and p.shape[1] != 5 + num_classes:
        raise OutputShapeError(f"Expected {5 + num_classes} channels per cell for {num_classes} classes, got {p.shape[1]}.")

    objectness = p[:, 4].astype(np.float64)
    class_scores = p[:, 5:]
    class_ids = np.argmax(class_scores, axis=1)
    confidence = class_scores[np.arange(class_scores.shape[0]), class_ids].astype(np.float64)
    scores = confidence * objectness

    keep = np.flatnonzero(~(scores < score_threshold))
    if keep.size == 0:
        return []

    v = p[keep].astype(np.float64)
    grid = table.cells[keep]
    stride = table.strides[keep].astype(np.float64)

    cx = (v[:, 0] + grid[:, 0]) * stride
    cy = (v[:, 1] + grid[:, 1]) * stride
    # Box sizes are not clamped; a saturated activation yields inf.
    with np.errstate(over="ignore"):
        w = np.exp(v[:, 2]) * stride
        h = np.exp(v[:, 3]) * stride
    if not (np.all(np.isfinite(w)) and np.all(np.isfinite(h))):
        logger.warning("grid head produced non-finite box sizes for %d cell(s)", int(np.sum(~np.isfinite(w * h))))

    boxes = np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)
    boxes = project_xyxy(boxes, geometry)

    logger.debug("grid head: %d/%d cells above score threshold %.3f", keep.size, p.shape[0], score_threshold)
    return to_detections(boxes, scores[keep], class_ids[keep])


@dataclass(frozen=True)
class GridDecoder:
    """
    Decoder for dense grid heads (YOLOX-style) with one output tensor.
    """

    table: GridTable
    num_classes: Optional[int] = None
    requires_nms: bool = field(default=True, init=False)

    @classmethod
    def for_input(
        cls,
        input_size: Tuple[int, int],
        strides: Sequence[int] = DEFAULT_STRIDES,
        num_classes: Optional[int] = None,
    ) -> "GridDecoder":
        return cls(table=make_grid_table(input_size, strides), num_classes=num_classes)

    def decode(self, outputs: RawOutputs, geometry: LetterboxGeometry, score_threshold: float) -> List[Detection]:
        tensors = as_output_list(outputs)
        if not tensors:
            raise OutputShapeError("Grid head expects one output tensor, got none.")
        return decode_grid(tensors[0], self.table, geometry, score_threshold, num_classes=self.num_classes)
