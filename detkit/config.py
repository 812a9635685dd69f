from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from .decoders import DEFAULT_STRIDES, AnchorDecoder, Decoder, GridDecoder, PassthroughDecoder, make_anchor_table
from .errors import ConfigError
from .postprocess import PostConfig

HEADS = ("grid", "anchor", "passthrough")
LETTERBOX_MODES = ("center", "top_left", "stretch")


@dataclass(frozen=True)
class DetectorConfig:
    head: str
    input_size: Tuple[int, int] = (640, 640)
    num_classes: Optional[int] = None
    # Grid heads use these directly; anchor heads derive them from the output
    # shapes when None.
    strides: Optional[Tuple[int, ...]] = None
    score_threshold: float = 0.5
    iou_threshold: float = 0.4
    apply_nms: Optional[bool] = None
    class_agnostic_nms: bool = False
    class_ids: Optional[Tuple[int, ...]] = None
    max_detections: Optional[int] = None
    truncate_offsets: bool = True
    outputs_per_level: int = 3
    class_index: int = 0
    box_index: int = 2
    boxes_in_network_space: bool = False
    letterbox: Optional[str] = None
    # End-to-end models that take the original image size as a second input.
    orig_size_input: str = "orig_target_sizes"
    # Pixel values are scaled to [0, input_max]; None picks 255 for grid heads, 1 otherwise.
    input_max: Optional[float] = None

    def __post_init__(self) -> None:
        if self.head not in HEADS:
            raise ConfigError(f"head must be one of {list(HEADS)} (got {self.head!r})")
        if len(self.input_size) != 2 or any(v <= 0 for v in self.input_size):
            raise ConfigError("input_size must be [width, height] with positive values")
        if self.num_classes is not None and self.num_classes <= 0:
            raise ConfigError("num_classes must be > 0")
        if self.strides is not None and (not self.strides or any(s <= 0 for s in self.strides)):
            raise ConfigError("strides must be a non-empty list of positive integers")
        if self.max_detections is not None and self.max_detections <= 0:
            raise ConfigError("max_detections must be > 0")
        if self.outputs_per_level <= 0:
            raise ConfigError("outputs_per_level must be > 0")
        for key in ("class_index", "box_index"):
            if not 0 <= getattr(self, key) < self.outputs_per_level:
                raise ConfigError(f"{key} must be in [0, outputs_per_level)")
        if self.letterbox is not None and self.letterbox not in LETTERBOX_MODES:
            raise ConfigError(f"letterbox must be one of {list(LETTERBOX_MODES)} (got {self.letterbox!r})")
        if self.letterbox == "stretch" and (self.head != "passthrough" or self.boxes_in_network_space):
            raise ConfigError("letterbox 'stretch' is only supported for passthrough heads with image-space boxes")
        if not self.orig_size_input:
            raise ConfigError("orig_size_input must be a non-empty string")
        if self.input_max is not None and self.input_max <= 0:
            raise ConfigError("input_max must be > 0")

    @property
    def letterbox_mode(self) -> str:
        """
        Grid heads expect the image in the upper-left corner and anchor heads
        centred. Passthrough heads emitting image-space boxes take a plain
        stretched resize.
        """
        if self.letterbox:
            return self.letterbox
        if self.head == "grid":
            return "top_left"
        if self.head == "passthrough" and not self.boxes_in_network_space:
            return "stretch"
        return "center"

    @property
    def pixel_scale(self) -> float:
        input_max = self.input_max if self.input_max is not None else (255.0 if self.head == "grid" else 1.0)
        return input_max / 255.0


def _require_str(payload: Dict[str, Any], key: str) -> str:
    if key not in payload:
        raise ConfigError(f"Missing required key: {key}")
    value = payload[key]
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _optional_str(payload: Dict[str, Any], key: str, default: str) -> str:
    value = payload.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _optional_number(payload: Dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    value = payload.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return int(value)


def _optional_bool(payload: Dict[str, Any], key: str, default: Optional[bool]) -> Optional[bool]:
    value = payload.get(key, default)
    if value is not None and not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _optional_int_list(payload: Dict[str, Any], key: str) -> Optional[Tuple[int, ...]]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or any(isinstance(v, bool) or not isinstance(v, int) for v in value):
        raise ConfigError(f"{key} must be a list of integers")
    return tuple(int(v) for v in value)


def parse_detector_config(payload: Dict[str, Any]) -> DetectorConfig:
    if not isinstance(payload, dict):
        raise ConfigError("Detector config must be a JSON object")

    allowed = set(DetectorConfig.__dataclass_fields__.keys())
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ConfigError(f"Unknown detector config keys: {unknown}")

    input_size = _optional_int_list(payload, "input_size") or (640, 640)
    if len(input_size) != 2:
        raise ConfigError("input_size must be [width, height]")

    letterbox = payload.get("letterbox")
    if letterbox is not None and not isinstance(letterbox, str):
        raise ConfigError("letterbox must be a string")

    return DetectorConfig(
        head=_require_str(payload, "head"),
        input_size=(input_size[0], input_size[1]),
        num_classes=_optional_int(payload, "num_classes", None),
        strides=_optional_int_list(payload, "strides"),
        score_threshold=_optional_number(payload, "score_threshold", 0.5),
        iou_threshold=_optional_number(payload, "iou_threshold", 0.4),
        apply_nms=_optional_bool(payload, "apply_nms", None),
        class_agnostic_nms=bool(_optional_bool(payload, "class_agnostic_nms", False)),
        class_ids=_optional_int_list(payload, "class_ids"),
        max_detections=_optional_int(payload, "max_detections", None),
        truncate_offsets=bool(_optional_bool(payload, "truncate_offsets", True)),
        outputs_per_level=_optional_int(payload, "outputs_per_level", 3),
        class_index=_optional_int(payload, "class_index", 0),
        box_index=_optional_int(payload, "box_index", 2),
        boxes_in_network_space=bool(_optional_bool(payload, "boxes_in_network_space", False)),
        letterbox=letterbox,
        orig_size_input=_optional_str(payload, "orig_size_input", "orig_target_sizes"),
        input_max=None if payload.get("input_max") is None else _optional_number(payload, "input_max", 1.0),
    )


def load_detector_config(path: Path) -> DetectorConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid detector config JSON: {path}") from exc
    return parse_detector_config(payload)


def build_decoder(cfg: DetectorConfig, output_shapes: Optional[Sequence[Sequence[int]]] = None) -> Decoder:
    """
    Build the decoder for `cfg.head`. Anchor heads without configured strides
    need the model's output shapes to derive them.
    """

    if cfg.head == "grid":
        return GridDecoder.for_input(cfg.input_size, cfg.strides or DEFAULT_STRIDES, num_classes=cfg.num_classes)

    if cfg.head == "anchor":
        options = dict(
            outputs_per_level=cfg.outputs_per_level,
            class_index=cfg.class_index,
            box_index=cfg.box_index,
            truncate_offsets=cfg.truncate_offsets,
            num_classes=cfg.num_classes,
        )
        if cfg.strides is not None:
            return AnchorDecoder(table=make_anchor_table(cfg.input_size, cfg.strides), **options)
        if output_shapes is None:
            raise ConfigError("anchor head needs either 'strides' or the model output shapes")
        return AnchorDecoder.from_output_shapes(cfg.input_size, output_shapes, **options)

    return PassthroughDecoder(boxes_in_network_space=cfg.boxes_in_network_space)


def post_config(cfg: DetectorConfig) -> PostConfig:
    return PostConfig(
        score_threshold=cfg.score_threshold,
        iou_threshold=cfg.iou_threshold,
        apply_nms=cfg.apply_nms,
        class_agnostic_nms=cfg.class_agnostic_nms,
        class_ids=cfg.class_ids,
        max_detections=cfg.max_detections,
    )
