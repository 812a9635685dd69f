"""
Detection decoding and suppression for object-detection model outputs.

Works on NumPy arrays emitted by any inference runtime: head decoders turn
raw outputs into candidates, greedy class-aware NMS reduces them, and boxes
are projected back to original image coordinates. OpenCV (letterbox) and
ONNX Runtime (backend) are only imported when used.
"""

from .config import DetectorConfig, build_decoder, load_detector_config, post_config
from .decoders import AnchorDecoder, Decoder, GridDecoder, PassthroughDecoder
from .errors import ConfigError, DetkitError, OutputShapeError
from .geometry import iou, iou_matrix, overlaps
from .letterbox import letterbox, stretch
from .nms import NMSConfig, nms, nms_indices, non_maximum_suppression
from .postprocess import DetectionPostprocessor, PostConfig
from .projection import LetterboxGeometry, clip_xyxy, letterbox_geometry, project_xyxy
from .runtime import DetectionPipeline, load_pipeline, pipeline_from_backend
from .types import Detection, Rect

__all__ = [
    "Rect",
    "Detection",
    "overlaps",
    "iou",
    "iou_matrix",
    "NMSConfig",
    "nms",
    "nms_indices",
    "non_maximum_suppression",
    "Decoder",
    "GridDecoder",
    "AnchorDecoder",
    "PassthroughDecoder",
    "LetterboxGeometry",
    "project_xyxy",
    "clip_xyxy",
    "letterbox_geometry",
    "letterbox",
    "stretch",
    "PostConfig",
    "DetectionPostprocessor",
    "DetectorConfig",
    "load_detector_config",
    "build_decoder",
    "post_config",
    "DetectionPipeline",
    "load_pipeline",
    "pipeline_from_backend",
    "DetkitError",
    "OutputShapeError",
    "ConfigError",
]
