from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import LETTERBOX_MODES, DetectorConfig, build_decoder, post_config
from .decoders.base import RawOutputs
from .letterbox import letterbox, stretch
from .postprocess import DetectionPostprocessor
from .projection import IDENTITY, LetterboxGeometry
from .types import Detection

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Best-effort project root discovery, used to resolve relative model paths.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` against `root` (or the project root with "auto") unless it is absolute.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    orig_size: Tuple[int, int]
    geometry: LetterboxGeometry


class DetectionPipeline:
    """
    Plug-and-play pipeline: letterbox -> inference -> decode/NMS.

    The pipeline expects BGR images (OpenCV-style) as `np.ndarray` and returns
    a list of `Detection` in original image coordinates.

    `resize` is "center" or "top_left" (letterbox placement) or "stretch"
    (plain resize, for heads that emit boxes in original image coordinates).
    With `size_input` set, `infer_fn` is called as
    `infer_fn(blob, {size_input: [[orig_w, orig_h]]})`, which is how
    end-to-end models receive the original image size.
    """

    def __init__(
        self,
        infer_fn: Callable[..., RawOutputs],
        postprocessor: DetectionPostprocessor,
        *,
        input_size: Tuple[int, int],
        resize: str = "center",
        pixel_scale: float = 1.0 / 255.0,
        size_input: Optional[str] = None,
        size_dtype: Any = np.int64,
        backend: Optional[object] = None,
    ):
        if resize not in LETTERBOX_MODES:
            raise ValueError(f"resize must be one of {list(LETTERBOX_MODES)} (got {resize!r})")
        self._infer_fn = infer_fn
        self.post = postprocessor
        self.input_size = input_size
        self.resize = resize
        self.pixel_scale = pixel_scale
        self.size_input = size_input
        self.size_dtype = size_dtype
        self.backend = backend

    def preprocess(self, image_bgr: np.ndarray) -> PreprocessResult:
        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise TypeError("image_bgr must be a NumPy array (BGR).")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

        orig_h, orig_w = image_bgr.shape[:2]
        if self.resize == "stretch":
            img, geometry = stretch(image_bgr, new_shape=self.input_size), IDENTITY
        else:
            img, geometry = letterbox(image_bgr, new_shape=self.input_size, centered=self.resize == "center")

        # BGR -> RGB, scale, HWC -> CHW, add batch
        blob = img[:, :, ::-1].astype(np.float32) * np.float32(self.pixel_scale)
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])

        return PreprocessResult(blob=blob, orig_size=(orig_w, orig_h), geometry=geometry)

    def __call__(self, image_bgr: np.ndarray) -> List[Detection]:
        prep = self.preprocess(image_bgr)
        if self.size_input:
            sizes = np.array([prep.orig_size], dtype=self.size_dtype)
            outputs = self._infer_fn(prep.blob, {self.size_input: sizes})
        else:
            outputs = self._infer_fn(prep.blob)
        return self.post.process(outputs, geometry=prep.geometry, image_size=prep.orig_size)


def load_pipeline(
    model_path: PathLike,
    cfg: DetectorConfig,
    *,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_names: Optional[Sequence[str]] = None,
) -> DetectionPipeline:
    """
    Create a pipeline for an ONNX model on disk.

    The network input size is taken from the model when it declares a static
    shape (overriding `cfg.input_size`); anchor-head strides are derived from
    the model's output shapes unless `cfg.strides` is set.
    Passthrough models that declare a `cfg.orig_size_input` input get the
    original image size fed into it on every call.
    """

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    resolved = resolve_path(model_path, root=root)
    if resolved.suffix.lower() != ".onnx":
        raise ValueError(f"Only .onnx models are supported (got '{resolved.suffix}').")

    backend = OnnxRuntimeBackend(
        resolved,
        OnnxRuntimeBackendConfig(providers=onnx_providers, input_name=onnx_input_name, output_names=onnx_output_names),
    )
    logger.info("loaded %s with providers %s", resolved.name, ", ".join(backend.providers_in_use))
    return pipeline_from_backend(backend, cfg)


def pipeline_from_backend(backend: Any, cfg: DetectorConfig) -> DetectionPipeline:
    """
    Wire a loaded backend to the decoder/post-processing described by `cfg`.

    `backend` needs `infer`, `input_size`, `output_shapes`,
    `extra_input_names` and `input_dtype()`, as `OnnxRuntimeBackend` provides.
    """

    try:
        input_size = backend.input_size
    except ValueError:
        input_size = cfg.input_size
    if input_size != cfg.input_size:
        logger.info("using model input size %s instead of configured %s", input_size, cfg.input_size)
        cfg = replace(cfg, input_size=input_size)

    decoder = build_decoder(cfg, output_shapes=backend.output_shapes if cfg.head == "anchor" else None)

    size_input = None
    size_dtype: Any = np.int64
    if cfg.head == "passthrough" and cfg.orig_size_input in backend.extra_input_names:
        size_input = cfg.orig_size_input
        size_dtype = backend.input_dtype(size_input)
        logger.info("feeding original image size to model input %r", size_input)

    return DetectionPipeline(
        backend.infer,
        DetectionPostprocessor(decoder, post_config(cfg)),
        input_size=cfg.input_size,
        resize=cfg.letterbox_mode,
        pixel_scale=cfg.pixel_scale,
        size_input=size_input,
        size_dtype=size_dtype,
        backend=backend,
    )
