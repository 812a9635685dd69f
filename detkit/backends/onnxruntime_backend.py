from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np


PathLike = Union[str, Path]

_ORT_INT_TYPES = {"tensor(int32)": np.int32, "tensor(int64)": np.int64}


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name: override the auto-selected image input
    - output_names: restrict/reorder the returned outputs; None returns all in model order
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_names: Optional[Sequence[str]] = None


class OnnxRuntimeBackend:
    """
    ONNX Runtime backend returning every named output of the model.

    Expects an NCHW float32 blob, typically shaped (1, 3, H, W). Outputs come
    back as an ordered name -> array mapping, which is what the head decoders
    consume.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = self.session.get_inputs()
        images = [i.name for i in inputs if len(i.shape) == 4]
        self.input_name = cfg.input_name or (images[0] if images else inputs[0].name)
        self.output_names: List[str] = (
            list(cfg.output_names) if cfg.output_names else [o.name for o in self.session.get_outputs()]
        )

    @property
    def providers_in_use(self) -> Sequence[str]:
        return tuple(self.session.get_providers())

    @property
    def input_size(self) -> Tuple[int, int]:
        """(width, height) of the image input, read from its NCHW shape."""
        inp = next(i for i in self.session.get_inputs() if i.name == self.input_name)
        shape = inp.shape
        if len(shape) != 4 or not isinstance(shape[2], int) or not isinstance(shape[3], int):
            raise ValueError(f"Input {self.input_name!r} has no static NCHW shape: {shape}")
        return int(shape[3]), int(shape[2])

    @property
    def extra_input_names(self) -> List[str]:
        """Model inputs besides the image blob (e.g. DETR's `orig_target_sizes`)."""
        return [i.name for i in self.session.get_inputs() if i.name != self.input_name]

    def input_dtype(self, name: str) -> np.dtype:
        inp = next(i for i in self.session.get_inputs() if i.name == name)
        return np.dtype(_ORT_INT_TYPES.get(inp.type, np.int64))

    @property
    def output_shapes(self) -> List[Tuple[Any, ...]]:
        by_name = {o.name: tuple(o.shape) for o in self.session.get_outputs()}
        return [by_name[n] for n in self.output_names]

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> "OrderedDict[str, np.ndarray]":
        inputs: Dict[str, Any] = {self.input_name: blob}
        if extra_inputs:
            inputs.update(extra_inputs)
        outputs = self.session.run(self.output_names, inputs)
        return OrderedDict(zip(self.output_names, outputs))
