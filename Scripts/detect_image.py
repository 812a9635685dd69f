import argparse
import json
from dataclasses import replace
from pathlib import Path

import cv2

from detkit import load_detector_config, load_pipeline
from detkit.log import configure_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Run an ONNX detection model on one image and print the detections.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument("--model", required=True, help="Path to an .onnx model.")
    parser.add_argument("--config", required=True, help="Path to a detector config JSON (head, thresholds, ...).")
    parser.add_argument("--conf", type=float, default=None, help="Override the score threshold.")
    parser.add_argument("--iou", type=float, default=None, help="Override the IoU threshold for NMS.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--json", action="store_true", help="Print detections as JSON lines.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG shows per-stage counts).")
    parser.add_argument("--json-logs", action="store_true", help="Emit log records as JSON lines on stderr.")
    args = parser.parse_args()

    configure_logging(args.log_level, json_logs=args.json_logs)

    cfg = load_detector_config(Path(args.config))
    if args.conf is not None:
        cfg = replace(cfg, score_threshold=float(args.conf))
    if args.iou is not None:
        cfg = replace(cfg, iou_threshold=float(args.iou))

    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    pipeline = load_pipeline(args.model, cfg, onnx_providers=onnx_providers)

    img = cv2.imread(args.image)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {args.image}")

    detections = pipeline(img)
    for det in detections:
        if args.json:
            x1, y1, x2, y2 = det.as_xyxy()
            print(json.dumps({"class_id": det.class_id, "score": det.score, "xyxy": [x1, y1, x2, y2]}))
        else:
            print(det.class_id, det.score, det.as_xyxy())

    print(f"detections={len(detections)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
