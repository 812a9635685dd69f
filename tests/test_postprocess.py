import unittest

import numpy as np

from detkit.decoders import GridDecoder, PassthroughDecoder
from detkit.postprocess import DetectionPostprocessor, PostConfig
from detkit.projection import LetterboxGeometry


def grid_output(rows) -> np.ndarray:
    return np.array([rows], dtype=np.float32)


class TestDetectionPostprocessor(unittest.TestCase):
    def setUp(self) -> None:
        # 16 x 16 input at stride 8: 4 cells
        self.decoder = GridDecoder.for_input((16, 16), strides=(8,))

    def test_grid_candidates_are_suppressed(self) -> None:
        out = grid_output(
            [
                [0.5, 0.5, 0.5, 0.5, 1.0, 0.8, 0.0],  # cell (0, 0)
                [-0.4, 0.5, 0.5, 0.5, 1.0, 0.9, 0.0],  # cell (1, 0), nearly the same box
                [0.5, 0.5, 0.0, 0.0, 1.0, 0.0, 0.7],  # cell (0, 1), other class
                [0.5, 0.5, 0.0, 0.0, 0.1, 0.0, 0.9],  # below threshold
            ]
        )
        post = DetectionPostprocessor(self.decoder, PostConfig(score_threshold=0.5, iou_threshold=0.4))
        dets = post.process(out)
        self.assertEqual([(d.class_id, round(d.score, 3)) for d in dets], [(0, 0.9), (1, 0.7)])

    def test_all_below_threshold_is_empty(self) -> None:
        out = np.zeros((1, 4, 7), dtype=np.float32)
        post = DetectionPostprocessor(self.decoder)
        self.assertEqual(post.process(out), [])

    def test_back_projection_uses_geometry(self) -> None:
        out = np.zeros((1, 4, 7), dtype=np.float32)
        out[0, 0] = [0.5, 0.5, 0, 0, 1.0, 1.0, 0.0]
        post = DetectionPostprocessor(self.decoder)
        dets = post.process(out, geometry=LetterboxGeometry(ratio=0.25))
        self.assertEqual(dets[0].as_xyxy(), (0.0, 0.0, 32.0, 32.0))

    def test_passthrough_skips_nms_by_default(self) -> None:
        p = np.array(
            [
                [0, 0, 10, 10, 0.9, 0],
                [0, 0, 10, 10, 0.8, 0],
            ],
            dtype=np.float32,
        )
        self.assertEqual(len(DetectionPostprocessor(PassthroughDecoder()).process(p)), 2)
        forced = DetectionPostprocessor(PassthroughDecoder(), PostConfig(apply_nms=True))
        self.assertEqual(len(forced.process(p)), 1)

    def test_passthrough_results_are_score_ordered(self) -> None:
        p = np.array(
            [
                [0, 0, 10, 10, 0.6, 0],
                [20, 20, 30, 30, 0.8, 1],
            ],
            dtype=np.float32,
        )
        dets = DetectionPostprocessor(PassthroughDecoder()).process(p)
        self.assertEqual([d.class_id for d in dets], [1, 0])

    def test_class_filter_and_max_detections(self) -> None:
        p = np.array(
            [
                [0, 0, 10, 10, 0.9, 0],
                [20, 0, 30, 10, 0.8, 1],
                [40, 0, 50, 10, 0.7, 1],
                [60, 0, 70, 10, 0.6, 1],
            ],
            dtype=np.float32,
        )
        post = DetectionPostprocessor(PassthroughDecoder(), PostConfig(class_ids=[1], max_detections=2))
        dets = post.process(p)
        self.assertEqual([round(d.score, 3) for d in dets], [0.8, 0.7])

    def test_zero_area_boxes_are_dropped(self) -> None:
        p = np.array(
            [
                [0, 0, 10, 10, 0.9, 0],
                [5, 5, 5, 20, 0.8, 0],
            ],
            dtype=np.float32,
        )
        dets = DetectionPostprocessor(PassthroughDecoder()).process(p)
        self.assertEqual(len(dets), 1)

    def test_clip_to_image(self) -> None:
        p = np.array([[-5, -5, 50, 50, 0.9, 0]], dtype=np.float32)
        post = DetectionPostprocessor(PassthroughDecoder(), PostConfig(clip_boxes=True))
        dets = post.process(p, image_size=(20, 30))
        self.assertEqual(dets[0].as_xyxy(), (0.0, 0.0, 19.0, 29.0))

    def test_reconfigure_swaps_decoder(self) -> None:
        post = DetectionPostprocessor(self.decoder)
        bigger = GridDecoder.for_input((32, 32), strides=(8,))
        post.reconfigure(bigger)
        self.assertIs(post.decoder, bigger)
        out = np.zeros((1, 16, 7), dtype=np.float32)
        out[0, 15] = [0.5, 0.5, 0, 0, 1.0, 1.0, 0.0]
        dets = post.process(out)
        self.assertEqual(dets[0].as_xyxy(), (24.0, 24.0, 32.0, 32.0))

    def test_repeated_calls_are_independent(self) -> None:
        out = np.zeros((1, 4, 7), dtype=np.float32)
        out[0, 3] = [0.5, 0.5, 0, 0, 1.0, 1.0, 0.0]
        post = DetectionPostprocessor(self.decoder)
        self.assertEqual(post.process(out), post.process(out))
        self.assertEqual(out[0, 3].tolist(), [0.5, 0.5, 0, 0, 1.0, 1.0, 0.0])


if __name__ == "__main__":
    unittest.main()
