import unittest

import numpy as np

from detkit.decoders.grid import GridDecoder, decode_grid, make_grid_table
from detkit.errors import OutputShapeError
from detkit.projection import LetterboxGeometry


def single_cell(box, objectness=1.0, class_scores=(0.1, 0.9)) -> np.ndarray:
    # (1, cells, 5 + C): [cx, cy, log_w, log_h, objectness, class_scores...]
    return np.array([[list(box) + [objectness] + list(class_scores)]], dtype=np.float32)


class TestGridTable(unittest.TestCase):
    def test_cells_follow_stride_then_row_then_column(self) -> None:
        table = make_grid_table((32, 16), strides=(8, 16))
        # stride 8: 4 x 2 cells, stride 16: 2 x 1 cells
        self.assertEqual(len(table), 10)
        self.assertEqual(table.cells[:5].tolist(), [[0, 0], [1, 0], [2, 0], [3, 0], [0, 1]])
        self.assertEqual(table.cells[8:].tolist(), [[0, 0], [1, 0]])
        self.assertEqual(table.strides.tolist(), [8] * 8 + [16] * 2)

    def test_table_is_read_only(self) -> None:
        table = make_grid_table((16, 16), strides=(8,))
        with self.assertRaises(ValueError):
            table.cells[0, 0] = 5

    def test_default_strides(self) -> None:
        table = make_grid_table((640, 640))
        self.assertEqual(len(table), 80 * 80 + 40 * 40 + 20 * 20 + 10 * 10)


class TestGridDecoder(unittest.TestCase):
    def setUp(self) -> None:
        self.decoder = GridDecoder.for_input((8, 8), strides=(8,))

    def test_zero_box_params_at_first_cell(self) -> None:
        dets = self.decoder.decode(single_cell((0, 0, 0, 0)), LetterboxGeometry(), score_threshold=0.5)
        self.assertEqual(len(dets), 1)
        d = dets[0]
        # centre (0 + 0) * 8 = 0, size exp(0) * 8 = 8
        self.assertAlmostEqual(d.rect.x + d.rect.width / 2, 0.0)
        self.assertAlmostEqual(d.rect.y + d.rect.height / 2, 0.0)
        self.assertAlmostEqual(d.rect.width, 8.0)
        self.assertAlmostEqual(d.rect.height, 8.0)
        self.assertEqual(d.class_id, 1)
        self.assertAlmostEqual(d.score, 0.9, places=6)

    def test_half_cell_offset_centres_the_box(self) -> None:
        dets = self.decoder.decode(single_cell((0.5, 0.5, 0, 0)), LetterboxGeometry(), score_threshold=0.5)
        d = dets[0]
        self.assertAlmostEqual(d.rect.x, 0.0)
        self.assertAlmostEqual(d.rect.y, 0.0)
        self.assertAlmostEqual(d.rect.x + d.rect.width / 2, 4.0)
        self.assertAlmostEqual(d.rect.y + d.rect.height / 2, 4.0)

    def test_resize_ratio_scales_back(self) -> None:
        dets = self.decoder.decode(single_cell((0.5, 0.5, 0, 0)), LetterboxGeometry(ratio=0.5), score_threshold=0.5)
        self.assertEqual(dets[0].as_xyxy(), (0.0, 0.0, 16.0, 16.0))

    def test_score_is_class_confidence_times_objectness(self) -> None:
        out = single_cell((0, 0, 0, 0), objectness=0.5, class_scores=(0.8, 0.2, 0.1))
        dets = self.decoder.decode(out, LetterboxGeometry(), score_threshold=0.3)
        self.assertEqual(dets[0].class_id, 0)
        self.assertAlmostEqual(dets[0].score, 0.4, places=6)

        self.assertEqual(self.decoder.decode(out, LetterboxGeometry(), score_threshold=0.41), [])

    def test_class_ties_pick_first_index(self) -> None:
        out = single_cell((0, 0, 0, 0), class_scores=(0.3, 0.7, 0.7))
        self.assertEqual(self.decoder.decode(out, LetterboxGeometry(), 0.5)[0].class_id, 1)

    def test_cells_use_their_grid_position_and_stride(self) -> None:
        decoder = GridDecoder.for_input((16, 16), strides=(8, 16))
        out = np.zeros((1, 5, 7), dtype=np.float32)
        out[0, 3, :] = [0.5, 0.5, 0, 0, 1.0, 0.0, 1.0]  # stride 8, grid (1, 1)
        out[0, 4, :] = [0.5, 0.5, 0, 0, 1.0, 1.0, 0.0]  # stride 16, grid (0, 0)
        dets = decoder.decode(out, LetterboxGeometry(), score_threshold=0.5)
        self.assertEqual([d.as_xyxy() for d in dets], [(8.0, 8.0, 16.0, 16.0), (0.0, 0.0, 16.0, 16.0)])
        self.assertEqual([d.class_id for d in dets], [1, 0])

    def test_channel_first_output_is_accepted(self) -> None:
        decoder = GridDecoder.for_input((16, 16), strides=(8, 16))
        out = np.zeros((1, 5, 7), dtype=np.float32)
        out[0, 0, :] = [0.5, 0.5, 0, 0, 1.0, 0.0, 1.0]
        channel_first = np.transpose(out, (0, 2, 1))
        a = decoder.decode(out, LetterboxGeometry(), 0.5)
        b = decoder.decode(channel_first, LetterboxGeometry(), 0.5)
        self.assertEqual(a, b)

    def test_cell_count_mismatch_raises(self) -> None:
        out = np.zeros((1, 3, 7), dtype=np.float32)
        with self.assertRaises(OutputShapeError):
            self.decoder.decode(out, LetterboxGeometry(), 0.5)

    def test_class_count_mismatch_raises(self) -> None:
        decoder = GridDecoder.for_input((8, 8), strides=(8,), num_classes=80)
        with self.assertRaises(OutputShapeError):
            decoder.decode(single_cell((0, 0, 0, 0)), LetterboxGeometry(), 0.5)

    def test_batch_larger_than_one_raises(self) -> None:
        out = np.zeros((2, 1, 7), dtype=np.float32)
        with self.assertRaises(OutputShapeError):
            self.decoder.decode(out, LetterboxGeometry(), 0.5)

    def test_saturated_size_is_not_clamped(self) -> None:
        with self.assertLogs("detkit.decoders.grid", level="WARNING"):
            dets = decode_grid(single_cell((0, 0, 1000, 0)), self.decoder.table, LetterboxGeometry(), 0.5)
        self.assertTrue(np.isinf(dets[0].rect.width))


if __name__ == "__main__":
    unittest.main()
