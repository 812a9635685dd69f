import json
import logging
import sys
import unittest

import numpy as np

from detkit.decoders import PassthroughDecoder
from detkit.log import JsonFormatter, configure_logging, record_fields
from detkit.postprocess import DetectionPostprocessor, PostConfig


class TestJsonFormatter(unittest.TestCase):
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="detkit.postprocess",
            level=logging.DEBUG,
            pathname=__file__,
            lineno=1,
            msg="%d detection(s) left after NMS",
            args=(2,),
            exc_info=None,
        )
        record.__dict__.update(extra)
        return record

    def test_record_is_one_json_object(self) -> None:
        line = JsonFormatter().format(self._record(stage="nms", count=2))
        payload = json.loads(line)
        self.assertEqual(payload["level"], "DEBUG")
        self.assertEqual(payload["logger"], "detkit.postprocess")
        self.assertEqual(payload["message"], "2 detection(s) left after NMS")
        self.assertEqual(payload["stage"], "nms")
        self.assertEqual(payload["count"], 2)
        self.assertIn("ts", payload)
        self.assertNotIn("exc_info", payload)

    def test_standard_attributes_are_not_extra_fields(self) -> None:
        self.assertEqual(record_fields(self._record()), {})
        self.assertEqual(record_fields(self._record(stage="decode")), {"stage": "decode"})

    def test_exception_text_included(self) -> None:
        try:
            raise ValueError("bad output")
        except ValueError:
            record = self._record()
            record.exc_info = sys.exc_info()
        payload = json.loads(JsonFormatter().format(record))
        self.assertIn("ValueError: bad output", payload["exc_info"])


class TestPostprocessFields(unittest.TestCase):
    def test_stage_counts_attached(self) -> None:
        post = DetectionPostprocessor(PassthroughDecoder(), PostConfig(apply_nms=True))
        outputs = np.array([[0, 0, 10, 10, 0.9, 1], [1, 1, 10, 10, 0.8, 1]], dtype=np.float32)
        with self.assertLogs("detkit.postprocess", level="DEBUG") as logs:
            post.process(outputs)
        fields = [record_fields(r) for r in logs.records]
        self.assertIn({"stage": "decode", "count": 2}, fields)
        self.assertIn({"stage": "nms", "count": 1}, fields)


class TestConfigureLogging(unittest.TestCase):
    def setUp(self) -> None:
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))

        def restore() -> None:
            root.setLevel(saved[0])
            root.handlers[:] = saved[1]

        self.addCleanup(restore)

    def test_lowercase_level_accepted(self) -> None:
        configure_logging("debug")
        self.assertEqual(logging.getLogger().level, logging.DEBUG)
        configure_logging(logging.WARNING)
        self.assertEqual(logging.getLogger().level, logging.WARNING)

    def test_single_handler_with_selected_formatter(self) -> None:
        configure_logging("info", json_logs=True)
        configure_logging("info", json_logs=True)
        handlers = logging.getLogger().handlers
        self.assertEqual(len(handlers), 1)
        self.assertIsInstance(handlers[0].formatter, JsonFormatter)

        configure_logging("info")
        self.assertNotIsInstance(logging.getLogger().handlers[0].formatter, JsonFormatter)


if __name__ == "__main__":
    unittest.main()
