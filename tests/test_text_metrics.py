from __future__ import annotations

import os
import sys
import unittest
from pathlib import Path
from unittest import mock

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from scenefence.enforcement import enforce_boundaries
from scenefence.scene import scene_from_dict
from scenefence.text_metrics import DEFAULT_FONT_SIZE, TEXT_METRICS_ENV, estimate_text_box, measure_text_box


class EstimateTests(unittest.TestCase):
    def test_fixed_advance_and_line_height(self) -> None:
        width, height = estimate_text_box("abcd", 10)
        self.assertAlmostEqual(width, 24)
        self.assertAlmostEqual(height, 12)

    def test_default_font_size(self) -> None:
        width, height = estimate_text_box("a")
        self.assertAlmostEqual(width, DEFAULT_FONT_SIZE * 0.6)
        self.assertAlmostEqual(height, DEFAULT_FONT_SIZE * 1.2)


class MeasureTextBoxTests(unittest.TestCase):
    def test_env_switches_to_estimate(self) -> None:
        with mock.patch.dict(os.environ, {TEXT_METRICS_ENV: " Estimate "}):
            self.assertEqual(measure_text_box("abcd", 10, "serif"), estimate_text_box("abcd", 10))

    def test_measured_box_is_positive(self) -> None:
        with mock.patch.dict(os.environ, {TEXT_METRICS_ENV: ""}):
            width, height = measure_text_box("Hello", 14)
        self.assertGreater(width, 0)
        self.assertGreater(height, 0)

    def test_estimated_text_gives_same_rect_everywhere(self) -> None:
        data = {
            "id": "s",
            "canvas": {"width": 400, "height": 200},
            "nodes": [{"kind": "text", "id": "label", "text": "Hello", "at": {"x": 4, "y": 4}, "style": {"fontSize": 20}}],
        }
        with mock.patch.dict(os.environ, {TEXT_METRICS_ENV: "estimate"}):
            rect = enforce_boundaries(scene_from_dict(data)).rects["label"]
        self.assertAlmostEqual(rect.w, 60)
        self.assertAlmostEqual(rect.h, 24)


if __name__ == "__main__":
    unittest.main()
