import math
import pathlib
import sys
import tempfile
import unittest

# Ensure src/ is on path for direct test execution
ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from bcistream.config.runtime import OnlineConfig, config_from_mapping, load_config  # noqa: E402


class OnlineConfigTest(unittest.TestCase):
    def test_defaults(self):
        cfg = OnlineConfig()
        self.assertEqual(cfg.update_freq, 10.0)
        self.assertEqual(cfg.output_format, "distribution")
        self.assertTrue(math.isnan(cfg.empty_result_value))
        self.assertAlmostEqual(cfg.period, 0.1)

    def test_missing_file_falls_back_to_defaults(self):
        self.assertEqual(load_config(None).buffer_seconds, OnlineConfig().buffer_seconds)
        self.assertEqual(load_config("/nonexistent/online.yaml").update_freq, 10.0)

    def test_online_block_is_flattened(self):
        payload = {
            "online": {"update_freq": 4, "start_delay": 0.5},
            "buffer_seconds": 60,
            "unknown_key": "ignored",
        }
        cfg = config_from_mapping(payload)
        self.assertEqual(cfg.update_freq, 4.0)
        self.assertEqual(cfg.start_delay, 0.5)
        self.assertEqual(cfg.buffer_seconds, 60.0)

    def test_sanitized_clamps_limits(self):
        cfg = OnlineConfig(update_freq=0.0, start_delay=-3.0, marker_capacity=0, output_capacity=-5).sanitized()
        self.assertGreater(cfg.update_freq, 0.0)
        self.assertEqual(cfg.start_delay, 0.0)
        self.assertEqual(cfg.marker_capacity, 1)
        self.assertEqual(cfg.output_capacity, 0)

    def test_empty_result_value_is_kept_as_given(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = pathlib.Path(tmpdir) / "online.yaml"
            path.write_text("online:\n  empty_result_value: null\n", encoding="utf-8")
            cfg = load_config(path)
        self.assertIsNone(cfg.empty_result_value)
        self.assertEqual(config_from_mapping({"empty_result_value": "pending"}).empty_result_value, "pending")
        self.assertTrue(math.isnan(OnlineConfig().sanitized().empty_result_value))

    def test_load_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = pathlib.Path(tmpdir) / "online.yaml"
            path.write_text("online:\n  update_freq: 20\n  output_format: mode\n", encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual(cfg.update_freq, 20.0)
        self.assertEqual(cfg.output_format, "mode")

    def test_non_mapping_yaml_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = pathlib.Path(tmpdir) / "online.yaml"
            path.write_text("- 1\n- 2\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_config(path)


if __name__ == "__main__":
    unittest.main()
