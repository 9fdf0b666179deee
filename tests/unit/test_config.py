#!/usr/bin/env python3
"""
Unit tests for configuration loading and validation
"""

import os
import shutil
import sys
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parkcore.domain.exceptions import ConfigurationError
from parkcore.domain.models import BillingMode, VehicleCategory
from parkcore.infrastructure.config import build_settings, load_settings


class ConfigTestBase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, text: str) -> str:
        path = os.path.join(self.temp_dir, "parkcore.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        return path


class TestDefaults(unittest.TestCase):

    def test_default_rate_table(self):
        table = build_settings().rate_table()
        self.assertEqual([s.rate for s in table.slabs], [Decimal('50'), Decimal('100'), Decimal('150'), Decimal('200')])
        self.assertEqual(table.day_pass_rate, Decimal('150'))
        self.assertEqual(table.currency, "INR")

    def test_default_thresholds(self):
        table = build_settings().threshold_table()
        car = table.lookup(BillingMode.HOURLY, VehicleCategory.CAR)
        self.assertEqual((car.warning_hours, car.alert_hours, car.critical_hours), (6, 8, 12))
        for category in VehicleCategory:
            self.assertIsNotNone(table.lookup(BillingMode.DAY_PASS, category))

    def test_default_engine_settings(self):
        engine = build_settings().engine
        self.assertEqual(engine.transaction_timeout_seconds, 10.0)
        self.assertEqual(engine.max_allocation_attempts, 2)


class TestYamlLoading(ConfigTestBase):

    def test_yaml_overrides_defaults(self):
        path = self.write_config("""
engine:
  database_url: sqlite:///parkcore-test.db
  transaction_timeout_seconds: 3
billing:
  currency: USD
  day_pass_rate: 20.5
  hourly_slabs:
    - {min_hours: 0, max_hours: 2, rate: 4.10}
    - {min_hours: 2, max_hours: 12, rate: 9}
overstay:
  thresholds:
    HOURLY:
      CAR: {warning: 2, alert: 3, critical: 4}
logging:
  level: debug
  log_dir: null
""")
        settings = load_settings(path, environ={})
        table = settings.rate_table()
        self.assertEqual(table.currency, "USD")
        self.assertEqual(table.day_pass_rate, Decimal('20.5'))
        self.assertEqual(table.slabs[0].rate, Decimal('4.10'))
        self.assertEqual(settings.engine.transaction_timeout_seconds, 3)
        self.assertEqual(settings.logging.level, "DEBUG")
        self.assertIsNone(settings.logging.log_dir)
        thresholds = settings.threshold_table()
        self.assertEqual(thresholds.lookup(BillingMode.HOURLY, VehicleCategory.CAR).alert_hours, 3)
        self.assertEqual(thresholds.lookup(BillingMode.HOURLY, VehicleCategory.BIKE).alert_hours, 6)

    def test_partial_thresholds_keep_other_defaults(self):
        """Pairs the file does not mention still raise alerts"""
        path = self.write_config("""
overstay:
  thresholds:
    DAY_PASS:
      EV: {warning: 20, alert: 26, critical: 40}
""")
        thresholds = load_settings(path, environ={}).threshold_table()
        self.assertEqual(thresholds.lookup(BillingMode.DAY_PASS, VehicleCategory.EV).warning_hours, 20)
        self.assertEqual(thresholds.lookup(BillingMode.DAY_PASS, VehicleCategory.CAR).warning_hours, 24)
        car = thresholds.lookup(BillingMode.HOURLY, VehicleCategory.CAR)
        self.assertEqual((car.warning_hours, car.alert_hours, car.critical_hours), (6, 8, 12))
        for mode in BillingMode:
            for category in VehicleCategory:
                self.assertIsNotNone(thresholds.lookup(mode, category))

    def test_config_path_from_environment(self):
        path = self.write_config("engine:\n  max_allocation_attempts: 5\n")
        settings = load_settings(environ={"PARKCORE_CONFIG": path})
        self.assertEqual(settings.engine.max_allocation_attempts, 5)

    def test_environment_overrides_file(self):
        path = self.write_config("engine:\n  database_url: sqlite:///file.db\n")
        settings = load_settings(path, environ={
            "DATABASE_URL": "postgresql://parking@db/parking",
            "PARKCORE_TX_TIMEOUT": "2.5",
            "PARKCORE_LOG_LEVEL": "warning",
        })
        self.assertEqual(settings.engine.database_url, "postgresql://parking@db/parking")
        self.assertEqual(settings.engine.transaction_timeout_seconds, 2.5)
        self.assertEqual(settings.logging.level, "WARNING")

    def test_empty_file_gives_defaults(self):
        settings = load_settings(self.write_config(""), environ={})
        self.assertEqual(settings.rate_table().day_pass_rate, Decimal('150'))

    def test_example_config_matches_defaults(self):
        example = Path(__file__).parent.parent.parent / "config" / "parkcore.example.yaml"
        settings = load_settings(str(example), environ={})
        defaults = build_settings()
        self.assertEqual(settings.rate_table(), defaults.rate_table())
        self.assertEqual(settings.threshold_table(), defaults.threshold_table())


# ============================================================================
# INVALID CONFIGURATION
# ============================================================================

class TestInvalidConfiguration(ConfigTestBase):

    def test_non_contiguous_slabs(self):
        with self.assertRaises(ConfigurationError):
            build_settings({"billing": {"hourly_slabs": [
                {"min_hours": 0, "max_hours": 1, "rate": 10},
                {"min_hours": 2, "max_hours": 4, "rate": 20},
            ]}})

    def test_slabs_not_starting_at_zero(self):
        with self.assertRaises(ConfigurationError):
            build_settings({"billing": {"hourly_slabs": [{"min_hours": 1, "max_hours": 3, "rate": 10}]}})

    def test_negative_rate(self):
        with self.assertRaises(ConfigurationError):
            build_settings({"billing": {"day_pass_rate": -1}})

    def test_unordered_thresholds(self):
        with self.assertRaises(ConfigurationError):
            build_settings({"overstay": {"thresholds": {"HOURLY": {"CAR": {"warning": 8, "alert": 6, "critical": 12}}}}})

    def test_unknown_vehicle_category(self):
        with self.assertRaises(ConfigurationError):
            build_settings({"overstay": {"thresholds": {"HOURLY": {"TRUCK": {"warning": 1, "alert": 2, "critical": 3}}}}})

    def test_unknown_key(self):
        with self.assertRaises(ConfigurationError):
            build_settings({"engine": {"pool_size": 5}})

    def test_non_positive_timeout(self):
        with self.assertRaises(ConfigurationError):
            build_settings({"engine": {"transaction_timeout_seconds": 0}})

    def test_malformed_yaml(self):
        with self.assertRaises(ConfigurationError):
            load_settings(self.write_config("engine: [unclosed\n"), environ={})

    def test_top_level_must_be_mapping(self):
        with self.assertRaises(ConfigurationError):
            load_settings(self.write_config("- just\n- a list\n"), environ={})

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_settings(os.path.join(self.temp_dir, "missing.yaml"), environ={})


if __name__ == '__main__':
    unittest.main()
