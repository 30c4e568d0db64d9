"""
Tests for environment-driven settings.
"""

import os
import unittest
from pathlib import Path
from unittest.mock import patch

from studioschedule.config import get_config, reset_config


class TestConfig(unittest.TestCase):
    def setUp(self) -> None:
        reset_config()

    def tearDown(self) -> None:
        reset_config()

    def test_environment_overrides_and_store_path(self) -> None:
        env = {
            "STUDIOSCHEDULE_WORKSPACE_PATH": "/tmp/studio/workspace.json",
            "STUDIOSCHEDULE_MAX_WORKERS": "2",
        }
        with patch.dict(os.environ, env):
            config = get_config()
        self.assertEqual(config.max_workers, 2)
        self.assertEqual(config.resolved_store_path(), Path("/tmp/studio/store.json"))
        self.assertIs(get_config(), config)

    def test_reset_reloads_environment(self) -> None:
        with patch.dict(os.environ, {"STUDIOSCHEDULE_API_URL": "http://studio.local"}):
            self.assertEqual(get_config().api_url, "http://studio.local")
        with patch.dict(os.environ, {"STUDIOSCHEDULE_API_URL": "http://other.local"}):
            self.assertEqual(get_config().api_url, "http://studio.local")
            reset_config()
            self.assertEqual(get_config().api_url, "http://other.local")


if __name__ == "__main__":
    unittest.main()
