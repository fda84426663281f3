# Unit tests for the JSON settings manager

import unittest
import os
import json
import tempfile
import logging

from treeforge.config.settings import SettingsManager


class TestSettingsManager(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.test_dir.name, "settings.json")

    def tearDown(self):
        self.test_dir.cleanup()

    def _write_config(self, content):
        with open(self.config_path, "w") as f:
            f.write(content)

    def test_defaults_written_on_first_use(self):
        manager = SettingsManager(config_dir=self.test_dir.name)
        self.assertTrue(os.path.exists(self.config_path))
        self.assertEqual(manager.get_setting("display.chunk_size"), 60)
        self.assertEqual(manager.get_setting("phylogenetics.ml_engine"), "iqtree")
        with open(self.config_path) as f:
            self.assertEqual(json.load(f), manager.default_settings)

    def test_stored_values_merged_over_defaults(self):
        """Unknown keys and values of the wrong type are ignored."""
        self._write_config(json.dumps({
            "entrez": {"email": "me@example.org"},
            "phylogenetics": {"threads": "many", "seed": 7},
            "obsolete": True,
        }))
        manager = SettingsManager(config_dir=self.test_dir.name)
        self.assertEqual(manager.get_setting("entrez.email"), "me@example.org")
        self.assertEqual(manager.get_setting("phylogenetics.seed"), 7)
        self.assertEqual(manager.get_setting("phylogenetics.threads"), 1)
        self.assertEqual(manager.get_setting("external_tool_paths.raxmlng"), "raxml-ng")
        self.assertIsNone(manager.get_setting("obsolete"))

    def test_corrupt_file_gives_defaults(self):
        self._write_config("{not json")
        manager = SettingsManager(config_dir=self.test_dir.name)
        self.assertEqual(manager.settings, manager.default_settings)

    def test_non_object_file_gives_defaults(self):
        self._write_config("[1, 2, 3]")
        manager = SettingsManager(config_dir=self.test_dir.name)
        self.assertEqual(manager.settings, manager.default_settings)

    def test_get_setting_missing_keys(self):
        manager = SettingsManager(config_dir=self.test_dir.name)
        self.assertEqual(manager.get_setting("display.width", 80), 80)
        self.assertEqual(manager.get_setting("display.chunk_size.extra", "x"), "x")

    def test_update_and_save(self):
        manager = SettingsManager(config_dir=self.test_dir.name)
        manager.update_setting("external_tool_paths.iqtree", "/opt/iqtree/bin/iqtree2")
        manager.update_setting("entrez.api_key", "abc123")
        self.assertTrue(manager.save_settings())

        reloaded = SettingsManager(config_dir=self.test_dir.name)
        self.assertEqual(reloaded.get_setting("external_tool_paths.iqtree"), "/opt/iqtree/bin/iqtree2")
        self.assertEqual(reloaded.get_setting("entrez.api_key"), "abc123")

    def test_config_dir_from_environment(self):
        previous = os.environ.get("TREEFORGE_CONFIG_DIR")
        os.environ["TREEFORGE_CONFIG_DIR"] = os.path.join(self.test_dir.name, "env_config")
        try:
            manager = SettingsManager()
        finally:
            if previous is None:
                del os.environ["TREEFORGE_CONFIG_DIR"]
            else:
                os.environ["TREEFORGE_CONFIG_DIR"] = previous
        self.assertEqual(manager.config_file_path,
                         os.path.join(self.test_dir.name, "env_config", "settings.json"))
        self.assertTrue(os.path.exists(manager.config_file_path))


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
