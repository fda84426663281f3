# Persistent settings for TreeForge: tool paths, NCBI credentials and defaults.

import copy
import json
import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV_VAR = "TREEFORGE_CONFIG_DIR"


class SettingsManager:
    """Manages TreeForge settings, loading from and saving to a JSON file."""

    def __init__(self, app_name: str = "TreeForge", config_dir: Optional[str] = None):
        self.app_name = app_name
        self.config_dir = config_dir or self._get_config_dir()
        self.config_file_path = os.path.join(self.config_dir, "settings.json")

        self.default_settings = {
            "external_tool_paths": {
                "iqtree": "iqtree2",
                "raxmlng": "raxml-ng",
            },
            "entrez": {
                # NCBI asks every E-utilities client to identify itself
                "email": "",
                "api_key": "",
            },
            "display": {
                "chunk_size": 60,
            },
            "phylogenetics": {
                "bootstrap_replicates": 100,
                "ml_engine": "iqtree",
                "threads": 1,
                "seed": 12345,
            },
            "debug_mode": False,
        }

        self.settings = self.load_settings()
        logger.debug(f"Settings initialized. Config path: {self.config_file_path}")

    def _get_config_dir(self) -> str:
        """Determines the configuration directory: env override first, then the OS default."""
        override = os.getenv(CONFIG_DIR_ENV_VAR)
        if override:
            config_dir = override
        elif os.name == 'nt':
            config_dir = os.path.join(os.getenv('APPDATA', ''), self.app_name)
        else:
            config_dir = os.path.join(os.path.expanduser('~'), '.config', self.app_name)

        if not os.path.exists(config_dir):
            try:
                os.makedirs(config_dir, exist_ok=True)
                logger.info(f"Created configuration directory: {config_dir}")
            except OSError as e:
                logger.error(f"Error creating configuration directory {config_dir}: {e}")
                local_fallback_dir = os.path.join(os.getcwd(), f".{self.app_name.lower()}_config")
                try:
                    os.makedirs(local_fallback_dir, exist_ok=True)
                except OSError as e_local:
                    logger.error(f"Error creating fallback local config directory {local_fallback_dir}: {e_local}")
                    return os.getcwd()
                return local_fallback_dir
        return config_dir

    def _deep_merge_dicts(self, defaults: dict, loaded: dict) -> dict:
        """
        Recursively merges 'loaded' into a copy of 'defaults'.
        Keys unknown to 'defaults' are dropped; values of a different type keep the default.
        """
        merged = copy.deepcopy(defaults)

        for key, value in loaded.items():
            if key not in merged:
                logger.warning(f"Ignoring unknown key '{key}' from loaded settings.")
                continue
            if isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self._deep_merge_dicts(merged[key], value)
            elif isinstance(merged[key], type(value)):
                merged[key] = value
            else:
                logger.warning(f"Type mismatch for key '{key}' in settings. Keeping default.")
        return merged

    def load_settings(self) -> dict:
        """Loads settings from the JSON file. Returns defaults if the file is missing or corrupt."""
        if not os.path.exists(self.config_file_path):
            logger.info(f"Settings file not found at {self.config_file_path}. Using default settings and creating file.")
            self.save_settings(copy.deepcopy(self.default_settings))
            return copy.deepcopy(self.default_settings)

        try:
            with open(self.config_file_path, 'r') as f:
                loaded_settings = json.load(f)
        except json.JSONDecodeError:
            logger.error(f"Error decoding JSON from {self.config_file_path}. Using default settings.")
            return copy.deepcopy(self.default_settings)
        except OSError as e:
            logger.error(f"Could not read settings from {self.config_file_path}: {e}. Using defaults.")
            return copy.deepcopy(self.default_settings)

        if not isinstance(loaded_settings, dict):
            logger.error(f"Settings file {self.config_file_path} does not hold a JSON object. Using defaults.")
            return copy.deepcopy(self.default_settings)

        return self._deep_merge_dicts(self.default_settings, loaded_settings)

    def save_settings(self, settings_data: Optional[dict] = None) -> bool:
        """Saves settings_data (or the in-memory settings) to the config file as JSON."""
        data_to_save = settings_data if settings_data is not None else self.settings
        try:
            os.makedirs(self.config_dir, exist_ok=True)
            with open(self.config_file_path, 'w') as f:
                json.dump(data_to_save, f, indent=4)
        except OSError as e:
            logger.error(f"Error writing settings to {self.config_file_path}: {e}")
            return False
        logger.info(f"Settings saved to {self.config_file_path}")
        self.settings = data_to_save
        return True

    def get_setting(self, key_path: str, default_value=None):
        """
        Retrieves a setting using a dot-separated key path (e.g. "phylogenetics.seed").
        Returns default_value if the key is not found.
        """
        current_level = self.settings
        for key in key_path.split('.'):
            if not isinstance(current_level, dict):
                logger.warning(f"Intermediate key in '{key_path}' is not a dictionary. Path invalid.")
                return default_value
            if key not in current_level:
                logger.debug(f"Setting '{key_path}' not found. Returning default: {default_value}")
                return default_value
            current_level = current_level[key]
        return current_level

    def update_setting(self, key_path: str, value):
        """
        Updates or adds a setting using a dot-separated key path, creating
        intermediate dictionaries as needed. Call save_settings() to persist.
        """
        keys = key_path.split('.')
        current_level = self.settings

        for key in keys[:-1]:
            if key not in current_level or not isinstance(current_level[key], dict):
                logger.debug(f"Creating intermediate dictionary for key '{key}' in path '{key_path}'")
                current_level[key] = {}
            current_level = current_level[key]

        current_level[keys[-1]] = value
        logger.debug(f"Set setting '{key_path}' to '{value}'")


# Global instance shared by the library and the command line
settings_manager = SettingsManager()
