"""
Global app configuration manager for the bitwise workbench.

This module manages the app configuration folder that stores:
- app_settings.json: UI preferences and viewer defaults
- presets.json: user-defined analysis presets
- anomalies.json: anomaly detector definitions
- strategies.json: declarative strategy definitions
- results.json: recorded strategy execution results

The app config folder location is determined by (in order of priority):
1. BITWISE_CONFIG environment variable
2. Redirect file (config_redirect.txt in the default folder) pointing to a custom path
3. Default platform-specific location from platformdirs
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import platformdirs

from .shared.logger import get_logger

logger = get_logger(__name__)

_APP_NAME = "bitwise-workbench"
_REDIRECT_FILE_NAME = "config_redirect.txt"

# Default input size limit, in bits
DEFAULT_MAX_BITS = 8_000_000


def get_max_bits() -> int:
    """Largest bit string accepted by the API (``BITWISE_MAX_BITS``)."""
    try:
        return int(os.environ.get("BITWISE_MAX_BITS", DEFAULT_MAX_BITS))
    except ValueError:
        logger.warning("Invalid BITWISE_MAX_BITS, using %d", DEFAULT_MAX_BITS)
        return DEFAULT_MAX_BITS


class AppConfigManager:
    """Manages the global app configuration folder.

    Besides app settings, any component can persist a small JSON document
    by name through :meth:`load_document` / :meth:`save_document`.
    """

    def __init__(self):
        self._config_dir = self._get_config_dir()
        self._config_dir.mkdir(parents=True, exist_ok=True)

    def _get_config_dir(self) -> Path:
        """Get the config directory following priority order."""
        env_config = os.environ.get("BITWISE_CONFIG")
        if env_config:
            return Path(env_config)

        default_path = self._get_default_config_dir()
        redirect_file = default_path / _REDIRECT_FILE_NAME
        if redirect_file.exists():
            try:
                redirect_path = redirect_file.read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.warning("Failed to read config redirect: %s", e)
            else:
                if redirect_path and Path(redirect_path).exists():
                    return Path(redirect_path)

        return default_path

    def _get_default_config_dir(self) -> Path:
        return Path(platformdirs.user_config_dir(_APP_NAME))

    @property
    def config_dir(self) -> Path:
        """Get the config directory path."""
        return self._config_dir

    # ============================================================================
    # Config Path Management
    # ============================================================================

    def get_config_path(self) -> str:
        return str(self._config_dir)

    def is_using_custom_path(self) -> bool:
        return self._config_dir != self._get_default_config_dir()

    def set_config_path(self, path: str) -> bool:
        """Point the default config folder at a custom path via a redirect file.

        Raises:
            ValueError: If the path doesn't exist
        """
        new_path = Path(path).resolve()
        if not new_path.exists():
            raise ValueError(f"Config path does not exist: {path}")

        default_path = self._get_default_config_dir()
        default_path.mkdir(parents=True, exist_ok=True)
        try:
            (default_path / _REDIRECT_FILE_NAME).write_text(str(new_path), encoding="utf-8")
        except OSError as e:
            logger.error("Failed to set config path: %s", e)
            return False
        self._config_dir = new_path
        return True

    def reset_config_path(self) -> bool:
        default_path = self._get_default_config_dir()
        redirect_file = default_path / _REDIRECT_FILE_NAME
        try:
            if redirect_file.exists():
                redirect_file.unlink()
            default_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to reset config path: %s", e)
            return False
        self._config_dir = default_path
        return True

    # ============================================================================
    # JSON Documents
    # ============================================================================

    def _document_path(self, name: str) -> Path:
        return self._config_dir / f"{name}.json"

    def load_document(self, name: str, default: Callable[[], Any]) -> Any:
        """Load ``<name>.json``; missing or corrupt files yield ``default()``."""
        path = self._document_path(name)
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load %s, using defaults: %s", path.name, e)
        return default()

    def save_document(self, name: str, data: Any) -> bool:
        path = self._document_path(name)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            return True
        except (OSError, TypeError) as e:
            logger.error("Failed to save %s: %s", path.name, e)
            return False

    # ============================================================================
    # App Settings
    # ============================================================================

    def _default_app_settings(self) -> Dict[str, Any]:
        return {
            "version": "1.0",
            "ui_preferences": {
                "theme": "system",
                "bits_per_row": 64,
                "group_size": 8,
                "show_ascii": True,
            },
            "analysis": {
                "entropy_window": 64,
                "entropy_step": 32,
                "max_points": 1000,
            },
            "last_updated": datetime.now().isoformat(),
        }

    def get_app_settings(self) -> Dict[str, Any]:
        return self.load_document("app_settings", self._default_app_settings)

    def save_app_settings(self, settings: Dict[str, Any]) -> bool:
        settings["last_updated"] = datetime.now().isoformat()
        return self.save_document("app_settings", settings)

    def update_app_settings(self, updates: Dict[str, Any]) -> bool:
        """Update app settings with deep merge."""
        merged = self._deep_merge(self.get_app_settings(), updates)
        return self.save_app_settings(merged)

    def _deep_merge(self, base: Dict, updates: Dict) -> Dict:
        result = base.copy()
        for key, value in updates.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def get_setting(self, section: str, key: str, default: Optional[Any] = None) -> Any:
        return self.get_app_settings().get(section, {}).get(key, default)


app_config = AppConfigManager()
