import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional
from firebase_functions import logger

DEDUP_POLICIES = ("disabled", "record", "suppress")

DEFAULTS: Dict[str, Any] = {
    "region": "asia-southeast2",
    "credentials_path": None,
    "collections": {
        "facilities": "emergency_services",
        "devices": "rideguard_id",
        "users": "users",
        "crashes": "crash_id",
    },
    "lookup_timeout_seconds": 10.0,
    "dispatch_timeout_seconds": 15.0,
    "max_contact_workers": 8,
    "crash_dedup_policy": "disabled",
    "notification": {
        "title": "TABRAKAN",
        "body_template": "RideGuard mendeteksi tabrakan, rumah sakit terdekat: {hospital_name}",
    },
}


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings for the crash-response functions."""
    region: str
    credentials_path: Optional[str]
    facilities_collection: str
    devices_collection: str
    users_collection: str
    crashes_collection: str
    lookup_timeout_seconds: float
    dispatch_timeout_seconds: float
    max_contact_workers: int
    crash_dedup_policy: str
    notification_title: str
    notification_body_template: str


class ConfigLoader:
    _instance = None
    _config = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigLoader, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self._load_config()

    def _load_config(self):
        """Load configuration from settings.json file"""
        try:
            script_dir = os.path.dirname(os.path.abspath(__file__))
            config_path = os.environ.get("RIDEGUARD_SETTINGS", os.path.join(script_dir, "settings.json"))

            with open(config_path, "r") as f:
                self._config = json.load(f)

            logger.info("✅ Configuration loaded successfully")

        except FileNotFoundError:
            logger.info("settings.json not found, using default settings")
            self._config = {}
        except json.JSONDecodeError as e:
            logger.error(f"❌ Invalid JSON in settings.json: {e}")
            self._config = {}

    def reload(self, overrides: Optional[Dict[str, Any]] = None):
        """Re-read the settings file, or replace it entirely with ``overrides``."""
        if overrides is not None:
            self._config = dict(overrides)
        else:
            self._config = None
            self._load_config()

    def get(self, key: str, default: Any = None) -> Any:
        value = (self._config or {}).get(key)
        if value is None:
            return DEFAULTS.get(key, default)
        return value

    def _section(self, key: str, field: str) -> Any:
        section = (self._config or {}).get(key) or {}
        if not isinstance(section, dict) or section.get(field) is None:
            return DEFAULTS[key][field]
        return section[field]

    def settings(self) -> Settings:
        """Build a typed Settings snapshot, falling back to defaults for bad values."""
        policy = str(self.get("crash_dedup_policy")).lower()
        if policy not in DEDUP_POLICIES:
            logger.warn(f"⚠️ Unknown crash_dedup_policy '{policy}', falling back to 'disabled'")
            policy = "disabled"

        return Settings(
            region=str(self.get("region")),
            credentials_path=self.get("credentials_path"),
            facilities_collection=self._section("collections", "facilities"),
            devices_collection=self._section("collections", "devices"),
            users_collection=self._section("collections", "users"),
            crashes_collection=self._section("collections", "crashes"),
            lookup_timeout_seconds=_positive_float(self.get("lookup_timeout_seconds"), DEFAULTS["lookup_timeout_seconds"]),
            dispatch_timeout_seconds=_positive_float(self.get("dispatch_timeout_seconds"), DEFAULTS["dispatch_timeout_seconds"]),
            max_contact_workers=max(1, int(_positive_float(self.get("max_contact_workers"), DEFAULTS["max_contact_workers"]))),
            crash_dedup_policy=policy,
            notification_title=self._section("notification", "title"),
            notification_body_template=self._section("notification", "body_template"),
        )


def _positive_float(value: Any, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warn(f"⚠️ Invalid numeric setting {value!r}, using {fallback}")
        return fallback
    return number if number > 0 else fallback


# Global instance
config = ConfigLoader()


# Convenience functions
def get_settings() -> Settings:
    return config.settings()


def get_region() -> str:
    return str(config.get("region"))
