"""Runtime settings: environment variables layered over config/plane-config.json."""

import json
import logging
import os

from services.plane_cache import DEFAULT_TTLS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(__file__), "..", "config", "plane-config.json"
)

# config file key -> (attribute, type)
_FILE_KEYS = {
    "maxConcurrentFetches": ("max_concurrent_fetches", int),
    "maxProjectWorkers": ("max_project_workers", int),
    "maxIterations": ("max_iterations", int),
    "maxWorkItemsPerProject": ("max_work_items_per_project", int),
    "commentTruncateLength": ("comment_truncate_length", int),
    "requestTimeout": ("request_timeout", float),
    "maxRetries": ("max_retries", int),
    "initialRetryDelay": ("initial_retry_delay", float),
}


class PlaneSettings:
    """Settings for one app instance. Class attributes are the defaults."""

    base_url = "https://api.plane.so/api/v1"
    api_key = ""
    workspace_slug = ""
    log_level = "INFO"

    max_concurrent_fetches = 5
    max_project_workers = 3
    max_iterations = 10
    max_work_items_per_project = 200
    comment_truncate_length = 200
    request_timeout = 45.0
    max_retries = 3
    initial_retry_delay = 1.0

    def __init__(self, **overrides):
        self.ttls = {}
        self.ignored_members = []
        for name, value in overrides.items():
            if not hasattr(self, name):
                raise TypeError(f"Unknown setting: {name}")
            setattr(self, name, value)

    def apply_file_config(self, config: dict):
        for key, (attribute, cast) in _FILE_KEYS.items():
            if key in config:
                try:
                    setattr(self, attribute, cast(config[key]))
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring invalid value for {key}: {config[key]!r}")

        for store, seconds in (config.get("ttlSeconds") or {}).items():
            if store not in DEFAULT_TTLS:
                logger.warning(f"Ignoring TTL for unknown cache store: {store}")
                continue
            try:
                self.ttls[store] = float(seconds)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid TTL for {store}: {seconds!r}")

        self.ignored_members = [str(m) for m in config.get("ignoredMembers", []) if m]

    def apply_environment(self, environ):
        self.api_key = environ.get("PLANE_API_KEY", self.api_key)
        self.base_url = environ.get("PLANE_BASE_URL") or self.base_url
        self.workspace_slug = environ.get("WORKSPACE_SLUG", self.workspace_slug)
        self.log_level = (environ.get("LOG_LEVEL") or self.log_level).upper()


def load_config_file(config_path: str) -> dict:
    """Read the JSON config file, or an empty dict when it is missing or broken."""
    if not os.path.exists(config_path):
        logger.info("No plane-config.json found, using defaults")
        return {}

    try:
        with open(config_path, "r") as f:
            config = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Failed to load plane config: {e}")
        return {}

    if not isinstance(config, dict):
        logger.warning("plane-config.json must hold a JSON object, using defaults")
        return {}
    return config


def load_settings(config_path: str = None, environ=None) -> PlaneSettings:
    settings = PlaneSettings()
    settings.apply_file_config(load_config_file(config_path or DEFAULT_CONFIG_PATH))
    settings.apply_environment(os.environ if environ is None else environ)
    return settings
