"""
Configuration loading.

Settings come from a JSON file (``configs/silo-linker.json`` by default) and
the environment. Secrets never live in the file: the Anthropic key is read
from ``ANTHROPIC_API_KEY`` and the WordPress application password from the
environment variable named by ``wp_app_password_env``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from silo_linker.suggester import DEFAULT_CACHE_TTL, DEFAULT_MAX_REQUESTS_PER_HOUR, MODEL_HAIKU
from silo_linker.wordpress_content import SiteConfig

logger = logging.getLogger("config")

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "configs" / "silo-linker.json"
DEFAULT_DATA_DIR = BASE_DIR / "data" / "silo_linker"

ENV_DATA_DIR = "SILO_LINKER_DATA_DIR"
ENV_LOG_LEVEL = "SILO_LINKER_LOG_LEVEL"
ENV_ANTHROPIC_KEY = "ANTHROPIC_API_KEY"


@dataclass
class LinkerConfig:
    data_dir: Optional[Path] = DEFAULT_DATA_DIR
    site_domain: str = ""
    site_id: str = ""
    wp_user: str = ""
    wp_app_password_env: str = "WP_APP_PASSWORD"
    wp_app_password: str = field(default="", repr=False)
    anthropic_api_key: str = field(default="", repr=False)
    use_suggester: bool = True
    suggester_model: str = MODEL_HAIKU
    suggester_cache_ttl: int = DEFAULT_CACHE_TTL
    suggester_max_requests_per_hour: int = DEFAULT_MAX_REQUESTS_PER_HOUR
    max_anchor_usage: int = 10
    anchor_warning_threshold: int = 5
    request_timeout: int = 30
    log_level: str = "INFO"

    def site_config(self) -> SiteConfig:
        return SiteConfig(
            domain=self.site_domain,
            site_id=self.site_id or self.site_domain,
            wp_user=self.wp_user,
            app_password=self.wp_app_password,
        )


_INT_FIELDS = (
    "suggester_cache_ttl",
    "suggester_max_requests_per_hour",
    "max_anchor_usage",
    "anchor_warning_threshold",
    "request_timeout",
)


def load_config(path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> LinkerConfig:
    """Load configuration from ``path`` (defaults when missing) plus the environment."""
    env = os.environ if env is None else env
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {config_path}: {exc}") from exc
        logger.debug("Loaded configuration from %s", config_path)
    elif path:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    config = LinkerConfig()
    for key in (
        "site_domain", "site_id", "wp_user", "wp_app_password_env",
        "suggester_model", "log_level",
    ):
        if data.get(key):
            setattr(config, key, str(data[key]))
    for key in _INT_FIELDS:
        if key in data:
            try:
                setattr(config, key, int(data[key]))
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric %s=%r", key, data[key])
    if "use_suggester" in data:
        config.use_suggester = str(data["use_suggester"]).strip().lower() in ("true", "1", "yes", "on")
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"]).expanduser() if data["data_dir"] else None

    if env.get(ENV_DATA_DIR):
        config.data_dir = Path(env[ENV_DATA_DIR]).expanduser()
    if env.get(ENV_LOG_LEVEL):
        config.log_level = env[ENV_LOG_LEVEL]
    config.anthropic_api_key = env.get(ENV_ANTHROPIC_KEY, "")
    if config.wp_app_password_env:
        config.wp_app_password = env.get(config.wp_app_password_env, "")
        if not config.wp_app_password:
            logger.debug("Env var %s not set, WordPress access disabled", config.wp_app_password_env)
    return config
