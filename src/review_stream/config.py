# src/review_stream/config.py
"""
Configuration loading: config.yaml plus .env overrides.
"""
import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from review_stream.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"

DEFAULT_BASE_URL = "http://localhost:5555"


def default_config() -> Dict[str, Any]:
    return {
        'api': {
            'base_url': DEFAULT_BASE_URL,
            'upload_endpoint': '/upload',
            'review_endpoint': '/review',
            'num_reviewers': 1,
            'page_limit': 0,
            'use_claude': False,
            'verify_ssl': True
        },
        'upload': {
            'timeout': 30.0,
            'max_bytes': 10 * 1024 * 1024
        },
        'session': {
            'throttle_ms': 200
        }
    }


def load_env():
    """Try to load .env file from the usual locations."""
    possible_paths = [
        Path.cwd() / ".env",
        Path.home() / ".review-stream.env",
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            logger.debug(f"Loaded .env from: {env_path}")
            return env_path

    logger.debug("No .env file found in standard locations")
    return None


def _env_float(key: str) -> Optional[float]:
    raw = os.getenv(key, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


def load_config(config_path: Optional[str] = None, use_env: bool = True) -> Dict[str, Any]:
    """
    Load configuration from YAML with defaults for every missing setting.

    A missing file is not an error; the defaults are used. Environment
    variables (REVIEW_API_BASE_URL, REVIEW_UPLOAD_TIMEOUT, REVIEW_THROTTLE_MS)
    override the file.
    """
    if use_env:
        load_env()

    config: Dict[str, Any] = {}
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if path.exists():
        try:
            with open(path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")
        logger.debug(f"Loaded config from: {path}")
    elif config_path:
        logger.warning(f"Config file not found: {path}, using defaults")

    # Ensure required structure
    if not isinstance(config, dict):
        config = {}

    for section, settings in default_config().items():
        if not isinstance(config.get(section), dict):
            config[section] = {}
        for key, value in settings.items():
            config[section].setdefault(key, value)

    if use_env:
        base_url = os.getenv("REVIEW_API_BASE_URL", "").strip()
        if base_url:
            config['api']['base_url'] = base_url
        timeout = _env_float("REVIEW_UPLOAD_TIMEOUT")
        if timeout is not None:
            config['upload']['timeout'] = timeout
        throttle = _env_float("REVIEW_THROTTLE_MS")
        if throttle is not None:
            config['session']['throttle_ms'] = throttle

    config['api']['base_url'] = str(config['api']['base_url']).rstrip('/')
    return config
