"""
Configuration — loads settings from .workstore.yaml, environment variables,
and built-in defaults (in that priority order: env > YAML > defaults).
"""

import os

import yaml


_DEFAULTS = {
    "db_path": "~/.workstore/workstore.db",
    "log_dir": "~/.workstore/logs",
    "log_level": "INFO",
    "embedding_provider": "ollama",
    "embedding_model": "nomic-embed-text",
    "embedding_dimensions": 384,
    "embedding_timeout": 30.0,
    "embedding_max_retries": 3,
    "ollama_base_url": "http://localhost:11434",
    "openai_api_key": "",
    "openai_base_url": "https://api.openai.com/v1",
    "chunk_max_size": 800,
    "chunk_overlap": 100,
    "search_top_k": 5,
    "search_min_similarity": 0.5,
    "busy_timeout": 10.0,
}

# Config file search locations
_CONFIG_FILENAMES = [".workstore.yaml", ".workstore.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


class Config:
    """Store configuration.

    Settings are resolved in priority order:
    1. Environment variables
    2. .workstore.yaml config file
    3. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return _DEFAULTS[yaml_key]

        self.DB_PATH = os.path.expanduser(_get("WORKSTORE_DB_PATH", "db_path"))
        self.LOG_DIR = os.path.expanduser(_get("WORKSTORE_LOG_DIR", "log_dir"))
        self.LOG_LEVEL = _get("WORKSTORE_LOG_LEVEL", "log_level").upper()
        self.BUSY_TIMEOUT = _get("DB_BUSY_TIMEOUT", "busy_timeout", cast=float)

        self.EMBEDDING_PROVIDER = _get("EMBEDDING_PROVIDER",
                                       "embedding_provider").lower()
        self.EMBEDDING_MODEL = _get("EMBEDDING_MODEL", "embedding_model")
        self.EMBEDDING_DIMENSIONS = _get("EMBEDDING_DIMENSIONS",
                                         "embedding_dimensions", cast=int)
        self.EMBEDDING_TIMEOUT = _get("EMBEDDING_TIMEOUT", "embedding_timeout",
                                      cast=float)
        self.EMBEDDING_MAX_RETRIES = _get("EMBEDDING_MAX_RETRIES",
                                          "embedding_max_retries", cast=int)
        self.OLLAMA_BASE_URL = _get("OLLAMA_BASE_URL", "ollama_base_url")

        # OpenAI / cloud provider
        openai_section = yd.get("openai", {}) if isinstance(yd.get("openai"), dict) else {}
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or openai_section.get(
            "api_key", _DEFAULTS["openai_api_key"])
        self.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or openai_section.get(
            "base_url", _DEFAULTS["openai_base_url"])

        self.CHUNK_MAX_SIZE = _get("CHUNK_MAX_SIZE", "chunk_max_size", cast=int)
        self.CHUNK_OVERLAP = _get("CHUNK_OVERLAP", "chunk_overlap", cast=int)

        self.SEARCH_TOP_K = _get("SEARCH_TOP_K", "search_top_k", cast=int)
        self.SEARCH_MIN_SIMILARITY = _get("SEARCH_MIN_SIMILARITY",
                                          "search_min_similarity", cast=float)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
