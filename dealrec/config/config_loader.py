"""Configuration loader: YAML file merged over built-in defaults, then env overrides."""

import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from omegaconf import DictConfig, OmegaConf
from loguru import logger

from ..constants import (
    CATALOG_CACHE_HOURS,
    DATA_DIR,
    DEFAULT_FOREST_SIZE,
    DEFAULT_MAX_LEAF_SIZE,
    DEFAULT_NUM_RECOMMENDATIONS,
    DEFAULT_TOP_K,
    SIMILARITY_THRESHOLD,
)

DEFAULTS: Dict[str, Any] = {
    "system": {"environment": "local", "log_level": "INFO", "log_file": None},
    "storage": {"directory": DATA_DIR},
    "retrieval": {
        "forest_size": DEFAULT_FOREST_SIZE,
        "max_leaf_size": DEFAULT_MAX_LEAF_SIZE,
        "top_k": DEFAULT_TOP_K,
        "seed": None,
    },
    "graph": {
        "similarity_threshold": SIMILARITY_THRESHOLD,
        "num_recommendations": DEFAULT_NUM_RECOMMENDATIONS,
    },
    "catalog": {"cache_hours": CATALOG_CACHE_HOURS},
}

# env var -> (dotted key, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "DEALREC_ENV": ("system.environment", str),
    "DEALREC_LOG_LEVEL": ("system.log_level", str.upper),
    "DEALREC_DATA_DIR": ("storage.directory", str),
    "DEALREC_FOREST_SIZE": ("retrieval.forest_size", int),
    "DEALREC_MAX_LEAF_SIZE": ("retrieval.max_leaf_size", int),
    "DEALREC_SIMILARITY_THRESHOLD": ("graph.similarity_threshold", float),
}


class ConfigLoader:
    """Loads ``configs/config.yaml`` (or ``$DEALREC_CONFIG``) into an OmegaConf tree."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize the config loader.

        Args:
            config_path: Path to the YAML file; defaults to ``$DEALREC_CONFIG``
                or ``configs/config.yaml``
        """
        self.config_path = Path(config_path or os.getenv("DEALREC_CONFIG", "configs/config.yaml"))
        self.config = self._load_config()
        self._apply_env_overrides()

    def _load_config(self) -> DictConfig:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            overrides = yaml.safe_load(f) or {}

        config = OmegaConf.merge(OmegaConf.create(DEFAULTS), OmegaConf.create(overrides))
        logger.info(f"Loaded configuration from {self.config_path}")
        return config

    def _apply_env_overrides(self):
        for env_var, (key, parse) in ENV_OVERRIDES.items():
            raw = os.getenv(env_var)
            if raw is None:
                continue
            try:
                value = parse(raw)
            except ValueError:
                logger.warning(f"Ignoring {env_var}={raw!r}: cannot parse as {parse.__name__}")
                continue
            OmegaConf.update(self.config, key, value)
            logger.info(f"Applied environment override: {env_var} -> {key}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-separated key.

        Sections come back as plain dicts.
        """
        value = OmegaConf.select(self.config, key, default=default)
        if isinstance(value, DictConfig):
            return OmegaConf.to_container(value, resolve=True)
        return value

    def section(self, name: str) -> Dict[str, Any]:
        """A top-level section as a dict (empty if absent)."""
        return self.get(name) or {}

    def to_dict(self) -> Dict:
        return OmegaConf.to_container(self.config, resolve=True)

    def save(self, path: str):
        """Write the effective configuration (defaults, file and env applied)."""
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)
        logger.info(f"Saved configuration to {path}")


_config_instance: Optional[ConfigLoader] = None


def get_config() -> ConfigLoader:
    """Process-wide configuration, loaded on first use."""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigLoader()
    return _config_instance


def reset_config():
    global _config_instance
    _config_instance = None
