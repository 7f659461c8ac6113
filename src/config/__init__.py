"""Configuration loading for the reprocessor.

Configuration is loaded from ``config/config.yaml`` and is read-only once the
process has started.

Main Functions
--------------

    - load_config(): Load and validate configuration from YAML
    - get_config(): Get or load the singleton config instance
    - set_config() / reset_config(): Replace or drop the singleton (tests)

Usage Examples
--------------

    >>> from config import load_config
    >>> config = load_config()
    >>> config.retry_topic
    'orders.retry'

Configuration Priority
----------------------

1. ``overrides`` passed to load_config()
2. Environment variables referenced as ${VAR} / ${VAR:-default} in YAML
3. YAML configuration file
4. Dataclass defaults
"""

from config.config import (
    ReprocessorConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "ReprocessorConfig",
]
