"""Reprocessor configuration from YAML file.

One file (config/config.yaml by default) holds:
- Kafka connection settings plus consumer/producer defaults and per-worker overrides
- Primary, retry and DLQ topic names
- Reprocessing policy (max attempts, error name sets, precedence, scheduler cadence)
- Processing operation and logging settings

String values may reference the environment as ${VAR_NAME} or
${VAR_NAME:-default}; unset variables without a default are left verbatim.
"""

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional

import yaml

from core.errors.exceptions import ConfigurationError
from core.types import PrecedencePolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

# kafka.<name> sections holding per-worker consumer/producer overrides
WORKER_NAMES = ("main_flow", "reprocessor")

_ENV_REFERENCE = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

AUTO_OFFSET_RESET_VALUES = ["earliest", "latest", "none"]
ACKS_VALUES = ["0", "1", "all", 0, 1]
COMPRESSION_VALUES = ["none", "gzip", "snappy", "lz4", "zstd"]


def load_yaml(path: Path) -> Dict[str, Any]:
    """Parse a YAML file; a missing or empty file gives {}."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Substitute ${VAR} / ${VAR:-default} references throughout nested config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if not isinstance(data, str):
        return data

    def substitute(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        return os.getenv(name, match.group(0) if default is None else default)

    return _ENV_REFERENCE.sub(substitute, data)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Return base with overlay merged in; nested dicts merge, everything else replaces."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _require_one_of(settings: Dict[str, Any], key: str, allowed: List[Any], context: str) -> None:
    if key in settings and settings[key] not in allowed:
        raise ConfigurationError(f"{context}: {key} must be one of {allowed}, got '{settings[key]}'")


def _require_at_least(settings: Dict[str, Any], key: str, floor: float, context: str) -> None:
    if key in settings and settings[key] < floor:
        raise ConfigurationError(f"{context}: {key} must be >= {floor}, got {settings[key]}")


def _require_above(settings: Dict[str, Any], key: str, floor: float, context: str) -> None:
    if key in settings and settings[key] <= floor:
        raise ConfigurationError(f"{context}: {key} must be > {floor}, got {settings[key]}")


def _check_consumer_settings(settings: Dict[str, Any], context: str) -> None:
    """Kafka group-membership timing rules, plus manual commit being mandatory."""
    heartbeat = settings.get("heartbeat_interval_ms")
    session_timeout = settings.get("session_timeout_ms")
    max_poll_interval = settings.get("max_poll_interval_ms")

    if heartbeat is not None and session_timeout is not None and heartbeat >= session_timeout / 3:
        raise ConfigurationError(
            f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
            f"session_timeout_ms/3 ({session_timeout / 3:.0f})"
        )
    if session_timeout is not None and max_poll_interval is not None and session_timeout >= max_poll_interval:
        raise ConfigurationError(
            f"{context}: session_timeout_ms ({session_timeout}) must be < "
            f"max_poll_interval_ms ({max_poll_interval})"
        )
    if settings.get("enable_auto_commit"):
        raise ConfigurationError(
            f"{context}: enable_auto_commit must be false, offsets are committed "
            "only after a failure has been routed"
        )

    _require_at_least(settings, "max_poll_records", 1, context)
    _require_one_of(settings, "auto_offset_reset", AUTO_OFFSET_RESET_VALUES, context)


def _check_producer_settings(settings: Dict[str, Any], context: str) -> None:
    _require_one_of(settings, "acks", ACKS_VALUES, context)
    _require_one_of(settings, "compression_type", COMPRESSION_VALUES, context)
    _require_at_least(settings, "linger_ms", 0, context)


_COMPONENT_CHECKS: Dict[str, Callable[[Dict[str, Any], str], None]] = {
    "consumer": _check_consumer_settings,
    "producer": _check_producer_settings,
}


@dataclass
class ReprocessorConfig:
    """Reprocessor configuration, loaded once at startup and read-only afterwards.

    File layout:
        kafka:
          connection: {...}
          consumer_defaults: {...}
          producer_defaults: {...}
          topics: {primary, retry, dlq}
          consumer_group_prefix: ...
          main_flow: {consumer: {...}, producer: {...}}
          reprocessor: {consumer: {...}, producer: {...}}
        reprocessing: {...}
        processing: {...}
        logging: {...}

    Kafka timings are milliseconds; scheduler frequency is seconds.
    """

    # kafka.connection
    bootstrap_servers: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 120000
    metadata_max_age_ms: int = 300000
    connections_max_idle_ms: int = 540000

    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)
    workers: Dict[str, Any] = field(default_factory=dict)

    # kafka.topics
    primary_topic: str = ""
    retry_topic: str = ""
    dlq_topic: str = ""
    consumer_group_prefix: str = "reprocessor"

    # reprocessing
    max_attempts: int = 3
    retryable_errors: FrozenSet[str] = field(default_factory=frozenset)
    non_retryable_errors: FrozenSet[str] = field(default_factory=frozenset)
    precedence: PrecedencePolicy = PrecedencePolicy.NON_RETRYABLE_FIRST
    scheduler_frequency_seconds: float = 60.0
    batch_size: int = 100
    poll_timeout_ms: int = 1000

    processing: Dict[str, Any] = field(default_factory=dict)
    log_dir: str = "logs"

    @property
    def overlapping_error_names(self) -> List[str]:
        return sorted(self.retryable_errors & self.non_retryable_errors)

    def get_worker_config(self, worker_name: str, component: str) -> Dict[str, Any]:
        """Settings for one worker's consumer or producer: defaults overlaid by kafka.<worker>.<component>."""
        defaults = {"consumer": self.consumer_defaults, "producer": self.producer_defaults}
        if component not in defaults:
            raise ValueError(f"Invalid component: {component}. Must be 'consumer' or 'producer'")
        overrides = self.workers.get(worker_name, {}).get(component, {})
        return {**defaults[component], **overrides}

    def get_consumer_group(self, worker_name: str) -> str:
        """Explicit group_id from the worker's consumer settings, else <prefix>-<worker>."""
        explicit = self.get_worker_config(worker_name, "consumer").get("group_id")
        return explicit or f"{self.consumer_group_prefix}-{worker_name}"

    def validate(self) -> None:
        """Raise ConfigurationError on the first violated constraint."""
        if not self.bootstrap_servers:
            raise ConfigurationError("bootstrap_servers is required in kafka.connection section")

        topics = {"primary": self.primary_topic, "retry": self.retry_topic, "dlq": self.dlq_topic}
        for role, topic in topics.items():
            if not topic:
                raise ConfigurationError(f"kafka.topics: {role} topic is required")
        if len(set(topics.values())) != len(topics):
            raise ConfigurationError(
                f"kafka.topics: primary, retry and dlq topics must be distinct, got {list(topics.values())}"
            )

        policy = {
            "max_attempts": self.max_attempts,
            "batch_size": self.batch_size,
            "poll_timeout_ms": self.poll_timeout_ms,
            "scheduler_frequency_seconds": self.scheduler_frequency_seconds,
        }
        _require_at_least(policy, "max_attempts", 1, "reprocessing")
        _require_at_least(policy, "batch_size", 1, "reprocessing")
        _require_above(policy, "poll_timeout_ms", 0, "reprocessing")
        _require_above(policy, "scheduler_frequency_seconds", 0, "reprocessing")

        if self.overlapping_error_names:
            logger.warning(
                "Error names configured as both retryable and non-retryable, "
                f"resolved by precedence '{self.precedence.value}'",
                extra={"error": self.overlapping_error_names},
            )

        _check_consumer_settings(self.consumer_defaults, "consumer_defaults")
        _check_producer_settings(self.producer_defaults, "producer_defaults")
        for worker_name, sections in self.workers.items():
            for component, check in _COMPONENT_CHECKS.items():
                if component in sections:
                    check(self.get_worker_config(worker_name, component), f"{worker_name}.{component}")


def _as_int(value: Any, key: str) -> int:
    """Env-expanded values arrive as strings."""
    if isinstance(value, bool):
        raise ConfigurationError(f"reprocessing: {key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"reprocessing: {key} must be an integer, got {value!r}", cause=e)


def _as_float(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"reprocessing: {key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"reprocessing: {key} must be a number, got {value!r}", cause=e)


def _as_name_set(value: Any, key: str) -> FrozenSet[str]:
    """YAML list, or a comma-separated string (what ${VAR} expansion produces)."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        raise ConfigurationError(f"reprocessing: {key} must be a list of error names, got {value!r}")
    names = (str(item).strip() for item in items)
    return frozenset(name for name in names if name)


def _as_precedence(value: Any) -> PrecedencePolicy:
    if isinstance(value, PrecedencePolicy):
        return value
    try:
        return PrecedencePolicy(str(value).lower())
    except ValueError as e:
        valid = [p.value for p in PrecedencePolicy]
        raise ConfigurationError(
            f"reprocessing: precedence must be one of {valid}, got '{value}'", cause=e
        )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ReprocessorConfig:
    """Load, parse and validate the reprocessor configuration.

    Args:
        config_path: YAML file to load (default: src/config/config.yaml)
        overrides: Deep-merged over the file contents before parsing

    Raises:
        FileNotFoundError: The config file does not exist
        ConfigurationError: The file is structurally invalid or fails validation
    """
    config_path = config_path or DEFAULT_CONFIG_FILE
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from file: {config_path}")
    data = _expand_env_vars(load_yaml(config_path))
    if overrides:
        data = _deep_merge(data, overrides)

    if "kafka" not in data:
        raise ConfigurationError("Invalid config file: missing 'kafka:' section")

    kafka = data["kafka"]
    connection = kafka.get("connection", {})
    topics = kafka.get("topics", {})
    reprocessing = data.get("reprocessing", {})

    config = ReprocessorConfig(
        bootstrap_servers=connection.get("bootstrap_servers", ""),
        security_protocol=connection.get("security_protocol", "PLAINTEXT"),
        sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=_as_int(connection.get("request_timeout_ms", 120000), "request_timeout_ms"),
        metadata_max_age_ms=_as_int(connection.get("metadata_max_age_ms", 300000), "metadata_max_age_ms"),
        connections_max_idle_ms=_as_int(
            connection.get("connections_max_idle_ms", 540000), "connections_max_idle_ms"
        ),
        consumer_defaults=kafka.get("consumer_defaults", {}),
        producer_defaults=kafka.get("producer_defaults", {}),
        workers={name: kafka[name] for name in WORKER_NAMES if isinstance(kafka.get(name), dict)},
        primary_topic=topics.get("primary", ""),
        retry_topic=topics.get("retry", ""),
        dlq_topic=topics.get("dlq", ""),
        consumer_group_prefix=kafka.get("consumer_group_prefix", "reprocessor"),
        max_attempts=_as_int(reprocessing.get("max_attempts", 3), "max_attempts"),
        retryable_errors=_as_name_set(reprocessing.get("retryable_errors"), "retryable_errors"),
        non_retryable_errors=_as_name_set(
            reprocessing.get("non_retryable_errors"), "non_retryable_errors"
        ),
        precedence=_as_precedence(
            reprocessing.get("precedence", PrecedencePolicy.NON_RETRYABLE_FIRST.value)
        ),
        scheduler_frequency_seconds=_as_float(
            reprocessing.get("scheduler_frequency_seconds", 60), "scheduler_frequency_seconds"
        ),
        batch_size=_as_int(reprocessing.get("batch_size", 100), "batch_size"),
        poll_timeout_ms=_as_int(reprocessing.get("poll_timeout_ms", 1000), "poll_timeout_ms"),
        processing=data.get("processing", {}),
        log_dir=data.get("logging", {}).get("log_dir", "logs"),
    )

    config.validate()
    logger.debug(
        f"Configuration loaded: {config.primary_topic} -> {config.retry_topic} -> {config.dlq_topic}, "
        f"max_attempts={config.max_attempts}"
    )
    return config


_reprocessor_config: Optional[ReprocessorConfig] = None


def get_config() -> ReprocessorConfig:
    """Process-wide config, loaded from the default file on first use."""
    global _reprocessor_config
    if _reprocessor_config is None:
        _reprocessor_config = load_config()
    return _reprocessor_config


def set_config(config: ReprocessorConfig) -> None:
    global _reprocessor_config
    _reprocessor_config = config


def reset_config() -> None:
    global _reprocessor_config
    _reprocessor_config = None


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        description="Reprocessor Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m config.config --validate\n"
            "  python -m config.config --show-merged --config deploy/prod.yaml\n"
            "  python -m config.config --validate --json\n"
        ),
    )
    parser.add_argument("--validate", action="store_true", help="Load and validate the configuration")
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Print the configuration after environment expansion",
    )
    parser.add_argument("--config", type=Path, help="Config file (default: src/config/config.yaml)")
    parser.add_argument("--json", action="store_true", help="Machine-readable output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def _build_validation_output(config: ReprocessorConfig) -> Dict[str, Any]:
    return {
        "passed": True,
        "errors": [],
        "topics": {
            "primary": config.primary_topic,
            "retry": config.retry_topic,
            "dlq": config.dlq_topic,
        },
        "max_attempts": config.max_attempts,
        "overlapping_error_names": config.overlapping_error_names,
    }


def _print_validation(config: ReprocessorConfig) -> None:
    print("Configuration validation passed")
    print(f"  topics:       {config.primary_topic} -> {config.retry_topic} -> {config.dlq_topic}")
    print(f"  max attempts: {config.max_attempts}")
    if config.overlapping_error_names:
        print(
            f"  overlapping error names ({config.precedence.value}): "
            f"{', '.join(config.overlapping_error_names)}"
        )


def _cli_main(argv: Optional[List[str]] = None) -> int:
    """Validate or dump configuration. Returns the process exit code."""
    parser = _build_cli_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not (args.validate or args.show_merged):
        parser.print_help()
        return 0

    config_path = args.config or DEFAULT_CONFIG_FILE
    try:
        config = load_config(config_path=config_path)
    except (FileNotFoundError, ConfigurationError) as e:
        if args.json:
            print(json.dumps({"validation": {"passed": False, "errors": [str(e)]}}))
        else:
            print(f"Validation error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        if args.json:
            output["validation"] = _build_validation_output(config)
        else:
            _print_validation(config)

    if args.show_merged:
        merged = _expand_env_vars(load_yaml(config_path))
        if args.json:
            output["merged_config"] = merged
        else:
            print(yaml.safe_dump(merged, default_flow_style=False, sort_keys=False))

    if args.json:
        print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
