"""Shared Kafka security configuration builder."""

import ssl

from config.config import ReprocessorConfig
from core.errors.exceptions import ConfigurationError

SUPPORTED_SASL_MECHANISMS = ("PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512")


def build_kafka_security_config(config: ReprocessorConfig) -> dict:
    """Build Kafka security config dict from ReprocessorConfig.

    Handles PLAIN and SCRAM SASL mechanisms and SSL context creation.
    Returns an empty dict for PLAINTEXT connections.
    """
    if config.security_protocol == "PLAINTEXT":
        return {}

    security_config: dict = {"security_protocol": config.security_protocol}

    if "SSL" in config.security_protocol:
        security_config["ssl_context"] = ssl.create_default_context()

    if "SASL" in config.security_protocol:
        if config.sasl_mechanism not in SUPPORTED_SASL_MECHANISMS:
            raise ConfigurationError(
                f"Unsupported sasl_mechanism '{config.sasl_mechanism}', "
                f"expected one of {SUPPORTED_SASL_MECHANISMS}"
            )
        security_config["sasl_mechanism"] = config.sasl_mechanism
        security_config["sasl_plain_username"] = config.sasl_plain_username
        security_config["sasl_plain_password"] = config.sasl_plain_password

    return security_config
