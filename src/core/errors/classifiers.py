"""
Configuration-driven error classification.

Maps a processing failure to RETRYABLE, NON_RETRYABLE or UNKNOWN by looking up
its identifiers in the configured error-name sets. Operators may register a
rule either as a bare type (``SERVICE_UNAVAILABLE``) or as a composite
``namespace:type`` key (``HTTP:SERVICE_UNAVAILABLE``), so both keys are checked.
"""

from collections.abc import Iterable

from core.types import ErrorClassification, PrecedencePolicy


def build_full_error_type(error_namespace: str, error_type: str) -> str:
    """Compose the ``namespace:type`` key used in headers and rule sets."""
    return f"{error_namespace}:{error_type}"


class ConfiguredErrorClassifier:
    """
    Classify failures against configured retryable/non-retryable name sets.

    Stateless after construction and safe to share between the main flow and
    the reprocessor.

    Usage:
        >>> classifier = ConfiguredErrorClassifier(
        ...     retryable_errors={"SERVICE_UNAVAILABLE"},
        ...     non_retryable_errors={"HTTP:VALIDATION"},
        ... )
        >>> classifier.classify("SERVICE_UNAVAILABLE", "HTTP", "HTTP:SERVICE_UNAVAILABLE")
        <ErrorClassification.RETRYABLE: 'RETRYABLE'>
    """

    def __init__(
        self,
        retryable_errors: Iterable[str],
        non_retryable_errors: Iterable[str],
        precedence: PrecedencePolicy = PrecedencePolicy.NON_RETRYABLE_FIRST,
    ):
        self.retryable_errors = frozenset(retryable_errors)
        self.non_retryable_errors = frozenset(non_retryable_errors)
        self.precedence = precedence

    @classmethod
    def from_config(cls, config) -> "ConfiguredErrorClassifier":
        """Build a classifier from a ReprocessorConfig."""
        return cls(
            retryable_errors=config.retryable_errors,
            non_retryable_errors=config.non_retryable_errors,
            precedence=config.precedence,
        )

    @staticmethod
    def _matches(rules: frozenset[str], keys: tuple[str, ...]) -> bool:
        return any(key in rules for key in keys if key)

    def classify(
        self,
        error_type: str,
        error_namespace: str,
        full_error_type: str,
    ) -> ErrorClassification:
        """
        Classify a failure by its type identifiers.

        Args:
            error_type: Short failure identifier
            error_namespace: Failure namespace, used to compose the composite
                key when full_error_type is empty
            full_error_type: Composite "namespace:type" key

        Returns:
            RETRYABLE, NON_RETRYABLE, or UNKNOWN when neither set matches
        """
        if not full_error_type and error_namespace and error_type:
            full_error_type = build_full_error_type(error_namespace, error_type)

        keys = (full_error_type, error_type)
        non_retryable = self._matches(self.non_retryable_errors, keys)
        retryable = self._matches(self.retryable_errors, keys)

        if self.precedence == PrecedencePolicy.RETRYABLE_FIRST:
            if retryable:
                return ErrorClassification.RETRYABLE
            if non_retryable:
                return ErrorClassification.NON_RETRYABLE
            return ErrorClassification.UNKNOWN

        if non_retryable:
            return ErrorClassification.NON_RETRYABLE
        if retryable:
            return ErrorClassification.RETRYABLE
        return ErrorClassification.UNKNOWN


__all__ = [
    "ConfiguredErrorClassifier",
    "build_full_error_type",
]
