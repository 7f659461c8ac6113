"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID using coolnames.

    Used as the Kafka client id suffix and as the ``worker_id`` log context so
    that concurrent reprocessor instances can be told apart in logs.

    Args:
        prefix: Optional prefix (e.g., "reprocessor-main-flow")

    Returns:
        "prefix-word1-word2" or "word1-word2"

    Examples:
        >>> generate_worker_id("reprocessor-retry")
        'reprocessor-retry-swift-falcon'
    """
    slug = generate_slug(2)

    if prefix:
        return f"{prefix}-{slug}"

    return slug
