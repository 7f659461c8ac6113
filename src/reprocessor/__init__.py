"""
Kafka retry reprocessor.

Failed messages from the primary topic are classified and either sent to the
retry topic (transient failures, bounded attempts) or to the dead-letter topic.
A scheduled reprocessor drains the retry topic in bounded ticks.

Run with ``python -m reprocessor``.
"""

from core import __version__

__all__ = ["__version__"]
