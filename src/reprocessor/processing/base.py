"""Processing operation interface."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class ProcessingOperation(Protocol):
    """
    Business operation applied to each message payload.

    Implementations signal a typed failure by raising ProcessingFailure with an
    error type and namespace the classifier can match. Any other exception is
    treated as an unclassified failure and sent to the DLQ.
    """

    async def process(self, payload: bytes | None) -> None:
        """
        Process one payload.

        Raises:
            ProcessingFailure: On a typed failure
        """
        ...
