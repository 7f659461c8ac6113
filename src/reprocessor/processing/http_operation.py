"""HTTP processing operation: forward each payload to a downstream endpoint."""

import asyncio
import logging
from http import HTTPStatus

import aiohttp

from core.errors.exceptions import ProcessingFailure

logger = logging.getLogger(__name__)

HTTP_NAMESPACE = "HTTP"
TIMEOUT_ERROR_TYPE = "TIMEOUT"
CONNECTION_ERROR_TYPE = "CONNECTION_ERROR"
MAX_LOGGED_BODY_LENGTH = 500


def status_error_type(status: int) -> str:
    """Error type for a non-2xx status, e.g. 503 -> SERVICE_UNAVAILABLE."""
    try:
        return HTTPStatus(status).name
    except ValueError:
        return f"HTTP_{status}"


class HttpProcessingOperation:
    """
    POST each payload to ``url``; any 2xx response is success.

    Non-2xx responses, timeouts and connection errors raise ProcessingFailure in
    the HTTP namespace so the configured error sets decide their fate.

    Usage:
        >>> async with HttpProcessingOperation("http://svc/process") as operation:
        ...     await operation.process(b'{"id": 1}')
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 30,
        max_connections: int = 20,
        headers: dict[str, str] | None = None,
    ):
        if not url:
            raise ValueError("HttpProcessingOperation requires 'url'")
        if not url.startswith(("http://", "https://")):
            raise ValueError(
                f"HttpProcessingOperation url must start with http:// or https://, got: {url!r}"
            )

        self.url = url
        self.timeout_seconds = timeout_seconds
        self.max_connections = max_connections
        self.headers = headers or {"Content-Type": "application/json"}
        self._session: aiohttp.ClientSession | None = None
        self._closed = False

        logger.info(
            "HttpProcessingOperation initialized",
            extra={"http_url": url, "timeout_seconds": timeout_seconds},
        )

    async def __aenter__(self) -> "HttpProcessingOperation":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self) -> None:
        if self._closed:
            raise RuntimeError("HttpProcessingOperation is closed, cannot create new session")
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections,
                limit_per_host=self.max_connections,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=self.headers,
            )

    async def close(self) -> None:
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    async def _failure_from_response(self, response: aiohttp.ClientResponse) -> ProcessingFailure:
        try:
            body = await response.text()
        except (aiohttp.ClientError, UnicodeDecodeError):
            body = "<unable to read response body>"

        error_type = status_error_type(response.status)
        logger.debug(
            "Processing endpoint returned error status",
            extra={
                "http_url": self.url,
                "http_status": response.status,
                "error_type": error_type,
            },
        )
        return ProcessingFailure(
            error_type=error_type,
            error_namespace=HTTP_NAMESPACE,
            description=f"HTTP {response.status} from {self.url}",
            payload=body[:MAX_LOGGED_BODY_LENGTH] if body else None,
            context={"http_status": response.status},
        )

    async def process(self, payload: bytes | None) -> None:
        await self.start()

        try:
            async with self._session.post(
                self.url,
                data=payload if payload is not None else b"",
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if 200 <= response.status < 300:
                    return
                raise await self._failure_from_response(response)

        except TimeoutError as e:
            raise ProcessingFailure(
                error_type=TIMEOUT_ERROR_TYPE,
                error_namespace=HTTP_NAMESPACE,
                description=f"Timeout after {self.timeout_seconds}s: {self.url}",
                cause=e,
            ) from e

        except aiohttp.ClientError as e:
            raise ProcessingFailure(
                error_type=CONNECTION_ERROR_TYPE,
                error_namespace=HTTP_NAMESPACE,
                description=f"Connection error: {e}",
                cause=e,
            ) from e


__all__ = [
    "HttpProcessingOperation",
    "status_error_type",
    "HTTP_NAMESPACE",
]
