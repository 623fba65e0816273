"""Live log streaming: one Docker log attach per viewer."""

import asyncio
from typing import Any, Iterator, Optional

from docker import DockerClient
from docker.errors import APIError, NotFound

from container_panel.config import Settings, get_settings
from container_panel.utils import get_logger
from container_panel.utils.docker_client import get_docker_client
from container_panel.utils.exceptions import ContainerNotFoundError, DockerAPIError
from container_panel.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

_END = object()


class LogSubscription:
    """
    A single viewer's attachment to a container's combined output.

    Iterate with ``async for`` to receive raw ``bytes`` chunks in the order the
    container emitted them. Iteration ends when the container's stream ends or
    when ``aclose()`` is called; closing releases the Docker stream at once,
    which also unblocks a read that is waiting in a worker thread.
    """

    def __init__(self, identity: str, stream: Any, streamer: Optional["LogStreamer"] = None):
        self.identity = identity
        self._stream = stream
        self._iterator: Iterator[bytes] = iter(stream)
        self._streamer = streamer
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "LogSubscription":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration

        try:
            chunk = await asyncio.to_thread(next, self._iterator, _END)
        except Exception as e:
            if self._closed:
                # Read interrupted by aclose()
                raise StopAsyncIteration
            logger.warning(
                "Log stream read failed",
                extra={"container": self.identity, "error": str(e)},
            )
            await self.aclose()
            raise StopAsyncIteration

        if chunk is _END or self._closed:
            await self.aclose()
            raise StopAsyncIteration

        return chunk

    async def aclose(self) -> None:
        """Detach from the container's log stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        close = getattr(self._stream, "close", None)
        if close is not None:
            try:
                close()
            except Exception as e:
                logger.debug(
                    "Error closing log stream",
                    extra={"container": self.identity, "error": str(e)},
                )

        if self._streamer is not None:
            self._streamer._release(self)

        logger.debug("Log subscription closed", extra={"container": self.identity})

    async def __aenter__(self) -> "LogSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class LogStreamer:
    """Opens log subscriptions and tracks how many viewers are attached."""

    def __init__(
        self,
        docker_client: Optional[DockerClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.docker_client = docker_client or get_docker_client()
        self.metrics = get_metrics_collector()
        self._active: set[LogSubscription] = set()

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def subscribe(
        self, identity: str, tail: Optional[int] = None, follow: bool = True
    ) -> LogSubscription:
        """
        Attach to a container's combined stdout/stderr.

        Args:
            identity: Container name or Docker ID
            tail: Number of recent lines to replay first (default from settings)
            follow: Keep streaming new output after the backfill

        Returns:
            An open LogSubscription owned by the caller

        Raises:
            ContainerNotFoundError: If the container does not exist; nothing is opened
            DockerAPIError: If Docker refuses the attach
        """
        tail = self.settings.log_tail_lines if tail is None else tail

        try:
            container = await asyncio.to_thread(self.docker_client.containers.get, identity)
        except NotFound:
            logger.info("Log subscription refused", extra={"container": identity})
            raise ContainerNotFoundError(identity)
        except APIError as e:
            raise DockerAPIError(f"Failed to inspect container {identity}: {e}", e)

        try:
            stream = await asyncio.to_thread(
                container.logs,
                stream=True,
                follow=follow,
                stdout=True,
                stderr=True,
                tail=tail,
            )
        except NotFound:
            raise ContainerNotFoundError(identity)
        except APIError as e:
            raise DockerAPIError(f"Failed to attach to logs of {identity}: {e}", e)

        subscription = LogSubscription(identity, stream, streamer=self)
        self._active.add(subscription)
        self.metrics.set_active_log_subscriptions(len(self._active))

        logger.info(
            "Log subscription opened",
            extra={"container": identity, "tail": tail, "active": len(self._active)},
        )
        return subscription

    async def snapshot(self, identity: str, tail: Optional[int] = None) -> bytes:
        """Return the most recent log lines without following."""
        async with await self.subscribe(identity, tail=tail, follow=False) as subscription:
            chunks = [chunk async for chunk in subscription]
        return b"".join(chunks)

    def _release(self, subscription: LogSubscription) -> None:
        self._active.discard(subscription)
        self.metrics.set_active_log_subscriptions(len(self._active))


# Global log streamer instance
_log_streamer: Optional[LogStreamer] = None


def get_log_streamer() -> LogStreamer:
    """Get or create the global log streamer instance."""
    global _log_streamer
    if _log_streamer is None:
        _log_streamer = LogStreamer()
    return _log_streamer
