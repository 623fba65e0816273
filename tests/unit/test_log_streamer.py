"""Unit tests for LogStreamer and LogSubscription."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from container_panel.managers.log_streamer import LogStreamer, LogSubscription
from container_panel.utils.exceptions import ContainerNotFoundError, DockerAPIError


class BlockingStream:
    """Log stream that yields queued chunks and blocks until closed."""

    def __init__(self, chunks=()):
        self._chunks = list(chunks)
        self._closed = threading.Event()
        self.close_calls = 0

    def __iter__(self):
        return self

    def __next__(self):
        if self._chunks:
            return self._chunks.pop(0)
        self._closed.wait(timeout=5)
        raise StopIteration

    def close(self):
        self.close_calls += 1
        self._closed.set()


@pytest.fixture
def container():
    container = MagicMock()
    container.logs.return_value = iter([b"line 1\n", b"line 2\n"])
    return container


@pytest.fixture
def streamer(mock_docker_client, settings, container):
    mock_docker_client.containers.get.side_effect = None
    mock_docker_client.containers.get.return_value = container
    return LogStreamer(mock_docker_client, settings)


@pytest.mark.asyncio
class TestSubscribe:
    """Tests for opening subscriptions."""

    async def test_backfill_then_end(self, streamer, container):
        subscription = await streamer.subscribe("app")

        chunks = [chunk async for chunk in subscription]

        assert chunks == [b"line 1\n", b"line 2\n"]
        assert subscription.closed
        container.logs.assert_called_once_with(
            stream=True, follow=True, stdout=True, stderr=True, tail=200
        )

    async def test_custom_tail(self, streamer, container):
        subscription = await streamer.subscribe("app", tail=5)
        await subscription.aclose()

        assert container.logs.call_args[1]["tail"] == 5

    async def test_unknown_container_opens_nothing(self, mock_docker_client, settings):
        streamer = LogStreamer(mock_docker_client, settings)

        with pytest.raises(ContainerNotFoundError):
            await streamer.subscribe("ghost")

        assert streamer.active_count == 0

    async def test_attach_failure(self, streamer, container):
        container.logs.side_effect = APIError("attach refused")

        with pytest.raises(DockerAPIError):
            await streamer.subscribe("app")

        assert streamer.active_count == 0

    async def test_container_removed_between_lookup_and_attach(self, streamer, container):
        container.logs.side_effect = NotFound("gone")

        with pytest.raises(ContainerNotFoundError):
            await streamer.subscribe("app")

    async def test_active_count_tracks_subscriptions(self, streamer):
        first = await streamer.subscribe("app")
        second = await streamer.subscribe("app")
        assert streamer.active_count == 2

        await first.aclose()
        assert streamer.active_count == 1

        await second.aclose()
        assert streamer.active_count == 0


@pytest.mark.asyncio
class TestClose:
    """Tests for releasing the underlying stream."""

    async def test_close_unblocks_pending_read(self, streamer, container):
        stream = BlockingStream([b"hello\n"])
        container.logs.return_value = stream
        subscription = await streamer.subscribe("app")

        assert await subscription.__anext__() == b"hello\n"

        pending = asyncio.ensure_future(subscription.__anext__())
        await asyncio.sleep(0.05)
        assert not pending.done()

        await subscription.aclose()

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(pending, timeout=2)
        assert stream.close_calls == 1
        assert streamer.active_count == 0

    async def test_close_is_idempotent(self, streamer, container):
        stream = BlockingStream()
        container.logs.return_value = stream
        subscription = await streamer.subscribe("app")

        await subscription.aclose()
        await subscription.aclose()

        assert stream.close_calls == 1

    async def test_context_manager_closes(self, streamer, container):
        stream = BlockingStream([b"x"])
        container.logs.return_value = stream

        async with await streamer.subscribe("app") as subscription:
            assert await subscription.__anext__() == b"x"

        assert subscription.closed
        assert stream.close_calls == 1

    async def test_iteration_after_close_ends(self):
        subscription = LogSubscription("app", iter([b"never"]))
        await subscription.aclose()

        assert [chunk async for chunk in subscription] == []

    async def test_read_error_ends_stream(self):
        def broken():
            yield b"first"
            raise ConnectionError("socket reset")

        subscription = LogSubscription("app", broken())

        chunks = [chunk async for chunk in subscription]

        assert chunks == [b"first"]
        assert subscription.closed


@pytest.mark.asyncio
async def test_snapshot_joins_tail(streamer, container):
    data = await streamer.snapshot("app", tail=50)

    assert data == b"line 1\nline 2\n"
    assert container.logs.call_args[1]["follow"] is False
    assert container.logs.call_args[1]["tail"] == 50
    assert streamer.active_count == 0
