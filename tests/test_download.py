"""
Tests for the model download coordinator.

aiohttp is replaced by a scripted session so no network is touched.
"""

import asyncio
import pytest
from dataclasses import replace

from acechat.core.models import DownloadState
from acechat.messages import msg
from acechat.realtime.download import ModelDownloadCoordinator


class FakeContent:
    def __init__(self, chunks, error=None, gate=None):
        self._chunks = chunks
        self._error = error
        self._gate = gate

    async def iter_chunked(self, size):
        for chunk in self._chunks:
            if self._gate is not None:
                await self._gate.wait()
            yield chunk
        if self._error is not None:
            raise self._error


class FakeResponse:
    def __init__(self, status=200, chunks=(), content_length=None, error=None, gate=None):
        self.status = status
        self.content_length = (
            content_length if content_length is not None else sum(len(c) for c in chunks)
        )
        self.content = FakeContent(list(chunks), error=error, gate=gate)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def get(self, url, headers=None):
        self.requests.append((url, headers or {}))
        return self.response

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def serve(monkeypatch):
    """Answer the next download with the given response."""

    def _serve(response):
        session = FakeSession(response)
        monkeypatch.setattr(
            "acechat.realtime.download.aiohttp.ClientSession",
            lambda **kwargs: session,
        )
        return session

    return _serve


class TestCheck:
    """Tests for resolving CHECKING."""

    def test_starts_checking(self, model_config):
        downloader = ModelDownloadCoordinator(model_config)
        assert downloader.status.value.state == DownloadState.CHECKING

    @pytest.mark.asyncio
    async def test_missing_file(self, model_config):
        downloader = ModelDownloadCoordinator(model_config)
        await downloader.check()
        assert downloader.status.value.state == DownloadState.NOT_DOWNLOADED

    @pytest.mark.asyncio
    async def test_existing_file(self, model_config):
        model_config.path.parent.mkdir(parents=True)
        model_config.path.write_bytes(b"weights")

        downloader = ModelDownloadCoordinator(model_config)
        await downloader.check()

        assert downloader.status.value.is_ready
        assert downloader.status.value.progress == 100

    @pytest.mark.asyncio
    async def test_empty_file_is_not_a_model(self, model_config):
        model_config.path.parent.mkdir(parents=True)
        model_config.path.write_bytes(b"")

        downloader = ModelDownloadCoordinator(model_config)
        await downloader.check()

        assert downloader.status.value.state == DownloadState.NOT_DOWNLOADED


class TestDownload:
    """Tests for the transfer itself."""

    @pytest.mark.asyncio
    async def test_successful_download(self, model_config, serve):
        serve(FakeResponse(chunks=[b"abc", b"def"]))
        downloader = ModelDownloadCoordinator(model_config, chunk_size=3)

        seen = []

        async def watch():
            async for status in downloader.status.watch():
                seen.append(status.state)
                if status.state == DownloadState.DOWNLOADED:
                    return

        watcher = asyncio.create_task(watch())
        await asyncio.sleep(0)
        await downloader.start()
        status = await downloader.wait()
        await asyncio.wait_for(watcher, timeout=1.0)

        assert status.is_ready
        assert model_config.path.read_bytes() == b"abcdef"
        assert not model_config.temp_path.exists()
        assert DownloadState.DOWNLOADING in seen
        assert seen[-1] == DownloadState.DOWNLOADED

    @pytest.mark.asyncio
    async def test_http_error(self, model_config, serve):
        serve(FakeResponse(status=404))
        downloader = ModelDownloadCoordinator(model_config)

        await downloader.start()
        status = await downloader.wait()

        assert status.state == DownloadState.FAILED
        assert status.message == "Failed to download: HTTP 404"
        assert not model_config.path.exists()

    @pytest.mark.asyncio
    async def test_missing_content_length(self, model_config, serve):
        serve(FakeResponse(chunks=[b"abc"], content_length=0))
        downloader = ModelDownloadCoordinator(model_config)

        await downloader.start()
        status = await downloader.wait()

        assert status.message == msg("download.invalid_length")

    @pytest.mark.asyncio
    async def test_empty_body(self, model_config, serve):
        serve(FakeResponse(chunks=[], content_length=10))
        downloader = ModelDownloadCoordinator(model_config)

        await downloader.start()
        status = await downloader.wait()

        assert status.message == msg("download.invalid_file")
        assert not model_config.path.exists()
        assert not model_config.temp_path.exists()

    @pytest.mark.asyncio
    async def test_transport_error_cleans_up(self, model_config, serve):
        serve(FakeResponse(chunks=[b"abc"], content_length=6, error=ConnectionError("reset")))
        downloader = ModelDownloadCoordinator(model_config)

        await downloader.start()
        status = await downloader.wait()

        assert status.state == DownloadState.FAILED
        assert status.message == msg("download.failed")
        assert not model_config.temp_path.exists()

    @pytest.mark.asyncio
    async def test_token_sent_when_configured(self, model_config, serve):
        session = serve(FakeResponse(chunks=[b"abc"]))
        downloader = ModelDownloadCoordinator(replace(model_config, hf_token="hf_secret"))

        await downloader.start()
        await downloader.wait()

        url, headers = session.requests[0]
        assert url == model_config.download_url
        assert headers["Authorization"] == "Bearer hf_secret"

    @pytest.mark.asyncio
    async def test_start_while_downloading_is_noop(self, model_config, serve):
        gate = asyncio.Event()
        session = serve(FakeResponse(chunks=[b"abc"], gate=gate))
        downloader = ModelDownloadCoordinator(model_config)

        await downloader.start()
        await downloader.start()
        gate.set()
        await downloader.wait()

        assert len(session.requests) == 1


class TestCancel:
    """Tests for aborting a download."""

    @pytest.mark.asyncio
    async def test_cancel_discards_partial_file(self, model_config, serve, wait_until):
        gate = asyncio.Event()
        serve(FakeResponse(chunks=[b"abc", b"def"], gate=gate))
        downloader = ModelDownloadCoordinator(model_config)

        await downloader.start()
        await wait_until(lambda: model_config.temp_path.exists())
        await downloader.cancel()

        assert downloader.status.value.state == DownloadState.NOT_DOWNLOADED
        assert not downloader.is_downloading
        assert not model_config.temp_path.exists()
        assert not model_config.path.exists()
