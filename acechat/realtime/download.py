"""
Model Download Module

Makes sure the model file exists locally before the conversation starts:
- CHECKING resolves to DOWNLOADED (non-empty file present) or NOT_DOWNLOADED
- Downloads stream into a temp file with throttled progress reports
- The temp file is renamed into place only after it passed validation
- cancel() stops the transfer, removes the temp file, back to NOT_DOWNLOADED
"""

import asyncio
import time
from pathlib import Path
from typing import Optional, Dict

import aiohttp

from acechat.config import ModelConfig, settings
from acechat.core.models import DownloadStatus
from acechat.logger import get_logger
from acechat.messages import msg
from .adapters import DownloadCoordinator
from .events import StateStream

logger = get_logger(__name__)


class DownloadError(Exception):
    """Download failure with a message fit to show the learner."""


class ModelDownloadCoordinator(DownloadCoordinator):
    """
    Model artifact download with progress.

    Usage:
        downloader = ModelDownloadCoordinator()
        await downloader.check()
        if not downloader.status.value.is_ready:
            await downloader.start()
            await downloader.wait()
    """

    def __init__(self, config: Optional[ModelConfig] = None, chunk_size: int = 8192):
        self._config = config or settings.model
        self._chunk_size = chunk_size
        self._status: StateStream[DownloadStatus] = StateStream(DownloadStatus.checking())
        self._task: Optional[asyncio.Task] = None

    @property
    def status(self) -> StateStream[DownloadStatus]:
        return self._status

    @property
    def model_path(self) -> Path:
        return self._config.path

    async def check(self) -> None:
        """Look for an existing, non-empty model file."""
        path = self._config.path
        if path.exists() and path.stat().st_size > 0:
            logger.debug(f"Model file found: {path} ({path.stat().st_size} bytes)")
            self._status.set(DownloadStatus.downloaded())
        else:
            logger.debug(f"Model file not found: {path}")
            self._status.set(DownloadStatus.not_downloaded())

    async def start(self) -> None:
        """Start the download in the background. No-op while one is running."""
        if self.is_downloading:
            return

        logger.info("Starting model download")
        self._status.set(DownloadStatus.downloading(0))
        self._task = asyncio.create_task(self._download())

    async def wait(self) -> DownloadStatus:
        """Wait for a running download and return the final status."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self._status.value

    async def cancel(self) -> None:
        """Abort the download and discard partial data."""
        logger.info("Cancelling model download")
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._config.temp_path.unlink(missing_ok=True)
        self._status.set(DownloadStatus.not_downloaded())

    @property
    def is_downloading(self) -> bool:
        return self._task is not None and not self._task.done()

    # ========================================================================
    # Transfer
    # ========================================================================

    async def _download(self) -> None:
        path = self._config.path
        tmp_path = self._config.temp_path
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.unlink(missing_ok=True)

        logger.debug(f"Downloading {self._config.download_url} -> {path}")

        try:
            await self._fetch(self._config.download_url, tmp_path)

            if not tmp_path.exists() or tmp_path.stat().st_size == 0:
                raise DownloadError(msg("download.invalid_file"))

            tmp_path.replace(path)
            logger.info(f"Model downloaded: {path} ({path.stat().st_size} bytes)")
            self._status.set(DownloadStatus.downloaded())

        except asyncio.CancelledError:
            tmp_path.unlink(missing_ok=True)
            raise
        except DownloadError as e:
            logger.error(f"Model download failed: {e}")
            tmp_path.unlink(missing_ok=True)
            self._status.set(DownloadStatus.failed(str(e)))
        except Exception as e:
            logger.exception(f"Model download failed: {e}")
            tmp_path.unlink(missing_ok=True)
            self._status.set(DownloadStatus.failed(msg("download.failed")))

    def _headers(self) -> Dict[str, str]:
        if self._config.hf_token:
            return {"Authorization": f"Bearer {self._config.hf_token}"}
        return {}

    async def _fetch(self, url: str, destination: Path) -> None:
        """Stream the response body into destination, reporting progress."""
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=self._headers()) as response:
                if response.status != 200:
                    raise DownloadError(f"Failed to download: HTTP {response.status}")

                total_bytes = response.content_length or 0
                if total_bytes <= 0:
                    raise DownloadError(msg("download.invalid_length"))

                downloaded = 0
                last_update = time.monotonic()

                with open(destination, "wb") as output:
                    async for chunk in response.content.iter_chunked(self._chunk_size):
                        output.write(chunk)
                        downloaded += len(chunk)

                        now = time.monotonic()
                        if now - last_update >= self._config.progress_interval_s:
                            progress = downloaded * 100 // total_bytes
                            self._status.set(DownloadStatus.downloading(progress))
                            last_update = now
                            logger.debug(
                                f"Download progress: {progress}% "
                                f"({downloaded} / {total_bytes} bytes)"
                            )
