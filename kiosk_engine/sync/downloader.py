"""Download engine — httpx streaming fetch with retry, backoff, resume and throttling.

One file at a time, never in parallel. Every attempt is bounded by a
connect timeout and an overall max time. An attempt that leaves an empty
file counts as a failure. Exhausting the retry budget raises NetworkError,
which aborts the whole sync run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from ..errors import NetworkError
from .manifest import FileKind
from .retry import RetryPolicy

if TYPE_CHECKING:
    from ..config import SyncSettings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class DownloadAttemptError(Exception):
    """A single attempt failed in a way httpx does not report itself."""


class Downloader:
    """Fetches URLs to local files according to a :class:`RetryPolicy`."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        timeout: float = 300,
        connect_timeout: float = 30,
        bandwidth_limit: int | None = None,
        user_agent: str = "KioskEngine-ContentSync/1.0",
        dry_run: bool = False,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.bandwidth_limit = bandwidth_limit
        self.user_agent = user_agent
        self.dry_run = dry_run
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self.downloads = 0  # successful non-dry-run downloads

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        *,
        dry_run: bool | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "Downloader":
        return cls(
            RetryPolicy(max_retries=settings.max_retries),
            timeout=settings.timeout,
            connect_timeout=settings.connect_timeout,
            bandwidth_limit=settings.bandwidth_bytes_per_second,
            user_agent=settings.user_agent,
            dry_run=settings.dry_run if dry_run is None else dry_run,
            transport=transport,
            sleep=sleep,
        )

    # -- public API ------------------------------------------------------------

    def download(self, url: str, destination: Path, kind: FileKind = FileKind.GENERIC) -> bool:
        """Fetch ``url`` into ``destination``. Raises NetworkError when retries run out."""
        if self.dry_run:
            logger.info("[DRY RUN] Would download %s: %s -> %s", kind.value, url, destination)
            return True

        max_attempts = self.policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            logger.debug("Download attempt %d/%d: %s", attempt, max_attempts, url)
            t0 = self._clock()
            try:
                size = self._attempt(url, destination, kind)
            except (httpx.HTTPError, OSError, DownloadAttemptError) as e:
                logger.warning(
                    "Download attempt %d/%d failed for %s: %s: %s",
                    attempt, max_attempts, url, type(e).__name__, e,
                )
            else:
                if size > 0:
                    self.downloads += 1
                    logger.info(
                        "Downloaded %s successfully: %s (%d bytes, %.1fs)",
                        kind.value, destination.name, size, self._clock() - t0,
                    )
                    return True
                logger.warning("Download completed but file is empty: %s", destination)

            if self.policy.should_retry(attempt):
                delay = self.policy.backoff(attempt)
                logger.info("Retrying in %g seconds...", delay)
                self._sleep(delay)

        raise NetworkError(
            f"Failed to download after {self.policy.max_retries} retries: {url}", url=url,
        )

    # -- internals ---------------------------------------------------------------

    def _attempt(self, url: str, destination: Path, kind: FileKind) -> int:
        """One bounded attempt. Returns the resulting file size in bytes."""
        destination.parent.mkdir(parents=True, exist_ok=True)

        offset = 0
        if kind.is_media and destination.is_file():
            offset = destination.stat().st_size
        headers: dict[str, str] = {}
        if offset:
            headers["Range"] = f"bytes={offset}-"
            logger.debug("Attempting to resume %s from byte %d", destination.name, offset)

        limit = self.bandwidth_limit if kind.is_media else None
        if limit:
            logger.debug("Applying bandwidth limit: %d bytes/s", limit)

        start = self._clock()
        deadline = start + self.timeout
        with httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        ) as client:
            with client.stream("GET", url, headers=headers) as resp:
                if offset and resp.status_code == 416:
                    # Nothing past our offset: the partial file is already whole.
                    return offset
                resp.raise_for_status()

                mode = "ab" if offset and resp.status_code == 206 else "wb"
                written = 0
                with destination.open(mode) as fh:
                    for chunk in resp.iter_bytes(CHUNK_SIZE):
                        fh.write(chunk)
                        written += len(chunk)
                        now = self._clock()
                        if now > deadline:
                            raise DownloadAttemptError(
                                f"exceeded max time of {self.timeout}s"
                            )
                        if limit:
                            ahead = written / limit - (now - start)
                            if ahead > 0:
                                self._sleep(ahead)

        return destination.stat().st_size
