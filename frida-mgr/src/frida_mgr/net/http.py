"""Small synchronous HTTP helper built on httpx.

Downloads stream to a caller-provided path; text fetches retry on 429/5xx and
transport errors with capped exponential backoff.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from frida_mgr import __version__
from frida_mgr.errors import DownloadFailedError

logger = logging.getLogger(__name__)

_ACCEPT = (
    "application/atom+xml, application/xml;q=0.9, application/json;q=0.7, */*;q=0.5"
)
_MAX_BACKOFF_S = 8.0
_MAX_RETRY_AFTER_S = 30.0


class HttpClient:
    def __init__(
        self,
        *,
        timeout_s: float = 300.0,
        max_retries: int = 3,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = httpx.Client(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": f"frida-mgr/{__version__}", "Accept": _ACCEPT},
            transport=transport,
        )
        self._max_retries = max(1, int(max_retries))
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def download_file(self, url: str, dest: Path) -> int:
        """Stream ``url`` into ``dest``; returns the number of bytes written."""

        logger.info("downloading %s", url)
        written = 0
        try:
            with self._client.stream("GET", url) as resp:
                if resp.status_code != 200:
                    raise DownloadFailedError(f"HTTP error {resp.status_code}: {url}")
                with dest.open("wb") as f:
                    for chunk in resp.iter_bytes():
                        f.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as e:
            raise DownloadFailedError(f"failed to download {url}: {e}") from e
        logger.info("downloaded %d bytes from %s", written, url)
        return written

    def fetch_text(self, url: str) -> str:
        backoff = 0.5
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self._client.get(url)
            except httpx.HTTPError as e:
                if attempt < self._max_retries:
                    logger.warning("fetch %s failed (%s); retrying in %.1fs", url, e, backoff)
                    self._sleep(backoff)
                    backoff = min(backoff * 2, _MAX_BACKOFF_S)
                    continue
                raise DownloadFailedError(f"failed to fetch {url}: {e}") from e

            if resp.status_code == 200:
                return resp.text

            retryable = resp.status_code == 429 or resp.status_code >= 500
            if retryable and attempt < self._max_retries:
                wait = backoff
                retry_after = resp.headers.get("retry-after", "").strip()
                if retry_after.isdigit():
                    wait = min(float(retry_after), _MAX_RETRY_AFTER_S)
                logger.warning("fetch %s returned %d; retrying in %.1fs", url, resp.status_code, wait)
                self._sleep(wait)
                backoff = min(backoff * 2, _MAX_BACKOFF_S)
                continue

            raise DownloadFailedError(f"HTTP error {resp.status_code}: {url}")

    def fetch_json(self, url: str) -> Any:
        text = self.fetch_text(url)
        try:
            return json.loads(text)
        except ValueError as e:
            raise DownloadFailedError(f"invalid JSON from {url}: {e}") from e
