from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from frida_mgr.errors import DownloadFailedError
from frida_mgr.net.http import HttpClient


def _scripted(responses: list[httpx.Response]):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses[len(seen) - 1]

    return handler, seen


def test_fetch_text_retries_server_errors_with_backoff() -> None:
    handler, seen = _scripted(
        [httpx.Response(503), httpx.Response(502), httpx.Response(200, text="ok")]
    )
    sleeps: list[float] = []
    client = HttpClient(transport=httpx.MockTransport(handler), sleep=sleeps.append)

    assert client.fetch_text("https://example.test/feed") == "ok"
    assert len(seen) == 3
    assert sleeps == [0.5, 1.0]


def test_fetch_text_honours_retry_after() -> None:
    handler, _ = _scripted(
        [httpx.Response(429, headers={"retry-after": "120"}), httpx.Response(200, text="ok")]
    )
    sleeps: list[float] = []
    client = HttpClient(transport=httpx.MockTransport(handler), sleep=sleeps.append)

    client.fetch_text("https://example.test/feed")
    assert sleeps == [30.0]


def test_fetch_text_gives_up_after_max_retries() -> None:
    handler, seen = _scripted([httpx.Response(500)] * 3)
    client = HttpClient(
        transport=httpx.MockTransport(handler), max_retries=3, sleep=lambda _s: None
    )

    with pytest.raises(DownloadFailedError, match="500"):
        client.fetch_text("https://example.test/feed")
    assert len(seen) == 3


def test_fetch_text_does_not_retry_client_errors() -> None:
    handler, seen = _scripted([httpx.Response(404)])
    client = HttpClient(transport=httpx.MockTransport(handler), sleep=lambda _s: None)

    with pytest.raises(DownloadFailedError):
        client.fetch_text("https://example.test/missing")
    assert len(seen) == 1


def test_fetch_json_rejects_invalid_payload() -> None:
    handler, _ = _scripted([httpx.Response(200, text="<html>")])
    client = HttpClient(transport=httpx.MockTransport(handler))

    with pytest.raises(DownloadFailedError, match="invalid JSON"):
        client.fetch_json("https://example.test/index.json")


def test_download_file_streams_to_disk(tmp_path: Path) -> None:
    handler, seen = _scripted([httpx.Response(200, content=b"x" * 4096)])
    client = HttpClient(transport=httpx.MockTransport(handler))
    dest = tmp_path / "blob"

    assert client.download_file("https://example.test/blob", dest) == 4096
    assert dest.read_bytes() == b"x" * 4096
    assert seen[0].headers["user-agent"].startswith("frida-mgr/")
