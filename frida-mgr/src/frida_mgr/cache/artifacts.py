"""Per-(version, arch) cache of decompressed frida-server binaries.

Layout under the cache root::

    servers/<version>/<arch>/frida-server   downloaded from upstream
    local/<version>/<arch>/frida-server     copied from a configured local file
    locks/<version>-<arch>.lock             advisory per-key lock

A binary only ever appears at its final path through a rename from a temp
file in the same directory, so readers never see a partial file.
"""

from __future__ import annotations

import logging
import lzma
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from frida_mgr.arch import Arch
from frida_mgr.errors import CorruptArtifactError, LocalArtifactMissingError
from frida_mgr.fs import (
    LOCKING_SUPPORTED,
    exclusive_lock,
    file_sha256,
    make_executable,
    remove_quietly,
    temp_sibling,
)
from frida_mgr.net.http import HttpClient

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL_TEMPLATE = (
    "https://github.com/frida/frida/releases/download/"
    "{version}/frida-server-{version}-android-{arch}.xz"
)
SERVER_FILE_NAME = "frida-server"
_COPY_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class CacheKey:
    server_version: str
    arch: Arch

    def __str__(self) -> str:
        return f"{self.server_version}/{self.arch.value}"


@dataclass(frozen=True)
class CachedArtifact:
    key: CacheKey
    local_path: Path
    acquired_at: datetime


@dataclass(frozen=True)
class DownloadSource:
    url_template: str = DEFAULT_SERVER_URL_TEMPLATE

    def url_for(self, key: CacheKey) -> str:
        return self.url_template.format(version=key.server_version, arch=key.arch.value)


@dataclass(frozen=True)
class LocalSource:
    path: Path


SourcePolicy = Union[DownloadSource, LocalSource]


class ArtifactCache:
    def __init__(self, cache_dir: Path, *, http: Optional[HttpClient] = None) -> None:
        self._root = Path(cache_dir)
        self._http = http

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: CacheKey, *, local: bool = False) -> Path:
        area = "local" if local else "servers"
        return self._root / area / key.server_version / key.arch.value / SERVER_FILE_NAME

    def _lock_path(self, key: CacheKey) -> Path:
        return self._root / "locks" / f"{key.server_version}-{key.arch.value}.lock"

    def get_cached(self, key: CacheKey, *, local: bool = False) -> Optional[CachedArtifact]:
        path = self.path_for(key, local=local)
        try:
            st = path.stat()
        except FileNotFoundError:
            return None
        return CachedArtifact(
            key=key,
            local_path=path,
            acquired_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def _local_hit(self, key: CacheKey, source: Path) -> Optional[CachedArtifact]:
        cached = self.get_cached(key, local=True)
        if cached is None:
            return None
        if cached.local_path.stat().st_size != source.stat().st_size:
            return None
        if file_sha256(cached.local_path) != file_sha256(source):
            return None
        return cached

    def acquire(self, key: CacheKey, source: SourcePolicy = DownloadSource()) -> CachedArtifact:
        """Return the cached artifact for ``key``, fetching or copying it on a miss."""

        if isinstance(source, LocalSource):
            src = Path(source.path)
            if not src.is_file():
                raise LocalArtifactMissingError(f"local frida-server not found or not a file: {src}")
            hit = self._local_hit(key, src)
        else:
            hit = self.get_cached(key)
        if hit is not None:
            logger.info("cache hit for %s", key)
            return hit

        with exclusive_lock(self._lock_path(key)):
            # Another process may have finished the same key while we waited.
            if isinstance(source, LocalSource):
                hit = self._local_hit(key, Path(source.path))
            else:
                hit = self.get_cached(key)
            if hit is not None:
                logger.info("cache hit for %s after waiting for lock", key)
                return hit

            final = self.path_for(key, local=isinstance(source, LocalSource))
            final.parent.mkdir(parents=True, exist_ok=True)
            if LOCKING_SUPPORTED:
                self._sweep_temps(final)

            if isinstance(source, LocalSource):
                self._copy_into(Path(source.path), final)
            else:
                self._download_into(source.url_for(key), final)

        cached = self.get_cached(key, local=isinstance(source, LocalSource))
        if cached is None:
            raise CorruptArtifactError(f"cached frida-server for {key} vanished after install")
        logger.info("cached %s at %s", key, cached.local_path)
        return cached

    def _sweep_temps(self, final: Path) -> None:
        # Leftovers from interrupted runs; safe only while holding the key lock.
        for stale in final.parent.glob(f".{final.name}.*"):
            logger.debug("removing stale temp file %s", stale)
            remove_quietly(stale)

    def _download_into(self, url: str, final: Path) -> None:
        if self._http is None:
            raise RuntimeError("ArtifactCache was built without an HTTP client")
        tmp_xz = temp_sibling(final, tag="xz")
        tmp_bin = temp_sibling(final, tag="part")
        try:
            self._http.download_file(url, tmp_xz)
            _decompress_xz(tmp_xz, tmp_bin)
            make_executable(tmp_bin)
            tmp_bin.replace(final)
        finally:
            remove_quietly(tmp_xz)
            remove_quietly(tmp_bin)

    def _copy_into(self, src: Path, final: Path) -> None:
        tmp_bin = temp_sibling(final, tag="part")
        try:
            try:
                shutil.copyfile(src, tmp_bin)
            except FileNotFoundError as e:
                raise LocalArtifactMissingError(f"local frida-server disappeared: {src}") from e
            if tmp_bin.stat().st_size == 0:
                raise CorruptArtifactError(f"local frida-server is empty: {src}")
            make_executable(tmp_bin)
            tmp_bin.replace(final)
        finally:
            remove_quietly(tmp_bin)

    def list_cached(self) -> list[CachedArtifact]:
        out: list[CachedArtifact] = []
        servers = self._root / "servers"
        if not servers.is_dir():
            return out
        for version_dir in sorted(p for p in servers.iterdir() if p.is_dir()):
            for arch_dir in sorted(p for p in version_dir.iterdir() if p.is_dir()):
                try:
                    arch = Arch.parse(arch_dir.name)
                except ValueError:
                    continue
                cached = self.get_cached(CacheKey(version_dir.name, arch))
                if cached is not None:
                    out.append(cached)
        return out


def _decompress_xz(src: Path, dst: Path) -> None:
    written = 0
    try:
        with lzma.open(src, "rb") as fin, dst.open("wb") as fout:
            for chunk in iter(lambda: fin.read(_COPY_CHUNK), b""):
                fout.write(chunk)
                written += len(chunk)
    except (lzma.LZMAError, EOFError) as e:
        raise CorruptArtifactError(f"failed to decompress {src.name}: {e}") from e
    if written == 0:
        raise CorruptArtifactError(f"decompressed artifact is empty: {src.name}")
