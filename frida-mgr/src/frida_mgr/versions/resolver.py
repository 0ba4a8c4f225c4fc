from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from frida_mgr.errors import UnknownVersionError
from frida_mgr.versions.version_map import (
    VersionMap,
    load_or_init_version_map,
    save_version_map,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedVersion:
    server_version: str
    tooling_version: str
    alias: Optional[str] = None

    def __str__(self) -> str:
        return self.server_version


class VersionResolver:
    """Resolve aliases/explicit versions against the on-disk version map.

    The map is read on first use; resolution never touches the network.
    ``refresh_map`` is the only path that fetches and rewrites it, and it does
    not need the old file to be readable.
    """

    def __init__(
        self,
        map_path: Path,
        *,
        fetch_map: Optional[Callable[[], VersionMap]] = None,
        version_map: Optional[VersionMap] = None,
    ) -> None:
        self._map_path = map_path
        self._fetch_map = fetch_map
        self._map = version_map

    @property
    def version_map(self) -> VersionMap:
        if self._map is None:
            self._map = load_or_init_version_map(self._map_path)
        return self._map

    def resolve(self, requested: str) -> ResolvedVersion:
        req = str(requested).strip()
        vmap = self.version_map

        info = vmap.mappings.get(req)
        if info is not None:
            return ResolvedVersion(server_version=req, tooling_version=info.tools)

        target = vmap.aliases.get(req.lower())
        if target is not None:
            info = vmap.mappings.get(target)
            if info is None:
                raise UnknownVersionError(
                    req,
                    hint=(
                        f"alias {req!r} points at {target}, which is not mapped; "
                        "run 'frida-mgr update-map'."
                    ),
                )
            logger.debug("alias %s -> %s", req, target)
            return ResolvedVersion(
                server_version=target, tooling_version=info.tools, alias=req.lower()
            )

        raise UnknownVersionError(req)

    def refresh_map(self, fetch_map: Optional[Callable[[], VersionMap]] = None) -> VersionMap:
        """Fetch the authoritative map and replace the on-disk copy atomically.

        ``fetch_map`` overrides the fetcher given at construction for this call.

        Propagates VersionMapUnreachableError from the fetcher; the existing
        file and the in-memory map are left untouched in that case.
        """

        fetch = fetch_map or self._fetch_map
        if fetch is None:
            raise RuntimeError("VersionResolver was built without a map fetcher")
        fresh = fetch()
        save_version_map(self._map_path, fresh)
        self._map = fresh
        logger.info(
            "version map refreshed: %d versions (last_refreshed=%s)",
            len(fresh.mappings),
            fresh.last_refreshed,
        )
        return fresh
