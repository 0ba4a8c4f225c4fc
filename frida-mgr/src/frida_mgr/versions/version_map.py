"""On-disk version map: alias -> server version -> companion tooling version.

The file is JSON and is only ever replaced whole via an atomic rename, so a
reader always sees either the previous map or the new one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from packaging.version import InvalidVersion, Version

from frida_mgr.errors import ConfigError
from frida_mgr.fs import read_json_object, write_json_atomic

logger = logging.getLogger(__name__)

_REPAIR_HINT = "Run 'frida-mgr update-map' to rebuild the version map."

ALIASES = ("latest", "stable", "lts")


@dataclass(frozen=True)
class VersionInfo:
    tools: str
    objection: Optional[str] = None
    released: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"tools": self.tools}
        if self.objection:
            out["objection"] = self.objection
        if self.released:
            out["released"] = self.released
        return out


@dataclass(frozen=True)
class VersionMap:
    mappings: Dict[str, VersionInfo]
    aliases: Dict[str, str]
    last_refreshed: Optional[str] = None
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aliases": dict(sorted(self.aliases.items())),
            "mappings": {v: self.mappings[v].to_dict() for v in sorted(self.mappings)},
            "metadata": {"last_refreshed": self.last_refreshed, "source": self.source},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, where: str = "version map") -> "VersionMap":
        raw_mappings = data.get("mappings")
        raw_aliases = data.get("aliases", {})
        if not isinstance(raw_mappings, dict) or not isinstance(raw_aliases, dict):
            raise ConfigError(
                f"{where}: 'mappings' and 'aliases' must be objects", hint=_REPAIR_HINT
            )

        mappings: Dict[str, VersionInfo] = {}
        for version, info in raw_mappings.items():
            if not isinstance(info, dict) or not isinstance(info.get("tools"), str):
                raise ConfigError(
                    f"{where}: mappings.{version} must have a string 'tools'",
                    hint=_REPAIR_HINT,
                )
            mappings[str(version)] = VersionInfo(
                tools=info["tools"],
                objection=info.get("objection") or None,
                released=info.get("released") or None,
            )

        meta = data.get("metadata") or {}
        if not isinstance(meta, dict):
            meta = {}
        return cls(
            mappings=mappings,
            aliases={str(k): str(v) for k, v in raw_aliases.items()},
            last_refreshed=meta.get("last_refreshed"),
            source=str(meta.get("source") or ""),
        )

    def list_versions(self) -> list[str]:
        """Mapped server versions, newest first."""
        return sorted(self.mappings, key=_version_sort_key, reverse=True)

    def aliases_for(self, version: str) -> list[str]:
        return sorted(alias for alias, target in self.aliases.items() if target == version)


def _version_sort_key(v: str) -> tuple[int, Any]:
    try:
        return (1, Version(v))
    except InvalidVersion:
        return (0, v)


def builtin_version_map() -> VersionMap:
    """Seed map used when no version map file exists yet."""

    table = {
        "16.6.6": ("13.3.0", "2024-12-10"),
        "16.5.2": ("13.2.2", "2024-11-15"),
        "16.4.0": ("13.1.0", "2024-10-01"),
        "16.1.4": ("12.2.1", "2024-06-15"),
        "16.0.19": ("12.1.3", "2024-05-01"),
        "15.2.2": ("12.0.4", "2023-12-20"),
        "15.1.17": ("11.0.2", "2023-10-15"),
    }
    return VersionMap(
        mappings={v: VersionInfo(tools=t, released=r) for v, (t, r) in table.items()},
        aliases={"latest": "16.6.6", "stable": "16.4.0", "lts": "15.2.2"},
        last_refreshed=None,
        source="builtin",
    )


def load_version_map(path: Path) -> VersionMap:
    data = read_json_object(path)
    if data is None:
        raise ConfigError(
            f"version map is missing or not a JSON object: {path}", hint=_REPAIR_HINT
        )
    return VersionMap.from_dict(data, where=str(path))


def save_version_map(path: Path, vmap: VersionMap) -> None:
    write_json_atomic(path, vmap.to_dict())


def load_or_init_version_map(path: Path) -> VersionMap:
    if path.exists():
        return load_version_map(path)
    vmap = builtin_version_map()
    logger.info("initialising version map at %s", path)
    save_version_map(path, vmap)
    return vmap
