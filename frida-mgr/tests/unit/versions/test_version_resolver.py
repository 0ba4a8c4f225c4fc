from __future__ import annotations

import json
from pathlib import Path

import pytest

from frida_mgr.errors import ConfigError, UnknownVersionError, VersionMapUnreachableError
from frida_mgr.versions.resolver import VersionResolver
from frida_mgr.versions.version_map import (
    VersionInfo,
    VersionMap,
    builtin_version_map,
    load_version_map,
    save_version_map,
)


def _map() -> VersionMap:
    return VersionMap(
        mappings={
            "16.5.9": VersionInfo(tools="13.6.1"),
            "16.4.0": VersionInfo(tools="13.1.0"),
            "15.2.2": VersionInfo(tools="12.0.4"),
        },
        aliases={"latest": "16.5.9", "stable": "16.5.9", "lts": "15.2.2", "broken": "9.9.9"},
    )


def _resolver(tmp_path: Path, **kwargs) -> VersionResolver:
    path = tmp_path / "version-map.json"
    save_version_map(path, _map())
    return VersionResolver(path, **kwargs)


def test_explicit_version_resolves_directly(tmp_path: Path) -> None:
    resolved = _resolver(tmp_path).resolve("16.4.0")
    assert (resolved.server_version, resolved.tooling_version, resolved.alias) == (
        "16.4.0",
        "13.1.0",
        None,
    )


def test_alias_resolution_is_case_insensitive(tmp_path: Path) -> None:
    resolved = _resolver(tmp_path).resolve("Stable")
    assert resolved.server_version == "16.5.9"
    assert resolved.tooling_version == "13.6.1"
    assert resolved.alias == "stable"


def test_alias_resolution_is_deterministic(tmp_path: Path) -> None:
    resolver = _resolver(tmp_path)
    assert {resolver.resolve("lts").server_version for _ in range(5)} == {"15.2.2"}


def test_unknown_version(tmp_path: Path) -> None:
    with pytest.raises(UnknownVersionError) as excinfo:
        _resolver(tmp_path).resolve("99.0.0")
    assert excinfo.value.requested == "99.0.0"
    assert excinfo.value.kind == "UnknownVersion"


def test_alias_to_unmapped_version_is_unknown(tmp_path: Path) -> None:
    with pytest.raises(UnknownVersionError) as excinfo:
        _resolver(tmp_path).resolve("broken")
    assert "9.9.9" in (excinfo.value.hint or "")


def test_missing_map_is_seeded_from_builtin(tmp_path: Path) -> None:
    path = tmp_path / "home" / "version-map.json"
    resolver = VersionResolver(path)

    assert resolver.resolve("latest").server_version == builtin_version_map().aliases["latest"]
    assert path.is_file()
    assert load_version_map(path) == builtin_version_map()


def test_corrupt_map_file_is_config_error(tmp_path: Path) -> None:
    path = tmp_path / "version-map.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    resolver = VersionResolver(path)

    with pytest.raises(ConfigError) as excinfo:
        resolver.resolve("stable")
    assert "update-map" in (excinfo.value.hint or "")


def test_refresh_repairs_unreadable_map_file(tmp_path: Path) -> None:
    path = tmp_path / "version-map.json"
    path.write_text("{not json", encoding="utf-8")
    calls: list[str] = []

    def fetch() -> VersionMap:
        calls.append("fetch")
        return _map()

    resolver = VersionResolver(path, fetch_map=fetch)
    resolver.refresh_map()

    assert calls == ["fetch"]
    assert load_version_map(path) == _map()
    assert resolver.resolve("lts").server_version == "15.2.2"


def test_refresh_replaces_map_atomically(tmp_path: Path) -> None:
    fresh = VersionMap(
        mappings={"17.0.0": VersionInfo(tools="14.0.0")},
        aliases={"latest": "17.0.0", "stable": "17.0.0"},
        last_refreshed="2026-10-01T00:00:00+00:00",
        source="test",
    )
    resolver = _resolver(tmp_path, fetch_map=lambda: fresh)

    resolver.refresh_map()

    assert resolver.resolve("stable").server_version == "17.0.0"
    on_disk = json.loads((tmp_path / "version-map.json").read_text(encoding="utf-8"))
    assert on_disk["aliases"]["stable"] == "17.0.0"
    assert on_disk["metadata"]["source"] == "test"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["version-map.json"]


def test_failed_refresh_keeps_existing_map(tmp_path: Path) -> None:
    def unreachable() -> VersionMap:
        raise VersionMapUnreachableError("feed down")

    resolver = _resolver(tmp_path, fetch_map=unreachable)
    before = (tmp_path / "version-map.json").read_bytes()

    with pytest.raises(VersionMapUnreachableError):
        resolver.refresh_map()

    assert (tmp_path / "version-map.json").read_bytes() == before
    assert resolver.resolve("stable").server_version == "16.5.9"


def test_list_versions_newest_first_with_aliases(tmp_path: Path) -> None:
    vmap = _resolver(tmp_path).version_map
    assert vmap.list_versions() == ["16.5.9", "16.4.0", "15.2.2"]
    assert vmap.aliases_for("16.5.9") == ["latest", "stable"]
