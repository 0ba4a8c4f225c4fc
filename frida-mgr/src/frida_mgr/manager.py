"""High-level operations behind the CLI subcommands.

:class:`FridaManager` wires the components together for one invocation:
version resolution, the artifact cache, device selection and the server
lifecycle. Each public method is one user-facing operation and either returns
a result object or raises a :class:`~frida_mgr.errors.FridaMgrError`.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from frida_mgr.android.bridge import AdbBridge, Device, DeviceBridge
from frida_mgr.android.lifecycle import ServerLifecycleController, ServerState
from frida_mgr.android.plan import PushPlan
from frida_mgr.android.selector import DeviceSelector
from frida_mgr.arch import AUTO, Arch
from frida_mgr.cache.artifacts import ArtifactCache, CachedArtifact, CacheKey
from frida_mgr.config.loader import Settings
from frida_mgr.errors import (
    ConfigError,
    DeviceUnreachableError,
    VersionMapUnreachableError,
)
from frida_mgr.net.http import HttpClient
from frida_mgr.versions.releases import fetch_version_map
from frida_mgr.versions.resolver import ResolvedVersion, VersionResolver
from frida_mgr.versions.version_map import VersionMap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallResult:
    resolved: ResolvedVersion
    arch: Arch
    artifact: CachedArtifact


@dataclass(frozen=True)
class VersionListing:
    version: str
    tools: str
    aliases: list[str]
    installed: list[str]
    released: Optional[str] = None


@dataclass(frozen=True)
class ServerReport:
    device: Device
    plan: PushPlan
    state: ServerState
    port: int
    version: Optional[str] = None


class FridaManager:
    def __init__(
        self,
        settings: Settings,
        *,
        bridge: Optional[DeviceBridge] = None,
        http: Optional[HttpClient] = None,
        resolver: Optional[VersionResolver] = None,
        cache: Optional[ArtifactCache] = None,
        lifecycle: Optional[ServerLifecycleController] = None,
    ) -> None:
        g = settings.global_config
        self._settings = settings
        self._owns_http = http is None
        self._http = http or HttpClient(
            timeout_s=g.network.timeout_s, max_retries=g.network.max_retries
        )
        self._bridge = bridge or AdbBridge(
            adb_path=g.android.adb_path, timeout_s=g.android.timeout_s
        )
        self._resolver = resolver or VersionResolver(
            g.version_map_path, fetch_map=self._fetch_map
        )
        self._cache = cache or ArtifactCache(g.cache_dir, http=self._http)
        self._selector = DeviceSelector(self._bridge)
        self._lifecycle = lifecycle or ServerLifecycleController(self._bridge)

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "FridaManager":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def resolver(self) -> VersionResolver:
        return self._resolver

    def _fetch_map(self, include_prerelease: bool = False) -> VersionMap:
        return fetch_version_map(
            self._http,
            sources=self._settings.global_config.sources,
            include_prerelease=include_prerelease,
        )

    # -- versions and cache ---------------------------------------------

    def _requested_version(self, version: Optional[str]) -> str:
        requested = version or self._settings.project.frida_version
        if not requested:
            raise ConfigError(
                "no frida version given",
                hint=(
                    "Pass a version (e.g. 'stable' or '16.5.9') "
                    "or set frida.version in frida.yaml."
                ),
            )
        return requested

    def update_map(self, *, include_prerelease: bool = False) -> VersionMap:
        return self._resolver.refresh_map(
            functools.partial(self._fetch_map, include_prerelease=include_prerelease)
        )

    def _configured_arch(self, arch: Optional[str]) -> Optional[Arch]:
        value = arch or self._settings.project.arch
        if value.strip().lower() == AUTO:
            return None
        try:
            return Arch.parse(value)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    def _acquire(self, resolved: ResolvedVersion, arch: Arch) -> CachedArtifact:
        policy = self._settings.project.source_policy(
            self._settings.global_config.server_url_template
        )
        return self._cache.acquire(CacheKey(resolved.server_version, arch), policy)

    def install(
        self,
        version: Optional[str] = None,
        *,
        arch: Optional[str] = None,
        device_id: Optional[str] = None,
        update_map: bool = False,
    ) -> InstallResult:
        """Resolve ``version`` and make sure its server binary is cached.

        With ``arch`` left at ``auto`` the architecture is read from the
        selected device.
        """

        requested = self._requested_version(version)
        if update_map:
            try:
                self.update_map()
            except VersionMapUnreachableError as e:
                logger.warning("version map refresh failed, using the last known map: %s", e)
        resolved = self._resolver.resolve(requested)

        concrete = self._configured_arch(arch)
        if concrete is None:
            device = self._selector.select(device_id or self._settings.default_device)
            concrete = self._selector.resolve_arch(device, AUTO)
        artifact = self._acquire(resolved, concrete)
        return InstallResult(resolved=resolved, arch=concrete, artifact=artifact)

    def list_versions(self, *, installed_only: bool = False) -> list[VersionListing]:
        vmap = self._resolver.version_map
        installed: Dict[str, list[str]] = {}
        for cached in self._cache.list_cached():
            installed.setdefault(cached.key.server_version, []).append(cached.key.arch.value)

        out: list[VersionListing] = []
        for version in vmap.list_versions():
            if installed_only and version not in installed:
                continue
            info = vmap.mappings[version]
            out.append(
                VersionListing(
                    version=version,
                    tools=info.tools,
                    aliases=vmap.aliases_for(version),
                    installed=sorted(installed.get(version, [])),
                    released=info.released,
                )
            )
        if installed_only:
            # Cached versions that have since dropped out of the map.
            for version in sorted(set(installed) - set(vmap.mappings)):
                out.append(
                    VersionListing(
                        version=version, tools="?", aliases=[], installed=sorted(installed[version])
                    )
                )
        return out

    # -- devices ----------------------------------------------------------

    def devices(self) -> list[Device]:
        out: list[Device] = []
        for dev in self._bridge.list_devices():
            if dev.reachable:
                try:
                    dev = self._selector.with_arch(dev, AUTO)
                except DeviceUnreachableError as e:
                    logger.warning("could not query ABI of %s: %s", dev.id, e)
            out.append(dev)
        return out

    def _select(self, device_id: Optional[str]) -> Device:
        return self._selector.select(device_id or self._settings.default_device)

    def _plan(self) -> PushPlan:
        return self._settings.project.push_plan(self._settings.global_config.android.push_path)

    def _report(
        self,
        device: Device,
        plan: PushPlan,
        state: ServerState,
        version: Optional[str] = None,
    ) -> ServerReport:
        return ServerReport(
            device=device,
            plan=plan,
            state=state,
            port=self._settings.project.server_port,
            version=version,
        )

    def push(
        self,
        *,
        device_id: Optional[str] = None,
        version: Optional[str] = None,
        start: bool = False,
    ) -> ServerReport:
        project = self._settings.project
        resolved = self._resolver.resolve(self._requested_version(version))
        device = self._select(device_id)
        arch = self._configured_arch(None) or self._selector.resolve_arch(device, AUTO)
        artifact = self._acquire(resolved, arch)
        plan = self._plan()

        state = self._lifecycle.push(device, artifact, plan)
        if start or project.auto_start:
            state = self._lifecycle.start(
                device, plan, project.elevation(), project.server_port
            )
        return self._report(device, plan, state, resolved.server_version)

    def start(self, *, device_id: Optional[str] = None) -> ServerReport:
        project = self._settings.project
        device = self._select(device_id)
        plan = self._plan()
        state = self._lifecycle.start(device, plan, project.elevation(), project.server_port)
        return self._report(device, plan, state)

    def stop(self, *, device_id: Optional[str] = None) -> ServerReport:
        device = self._select(device_id)
        plan = self._plan()
        state = self._lifecycle.stop(device, plan, self._settings.project.elevation())
        return self._report(device, plan, state)

    def status(self, *, device_id: Optional[str] = None) -> ServerReport:
        device = self._select(device_id)
        plan = self._plan()
        return self._report(device, plan, self._lifecycle.status(device, plan))
