from frida_mgr.versions.resolver import ResolvedVersion, VersionResolver
from frida_mgr.versions.version_map import VersionInfo, VersionMap

__all__ = ["ResolvedVersion", "VersionInfo", "VersionMap", "VersionResolver"]
