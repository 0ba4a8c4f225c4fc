"""frida-mgr: provision and operate frida-server on Android devices.

The package is organised leaf-first:
- versions: alias/version resolution and the on-disk version map
- cache: per-(version, arch) server binary cache
- android: adb bridge, device selection and the server lifecycle
- manager: the install/list/push/start/stop/status operations used by the CLI
"""

__version__ = "0.3.0"

__all__ = [
    "android",
    "cache",
    "cli",
    "config",
    "errors",
    "manager",
    "net",
    "versions",
]
