"""Error taxonomy for frida-mgr.

Every failure surfaced to the user is one of the classes below. Each carries a
stable ``kind`` (printed by the CLI) and a human-readable remediation ``hint``.
"""

from __future__ import annotations

from typing import Optional, Sequence


class FridaMgrError(RuntimeError):
    kind = "FridaMgrError"
    default_hint: Optional[str] = None

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint if hint is not None else self.default_hint


class ConfigError(FridaMgrError):
    kind = "ConfigError"
    default_hint = "Check frida.yaml and config.yaml against the documented keys."


class UnknownVersionError(FridaMgrError):
    kind = "UnknownVersion"
    default_hint = "Run 'frida-mgr list' to see known versions or 'frida-mgr update-map' to refresh."

    def __init__(self, requested: str, *, hint: Optional[str] = None) -> None:
        super().__init__(f"version {requested!r} is not in the version map", hint=hint)
        self.requested = requested


class VersionMapUnreachableError(FridaMgrError):
    kind = "VersionMapUnreachable"
    default_hint = "The existing version map was kept; retry 'frida-mgr update-map' later."


class DownloadFailedError(FridaMgrError):
    kind = "DownloadFailed"
    default_hint = "Check network access or use android.server.source = local."


class CorruptArtifactError(FridaMgrError):
    kind = "CorruptArtifact"
    default_hint = "The downloaded or local server file is not a valid binary; re-run to fetch it again."


class LocalArtifactMissingError(FridaMgrError):
    kind = "LocalArtifactMissing"
    default_hint = "Fix android.server.local.path in frida.yaml."


class NoDeviceConnectedError(FridaMgrError):
    kind = "NoDeviceConnected"
    default_hint = "Connect a device with USB debugging enabled and check 'adb devices'."


class DeviceAmbiguousError(FridaMgrError):
    kind = "DeviceAmbiguous"
    default_hint = "Pass --device <id> or set $ANDROID_SERIAL."

    def __init__(self, candidates: Sequence[str], *, hint: Optional[str] = None) -> None:
        self.candidates = list(candidates)
        super().__init__(
            "multiple devices connected: " + ", ".join(self.candidates),
            hint=hint,
        )


class DeviceNotFoundError(FridaMgrError):
    kind = "DeviceNotFound"
    default_hint = "Run 'frida-mgr devices' to list connected device ids."

    def __init__(self, device_id: str, *, hint: Optional[str] = None) -> None:
        super().__init__(f"device not found: {device_id}", hint=hint)
        self.device_id = device_id


class DeviceUnreachableError(FridaMgrError):
    kind = "DeviceUnreachable"
    default_hint = "Check the USB/network connection and that the device is authorized."

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        hint: Optional[str] = None,
    ) -> None:
        if cause is not None:
            message = f"{message} ({type(cause).__name__}: {cause})"
        super().__init__(message, hint=hint)
        self.cause = cause


class PushFailedError(FridaMgrError):
    kind = "PushFailed"
    default_hint = "Make sure the push path is writable by the adb shell user."


class ElevationUnavailableError(FridaMgrError):
    kind = "ElevationUnavailable"
    default_hint = (
        "Check android.root_command / android.elevation_template in frida.yaml "
        "(e.g. 'su', or a custom wrapper that accepts an inline command)."
    )


class PortInUseError(FridaMgrError):
    kind = "PortInUse"
    default_hint = "Stop the process holding the port or change android.server_port."


class ServerStartFailedError(FridaMgrError):
    kind = "ServerStartFailed"
    default_hint = "Inspect the server log on the device; try another server version."


class ServerStopFailedError(FridaMgrError):
    kind = "ServerStopFailed"
    default_hint = "Try killing the server manually through the elevation command."
