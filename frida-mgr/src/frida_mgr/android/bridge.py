"""adb-backed device bridge.

Every device interaction the lifecycle controller and selector need goes
through :class:`DeviceBridge`, so tests can substitute an in-memory fake.

Shell commands that run but exit nonzero are returned as :class:`ExecResult`;
only transport problems (adb missing, timeouts, device gone) raise.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from frida_mgr.arch import Arch
from frida_mgr.android.elevation import ElevationWrapper
from frida_mgr.errors import DeviceUnreachableError, PushFailedError

logger = logging.getLogger(__name__)

_TRANSPORT_ERROR_RE = re.compile(
    r"^(?:adb: )?error: (?:device (?:'[^']*' )?(?:offline|not found|unauthorized|still authorizing)"
    r"|no devices/emulators found|closed|protocol fault|more than one device)",
    re.MULTILINE,
)


@dataclass(frozen=True)
class ExecResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class Device:
    id: str
    state: str
    model: Optional[str] = None
    architecture: Optional[Arch] = None

    @property
    def reachable(self) -> bool:
        return self.state == "device"


class DeviceBridge(Protocol):
    def list_devices(self) -> list[Device]: ...

    def query_architecture(self, device_id: str) -> str: ...

    def push(self, device_id: str, local: Path, remote: str) -> ExecResult: ...

    def exec(
        self,
        device_id: str,
        command: str,
        elevation: Optional[ElevationWrapper] = None,
    ) -> ExecResult: ...


def parse_devices_output(txt: str) -> list[Device]:
    """Parse ``adb devices -l`` output."""

    devices: list[Device] = []
    for raw in txt.splitlines():
        line = raw.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        model = None
        for token in parts[2:]:
            if token.startswith("model:"):
                model = token.split(":", 1)[1] or None
        devices.append(Device(id=parts[0], state=parts[1], model=model))
    return devices


def is_transport_error(stderr: str) -> bool:
    return bool(_TRANSPORT_ERROR_RE.search(stderr or ""))


class AdbBridge:
    """Thin wrapper around the ``adb`` binary."""

    def __init__(
        self,
        *,
        adb_path: str = "adb",
        timeout_s: float = 30.0,
        push_timeout_s: float = 300.0,
    ) -> None:
        self._adb_path = adb_path
        self._timeout_s = timeout_s
        self._push_timeout_s = push_timeout_s

    @property
    def adb_path(self) -> str:
        return self._adb_path

    def _run(self, args: list[str], *, timeout_s: Optional[float] = None) -> ExecResult:
        cmd = [self._adb_path] + args
        timeout = self._timeout_s if timeout_s is None else float(timeout_s)
        logger.debug("adb: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise DeviceUnreachableError(
                f"adb executable not found: {self._adb_path}",
                cause=e,
                hint="Install Android platform-tools or set android.adb_path / FRIDA_MGR_ADB_PATH.",
            ) from e
        except subprocess.TimeoutExpired as e:
            raise DeviceUnreachableError(
                f"adb command timed out after {timeout:g}s: {' '.join(cmd)}", cause=e
            ) from e
        result = ExecResult(
            args=cmd,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            returncode=proc.returncode,
        )
        if not result.ok() and is_transport_error(result.stderr):
            raise DeviceUnreachableError(
                f"adb transport error (rc={result.returncode}): {result.stderr.strip()}"
            )
        return result

    def list_devices(self) -> list[Device]:
        res = self._run(["devices", "-l"])
        if not res.ok():
            raise DeviceUnreachableError(
                f"adb devices failed (rc={res.returncode}): {res.stderr.strip()}"
            )
        return parse_devices_output(res.stdout)

    def query_architecture(self, device_id: str) -> str:
        res = self._run(["-s", device_id, "shell", "getprop ro.product.cpu.abi"])
        if not res.ok():
            raise DeviceUnreachableError(
                f"could not query ABI of {device_id} (rc={res.returncode}): {res.stderr.strip()}"
            )
        return res.stdout.strip()

    def push(self, device_id: str, local: Path, remote: str) -> ExecResult:
        res = self._run(
            ["-s", device_id, "push", str(local), remote], timeout_s=self._push_timeout_s
        )
        if not res.ok():
            raise PushFailedError(
                f"adb push to {device_id}:{remote} failed (rc={res.returncode}): "
                f"{(res.stderr or res.stdout).strip()}"
            )
        return res

    def exec(
        self,
        device_id: str,
        command: str,
        elevation: Optional[ElevationWrapper] = None,
        *,
        timeout_s: Optional[float] = None,
    ) -> ExecResult:
        shell_cmd = elevation.wrap(command) if elevation is not None else command
        return self._run(["-s", device_id, "shell", shell_cmd], timeout_s=timeout_s)
