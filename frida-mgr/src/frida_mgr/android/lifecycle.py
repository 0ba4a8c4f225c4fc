"""frida-server lifecycle on a device: push, start, stop and status.

Nothing about the server is persisted locally. Every operation first derives
the current :class:`ServerState` by probing the device and then acts on it:

* the process table (``ps -A``, falling back to plain ``ps``) decides Running;
* otherwise the presence of the binary and its log file decide between
  NotPresent, Pushed (never started since the last push) and Stopped;
* any transport failure while probing yields Unknown.

The server is spawned detached through the elevation wrapper, so the spawn
command returning is no evidence of a listening server. ``start`` and ``stop``
re-probe with a bounded, capped-exponential backoff instead.
"""

from __future__ import annotations

import enum
import logging
import re
import shlex
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from frida_mgr.android.bridge import Device, DeviceBridge, ExecResult
from frida_mgr.android.elevation import ElevationWrapper
from frida_mgr.android.plan import PushPlan
from frida_mgr.cache.artifacts import CachedArtifact
from frida_mgr.errors import (
    DeviceUnreachableError,
    ElevationUnavailableError,
    FridaMgrError,
    PortInUseError,
    PushFailedError,
    ServerStartFailedError,
    ServerStopFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 27042
_LOG_TAIL_LINES = 20

_BIND_CONFLICT_RE = re.compile(
    r"address already in use|error binding to address|unable to listen", re.IGNORECASE
)


class ServerState(str, enum.Enum):
    NOT_PRESENT = "NotPresent"
    PUSHED = "Pushed"
    RUNNING = "Running"
    STOPPED = "Stopped"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ProbePolicy:
    attempts: int = 8
    initial_delay_s: float = 0.25
    factor: float = 2.0
    max_delay_s: float = 2.0

    def delays(self) -> Iterator[float]:
        delay = self.initial_delay_s
        for _ in range(max(1, self.attempts)):
            yield min(delay, self.max_delay_s)
            delay *= self.factor


def parse_ps_pids(txt: str, process_name: str) -> list[int]:
    """PIDs whose command column (last field) names ``process_name``."""

    pids: list[int] = []
    for line in txt.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        cmd = parts[-1]
        if cmd != process_name and cmd.rsplit("/", 1)[-1] != process_name:
            continue
        try:
            pids.append(int(parts[1]))
        except ValueError:
            continue
    return pids


def parse_listening(txt: str, port: int) -> bool:
    """True if ``netstat -tuln`` / ``ss -tuln`` output shows ``port`` bound locally."""

    suffix = f":{port}"
    for line in txt.splitlines():
        parts = line.split()
        if not parts or not parts[0].lower().startswith(("tcp", "udp")):
            continue
        # The first address-looking field is the local one; the peer follows it.
        for field in parts[1:]:
            if ":" in field:
                if field.endswith(suffix):
                    return True
                break
    return False


class ServerLifecycleController:
    def __init__(
        self,
        bridge: DeviceBridge,
        *,
        probe: ProbePolicy = ProbePolicy(),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._bridge = bridge
        self._probe = probe
        self._sleep = sleep

    # -- probes ---------------------------------------------------------

    def _find_pids(self, device_id: str, process_name: str) -> Optional[list[int]]:
        """Matching PIDs, or None if no ``ps`` variant could be run."""

        for cmd in ("ps -A", "ps"):
            res = self._bridge.exec(device_id, cmd)
            if res.ok() and res.stdout.strip():
                return parse_ps_pids(res.stdout, process_name)
        return None

    def _remote_files(self, device_id: str, plan: PushPlan) -> Optional[tuple[bool, bool]]:
        cmd = (
            f"if [ -e {shlex.quote(plan.remote_path)} ]; then echo binary; fi; "
            f"if [ -e {shlex.quote(plan.remote_log_path)} ]; then echo log; fi"
        )
        res = self._bridge.exec(device_id, cmd)
        if not res.ok():
            return None
        tokens = set(res.stdout.split())
        return "binary" in tokens, "log" in tokens

    def _port_listening(self, device_id: str, port: int) -> Optional[bool]:
        """None when neither netstat nor ss is usable on the device."""

        for cmd in ("netstat -tuln", "ss -tuln"):
            res = self._bridge.exec(device_id, cmd)
            if res.ok() and res.stdout.strip():
                return parse_listening(res.stdout, port)
        return None

    def _read_log_tail(
        self, device_id: str, plan: PushPlan, elevation: Optional[ElevationWrapper]
    ) -> str:
        res = self._bridge.exec(
            device_id,
            f"tail -n {_LOG_TAIL_LINES} {shlex.quote(plan.remote_log_path)}",
            elevation,
        )
        return res.stdout.strip() if res.ok() else ""

    def status(self, device: Device, plan: PushPlan) -> ServerState:
        try:
            pids = self._find_pids(device.id, plan.process_name)
            if pids:
                return ServerState.RUNNING
            files = self._remote_files(device.id, plan)
        except DeviceUnreachableError as e:
            logger.warning("status probe failed on %s: %s", device.id, e)
            return ServerState.UNKNOWN
        if pids is None or files is None:
            logger.warning("status probe commands failed on %s", device.id)
            return ServerState.UNKNOWN
        has_binary, has_log = files
        if not has_binary:
            return ServerState.NOT_PRESENT
        return ServerState.STOPPED if has_log else ServerState.PUSHED

    # -- transitions ----------------------------------------------------

    def push(self, device: Device, artifact: CachedArtifact, plan: PushPlan) -> ServerState:
        tmp = plan.remote_tmp_path
        done = False
        logger.info("pushing %s to %s:%s", artifact.local_path, device.id, plan.remote_path)
        try:
            self._bridge.push(device.id, artifact.local_path, tmp)
            self._require(device.id, f"chmod 755 {shlex.quote(tmp)}", "chmod")
            self._require(
                device.id, f"mv -f {shlex.quote(tmp)} {shlex.quote(plan.remote_path)}", "rename"
            )
            done = True
        except (PushFailedError, DeviceUnreachableError):
            raise
        except FridaMgrError as e:
            raise PushFailedError(f"push to {device.id} failed: {e}") from e
        finally:
            if not done:
                self._cleanup_remote(device.id, tmp)

        res = self._bridge.exec(device.id, f"rm -f {shlex.quote(plan.remote_log_path)}")
        if not res.ok():
            logger.warning(
                "could not remove old log %s: %s", plan.remote_log_path, res.stderr.strip()
            )
        return ServerState.PUSHED

    def _require(self, device_id: str, command: str, what: str) -> ExecResult:
        res = self._bridge.exec(device_id, command)
        if not res.ok():
            raise PushFailedError(
                f"{what} failed on {device_id} (rc={res.returncode}): "
                f"{(res.stderr or res.stdout).strip()}"
            )
        return res

    def _cleanup_remote(self, device_id: str, path: str) -> None:
        try:
            self._bridge.exec(device_id, f"rm -f {shlex.quote(path)}")
        except DeviceUnreachableError as e:
            logger.warning("could not remove %s on %s: %s", path, device_id, e)

    def _check_elevation(self, device_id: str, elevation: ElevationWrapper) -> None:
        res = self._bridge.exec(device_id, "id -u", elevation)
        if not res.ok():
            detail = (res.stderr or res.stdout).strip() or f"rc={res.returncode}"
            raise ElevationUnavailableError(
                f"elevation command {elevation.describe()!r} failed on {device_id}: {detail}"
            )
        uid = res.stdout.strip()
        if uid != "0":
            logger.warning("elevation command on %s runs as uid %s, not root", device_id, uid)

    def start(
        self,
        device: Device,
        plan: PushPlan,
        elevation: ElevationWrapper,
        port: int = DEFAULT_PORT,
    ) -> ServerState:
        state = self.status(device, plan)
        if state is ServerState.RUNNING:
            logger.info("frida-server already running on %s", device.id)
            return state
        if state is ServerState.NOT_PRESENT:
            raise ServerStartFailedError(
                f"{plan.remote_path} is not present on {device.id}",
                hint="Push the server first: 'frida-mgr push'.",
            )
        if state is ServerState.UNKNOWN:
            raise DeviceUnreachableError(f"could not determine server state on {device.id}")

        self._check_elevation(device.id, elevation)
        if self._port_listening(device.id, port):
            raise PortInUseError(f"port {port} is already listening on {device.id}")

        log = shlex.quote(plan.remote_log_path)
        self._bridge.exec(device.id, f"rm -f {log}", elevation)
        spawn = f"nohup {shlex.quote(plan.remote_path)} -l 0.0.0.0:{port} > {log} 2>&1 &"
        logger.info("starting frida-server on %s port %d", device.id, port)
        res = self._bridge.exec(device.id, spawn, elevation)
        if not res.ok():
            raise ServerStartFailedError(
                f"spawn command failed on {device.id} (rc={res.returncode}): "
                f"{(res.stderr or res.stdout).strip()}"
            )
        return self._await_start(device, plan, elevation, port)

    def _await_start(
        self, device: Device, plan: PushPlan, elevation: ElevationWrapper, port: int
    ) -> ServerState:
        tail = ""
        for attempt, delay in enumerate(self._probe.delays(), start=1):
            self._sleep(delay)
            pids = self._find_pids(device.id, plan.process_name)
            if pids:
                listening = self._port_listening(device.id, port)
                if listening is None or listening:
                    logger.info("frida-server up on %s (pids %s)", device.id, pids)
                    return ServerState.RUNNING
            tail = self._read_log_tail(device.id, plan, elevation)
            if _BIND_CONFLICT_RE.search(tail):
                raise PortInUseError(f"frida-server could not bind port {port}:\n{tail}")
            if not pids and tail:
                raise ServerStartFailedError(f"frida-server exited on {device.id}:\n{tail}")
            logger.debug("start probe %d: not up yet", attempt)
        msg = f"frida-server did not come up on {device.id} within {self._probe.attempts} probes"
        if tail:
            msg += f":\n{tail}"
        raise ServerStartFailedError(msg)

    def stop(
        self, device: Device, plan: PushPlan, elevation: ElevationWrapper
    ) -> ServerState:
        state = self.status(device, plan)
        if state is ServerState.UNKNOWN:
            raise DeviceUnreachableError(f"could not determine server state on {device.id}")
        if state is not ServerState.RUNNING:
            logger.info("frida-server not running on %s (%s)", device.id, state)
            return state

        self._check_elevation(device.id, elevation)
        if self._kill_and_wait(device, plan, elevation, signal_flag=""):
            return ServerState.STOPPED
        logger.warning("frida-server ignored SIGTERM on %s; sending SIGKILL", device.id)
        if self._kill_and_wait(device, plan, elevation, signal_flag="-9 ", rounds=1):
            return ServerState.STOPPED
        raise ServerStopFailedError(f"frida-server is still running on {device.id}")

    def _kill_and_wait(
        self,
        device: Device,
        plan: PushPlan,
        elevation: ElevationWrapper,
        *,
        signal_flag: str,
        rounds: Optional[int] = None,
    ) -> bool:
        pids = self._find_pids(device.id, plan.process_name)
        if pids is None:
            raise ServerStopFailedError(f"could not list processes on {device.id}")
        if not pids:
            return True
        res = self._bridge.exec(
            device.id, f"kill {signal_flag}{' '.join(str(p) for p in pids)}", elevation
        )
        if not res.ok():
            logger.warning(
                "kill on %s returned rc=%d: %s", device.id, res.returncode, res.stderr.strip()
            )
        for i, delay in enumerate(self._probe.delays()):
            if rounds is not None and i >= rounds:
                break
            self._sleep(delay)
            if self._find_pids(device.id, plan.process_name) == []:
                return True
        return False
