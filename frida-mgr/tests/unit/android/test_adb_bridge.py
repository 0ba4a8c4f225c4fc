from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

from frida_mgr.android.bridge import AdbBridge, parse_devices_output
from frida_mgr.android.elevation import ElevationWrapper
from frida_mgr.errors import DeviceUnreachableError, PushFailedError

_DEVICES_OUT = """List of devices attached
emulator-5554          device product:sdk_gphone64_arm64 model:sdk_gphone64_arm64 device:emu64a transport_id:1
R58M123ABC             unauthorized usb:1-1 transport_id:2
192.168.1.7:5555       offline transport_id:3

"""


def _fake_run(calls: list[dict], *, stdout: str = "", stderr: str = "", returncode: int = 0):
    def fake_run(cmd, **kwargs):
        calls.append({"cmd": cmd, "kwargs": kwargs})
        return SimpleNamespace(stdout=stdout, stderr=stderr, returncode=returncode)

    return fake_run


def test_parse_devices_output_states_and_models() -> None:
    devices = parse_devices_output(_DEVICES_OUT)
    assert [(d.id, d.state, d.reachable) for d in devices] == [
        ("emulator-5554", "device", True),
        ("R58M123ABC", "unauthorized", False),
        ("192.168.1.7:5555", "offline", False),
    ]
    assert devices[0].model == "sdk_gphone64_arm64"
    assert devices[1].model is None


def test_list_devices_runs_adb_devices_long(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, stdout=_DEVICES_OUT))

    devices = AdbBridge(adb_path="/opt/adb", timeout_s=7.0).list_devices()

    assert len(devices) == 3
    assert calls[0]["cmd"] == ["/opt/adb", "devices", "-l"]
    assert calls[0]["kwargs"]["timeout"] == 7.0


def test_exec_wraps_command_with_elevation(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, stdout="0\n"))

    res = AdbBridge().exec("emulator-5554", "id -u", ElevationWrapper())

    assert res.ok()
    assert calls[0]["cmd"] == ["adb", "-s", "emulator-5554", "shell", "su -c 'id -u'"]


def test_exec_returns_nonzero_exit_as_result(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(
        subprocess, "run", _fake_run(calls, stderr="ls: /nope: No such file", returncode=1)
    )

    res = AdbBridge().exec("emulator-5554", "ls /nope")

    assert not res.ok()
    assert res.returncode == 1


def test_exec_maps_transport_errors(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(
        subprocess,
        "run",
        _fake_run(calls, stderr="adb: error: device 'emulator-5554' not found", returncode=1),
    )

    with pytest.raises(DeviceUnreachableError, match="not found"):
        AdbBridge().exec("emulator-5554", "ps -A")


def test_exec_timeout_is_device_unreachable(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(DeviceUnreachableError) as excinfo:
        AdbBridge(timeout_s=2.0).exec("emulator-5554", "ps -A")
    assert isinstance(excinfo.value.cause, subprocess.TimeoutExpired)


def test_missing_adb_binary_is_device_unreachable(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(DeviceUnreachableError) as excinfo:
        AdbBridge(adb_path="/missing/adb").list_devices()
    assert "adb_path" in (excinfo.value.hint or "")


def test_query_architecture_strips_output(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, stdout="arm64-v8a\r\n"))

    assert AdbBridge().query_architecture("s") == "arm64-v8a"
    assert calls[0]["cmd"][-1] == "getprop ro.product.cpu.abi"


def test_push_failure_raises_push_failed(monkeypatch, tmp_path: Path) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(
        subprocess,
        "run",
        _fake_run(calls, stderr="adb: error: failed to copy: Read-only file system", returncode=1),
    )
    local = tmp_path / "frida-server"
    local.write_bytes(b"x")

    with pytest.raises(PushFailedError, match="Read-only"):
        AdbBridge().push("s", local, "/system/frida-server")
    assert calls[0]["cmd"] == ["adb", "-s", "s", "push", str(local), "/system/frida-server"]


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell script as adb")
def test_exec_tolerates_non_utf8_output(tmp_path: Path) -> None:
    fake_adb = tmp_path / "adb"
    fake_adb.write_text("#!/bin/sh\nprintf 'crash \\377\\376 log\\n'\n", encoding="utf-8")
    fake_adb.chmod(0o755)

    res = AdbBridge(adb_path=str(fake_adb)).exec(
        "emulator-5554", "tail -n 20 /data/local/tmp/frida-server.log"
    )

    assert res.ok()
    assert res.stdout.startswith("crash ")
    assert "\ufffd" in res.stdout
    assert res.stdout.rstrip().endswith("log")
