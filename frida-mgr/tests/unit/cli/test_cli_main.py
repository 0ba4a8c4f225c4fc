from __future__ import annotations

import json
from pathlib import Path

import pytest

from frida_mgr.android.bridge import Device
from frida_mgr.android.lifecycle import ServerState
from frida_mgr.android.plan import PushPlan
from frida_mgr.cli.main import build_parser, main
from frida_mgr.errors import DeviceAmbiguousError, ElevationUnavailableError
from frida_mgr.manager import ServerReport, VersionListing


class StubManager:
    def __init__(self, settings, *, error: BaseException | None = None) -> None:
        self.settings = settings
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def __enter__(self) -> "StubManager":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def _report(self, state: ServerState) -> ServerReport:
        return ServerReport(
            device=Device(id="emulator-5554", state="device"),
            plan=PushPlan.from_config(),
            state=state,
            port=27042,
        )

    def _record(self, name: str, **kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    def status(self, **kwargs) -> ServerReport:
        self._record("status", **kwargs)
        return self._report(ServerState.RUNNING)

    def start(self, **kwargs) -> ServerReport:
        self._record("start", **kwargs)
        return self._report(ServerState.RUNNING)

    def list_versions(self, **kwargs) -> list[VersionListing]:
        self._record("list_versions", **kwargs)
        return [
            VersionListing(
                version="16.5.9", tools="13.6.1", aliases=["latest", "stable"], installed=["arm64"]
            ),
            VersionListing(version="15.2.2", tools="12.0.4", aliases=["lts"], installed=[]),
        ]


@pytest.fixture()
def isolated(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("FRIDA_MGR_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("ANDROID_SERIAL", raising=False)
    monkeypatch.delenv("FRIDA_MGR_ADB_PATH", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _factory(holder: list, **kwargs):
    def make(settings):
        mgr = StubManager(settings, **kwargs)
        holder.append(mgr)
        return mgr

    return make


def test_parser_accepts_every_subcommand() -> None:
    parser = build_parser()
    for argv in (
        ["install", "stable", "--update-map"],
        ["list", "--installed"],
        ["update-map", "--include-prerelease"],
        ["devices"],
        ["push", "--device", "x", "--start"],
        ["start", "-d", "x"],
        ["stop"],
        ["status", "--json"],
    ):
        assert parser.parse_args(argv).func is not None


def test_status_prints_state(isolated: Path, capsys) -> None:
    made: list[StubManager] = []
    rc = main(["status", "--device", "emulator-5554"], manager_factory=_factory(made))

    assert rc == 0
    assert made[0].calls == [("status", {"device_id": "emulator-5554"})]
    out = capsys.readouterr().out
    assert "emulator-5554: Running (/data/local/tmp/frida-server, port 27042)" in out


def test_status_json(isolated: Path, capsys) -> None:
    rc = main(["status", "--json"], manager_factory=_factory([]))

    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["state"] == "Running"
    assert payload["port"] == 27042


def test_list_table(isolated: Path, capsys) -> None:
    made: list[StubManager] = []
    assert main(["list", "--installed"], manager_factory=_factory(made)) == 0

    assert made[0].calls == [("list_versions", {"installed_only": True})]
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["version", "frida-tools", "aliases", "installed", "released"]
    assert lines[2].split() == ["16.5.9", "13.6.1", "latest,stable", "arm64"]


def test_errors_print_kind_and_hint(isolated: Path, capsys) -> None:
    err = ElevationUnavailableError("elevation command \"su -c '<cmd>'\" failed on x: not found")
    rc = main(["start"], manager_factory=_factory([], error=err))

    assert rc == 1
    stderr = capsys.readouterr().err
    assert stderr.startswith("ERROR[ElevationUnavailable]: elevation command")
    assert "hint: Check android.root_command" in stderr


def test_ambiguous_device_error_lists_candidates(isolated: Path, capsys) -> None:
    err = DeviceAmbiguousError(["a1", "b2"])
    assert main(["status"], manager_factory=_factory([], error=err)) == 1

    stderr = capsys.readouterr().err
    assert "ERROR[DeviceAmbiguous]: multiple devices connected: a1, b2" in stderr
    assert "--device" in stderr


def test_invalid_project_config_is_reported(isolated: Path, capsys) -> None:
    (isolated / "frida.yaml").write_text("android:\n  server_port: 0\n", encoding="utf-8")

    assert main(["status"], manager_factory=_factory([])) == 1
    assert "ERROR[ConfigError]" in capsys.readouterr().err


def test_interrupt_exits_130(isolated: Path, capsys) -> None:
    rc = main(["status"], manager_factory=_factory([], error=KeyboardInterrupt()))
    assert rc == 130
