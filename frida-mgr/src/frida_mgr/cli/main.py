from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from frida_mgr import __version__
from frida_mgr.config.loader import load_settings
from frida_mgr.errors import FridaMgrError
from frida_mgr.manager import FridaManager, ServerReport

logger = logging.getLogger("frida_mgr.cli")

_LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def _print_table(cols: list[str], rows: list[list[str]], *, empty: str) -> None:
    if not rows:
        print(empty)
        return
    width = [max(len(c), *(len(r[i]) for r in rows)) for i, c in enumerate(cols)]
    header = "  ".join(c.ljust(width[i]) for i, c in enumerate(cols))
    print(header)
    print("-" * len(header))
    for r in rows:
        print("  ".join(v.ljust(width[i]) for i, v in enumerate(r)).rstrip())


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _report_dict(report: ServerReport) -> dict[str, Any]:
    return {
        "device": report.device.id,
        "remote_path": report.plan.remote_path,
        "port": report.port,
        "state": report.state.value,
        "version": report.version,
    }


def _print_report(report: ServerReport, *, as_json: bool = False) -> None:
    if as_json:
        _print_json(_report_dict(report))
        return
    line = (
        f"{report.device.id}: {report.state.value} "
        f"({report.plan.remote_path}, port {report.port})"
    )
    if report.version:
        line += f" [frida-server {report.version}]"
    print(line)


def _cmd_install(mgr: FridaManager, args: argparse.Namespace) -> int:
    result = mgr.install(
        args.version,
        arch=args.arch,
        device_id=args.device,
        update_map=args.update_map,
    )
    alias = f" (alias {result.resolved.alias})" if result.resolved.alias else ""
    print(
        f"[OK] frida-server {result.resolved.server_version}{alias} "
        f"for {result.arch.value} -> {result.artifact.local_path}"
    )
    print(f"     matching frida-tools: {result.resolved.tooling_version}")
    return 0


def _cmd_list(mgr: FridaManager, args: argparse.Namespace) -> int:
    listings = mgr.list_versions(installed_only=args.installed)
    if args.json:
        _print_json(
            [
                {
                    "version": item.version,
                    "tools": item.tools,
                    "aliases": item.aliases,
                    "installed": item.installed,
                    "released": item.released,
                }
                for item in listings
            ]
        )
        return 0
    rows = [
        [
            item.version,
            item.tools,
            ",".join(item.aliases),
            ",".join(item.installed),
            item.released or "",
        ]
        for item in listings
    ]
    _print_table(
        ["version", "frida-tools", "aliases", "installed", "released"],
        rows,
        empty="(no cached versions)" if args.installed else "(version map is empty)",
    )
    return 0


def _cmd_update_map(mgr: FridaManager, args: argparse.Namespace) -> int:
    vmap = mgr.update_map(include_prerelease=args.include_prerelease)
    aliases = ", ".join(f"{k}={v}" for k, v in sorted(vmap.aliases.items()))
    print(f"[OK] version map updated: {len(vmap.mappings)} versions ({aliases})")
    return 0


def _cmd_devices(mgr: FridaManager, args: argparse.Namespace) -> int:
    devices = mgr.devices()
    if args.json:
        _print_json(
            [
                {
                    "id": d.id,
                    "state": d.state,
                    "model": d.model,
                    "architecture": d.architecture.value if d.architecture else None,
                }
                for d in devices
            ]
        )
        return 0
    rows = [
        [d.id, d.state, d.model or "", d.architecture.value if d.architecture else ""]
        for d in devices
    ]
    _print_table(["id", "state", "model", "arch"], rows, empty="(no devices attached)")
    return 0


def _cmd_push(mgr: FridaManager, args: argparse.Namespace) -> int:
    report = mgr.push(device_id=args.device, version=args.version, start=args.start)
    _print_report(report)
    return 0


def _cmd_start(mgr: FridaManager, args: argparse.Namespace) -> int:
    _print_report(mgr.start(device_id=args.device))
    return 0


def _cmd_stop(mgr: FridaManager, args: argparse.Namespace) -> int:
    _print_report(mgr.stop(device_id=args.device))
    return 0


def _cmd_status(mgr: FridaManager, args: argparse.Namespace) -> int:
    _print_report(mgr.status(device_id=args.device), as_json=args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="frida-mgr",
        description="Provision and manage frida-server on Android devices over adb.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable INFO logging.")
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=None,
        help="Directory containing frida.yaml (default: search upward from the cwd).",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    def device_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-d",
            "--device",
            type=str,
            default=None,
            help="Target device id (default: $ANDROID_SERIAL or the only connected device).",
        )

    install_p = sub.add_parser("install", help="Resolve a version and cache its frida-server.")
    install_p.add_argument(
        "version", nargs="?", default=None, help="Version or alias (default: frida.version)."
    )
    install_p.add_argument(
        "--arch", type=str, default=None, help="Override android.arch (arm, arm64, x86, x86_64)."
    )
    install_p.add_argument(
        "--update-map",
        action="store_true",
        help="Refresh the version map first; on failure fall back to the last known map.",
    )
    device_arg(install_p)
    install_p.set_defaults(func=_cmd_install)

    list_p = sub.add_parser("list", help="List known versions and aliases.")
    list_p.add_argument("--installed", action="store_true", help="Only show cached versions.")
    list_p.add_argument("--json", action="store_true", help="Print machine-readable JSON.")
    list_p.set_defaults(func=_cmd_list)

    update_p = sub.add_parser("update-map", help="Rebuild the version map from upstream releases.")
    update_p.add_argument(
        "--include-prerelease", action="store_true", help="Keep pre-release versions."
    )
    update_p.set_defaults(func=_cmd_update_map)

    devices_p = sub.add_parser("devices", help="List connected devices and their architecture.")
    devices_p.add_argument("--json", action="store_true", help="Print machine-readable JSON.")
    devices_p.set_defaults(func=_cmd_devices)

    push_p = sub.add_parser("push", help="Push the configured frida-server to a device.")
    device_arg(push_p)
    push_p.add_argument(
        "--version", dest="version", default=None, help="Override frida.version for this push."
    )
    push_p.add_argument("--start", action="store_true", help="Start the server after pushing.")
    push_p.set_defaults(func=_cmd_push)

    start_p = sub.add_parser("start", help="Start frida-server on a device.")
    device_arg(start_p)
    start_p.set_defaults(func=_cmd_start)

    stop_p = sub.add_parser("stop", help="Stop frida-server on a device.")
    device_arg(stop_p)
    stop_p.set_defaults(func=_cmd_stop)

    status_p = sub.add_parser("status", help="Show frida-server state on a device.")
    device_arg(status_p)
    status_p.add_argument("--json", action="store_true", help="Print machine-readable JSON.")
    status_p.set_defaults(func=_cmd_status)

    return parser


def _report_error(err: FridaMgrError) -> None:
    print(f"ERROR[{err.kind}]: {err}", file=sys.stderr)
    if err.hint:
        print(f"hint: {err.hint}", file=sys.stderr)


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    manager_factory: Optional[Callable[..., FridaManager]] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format=_LOG_FORMAT,
    )

    factory = manager_factory or FridaManager
    try:
        settings = load_settings(project_dir=args.project_dir)
        with factory(settings) as mgr:
            return int(args.func(mgr, args))
    except FridaMgrError as e:
        logger.debug("command failed", exc_info=True)
        _report_error(e)
        return 1
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
