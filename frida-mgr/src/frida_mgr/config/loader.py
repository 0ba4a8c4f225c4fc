"""Global and project configuration.

Two YAML files feed a run:

* ``$FRIDA_MGR_HOME/config.yaml`` (default ``~/.frida-mgr``): machine-wide
  settings such as the adb binary, push path, timeouts and upstream URLs.
* ``frida.yaml``: per-project settings, found by walking up from the working
  directory (or taken from ``--project-dir``). Optional.

Both are validated against the JSON schemas shipped in ``schemas/``.
Environment variables override the files: ``FRIDA_MGR_HOME``,
``FRIDA_MGR_ADB_PATH`` and ``ANDROID_SERIAL``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from jsonschema import Draft202012Validator

from frida_mgr.android.elevation import DEFAULT_TEMPLATE, ElevationWrapper
from frida_mgr.android.lifecycle import DEFAULT_PORT
from frida_mgr.android.plan import (
    DEFAULT_PUSH_PATH,
    DEFAULT_SERVER_NAME,
    PushPlan,
    validate_server_name,
)
from frida_mgr.arch import AUTO
from frida_mgr.cache.artifacts import (
    DEFAULT_SERVER_URL_TEMPLATE,
    DownloadSource,
    LocalSource,
    SourcePolicy,
)
from frida_mgr.errors import ConfigError
from frida_mgr.versions.releases import ReleaseSources

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"
GLOBAL_CONFIG_NAME = "config.yaml"
PROJECT_CONFIG_NAME = "frida.yaml"
VERSION_MAP_NAME = "version-map.json"


def default_home(env: Mapping[str, str] = os.environ) -> Path:
    raw = env.get("FRIDA_MGR_HOME")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".frida-mgr"


def load_yaml_object(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"top-level of {path} must be a mapping")
    return data


def load_schema(name: str) -> Dict[str, Any]:
    return json.loads((SCHEMA_DIR / name).read_text(encoding="utf-8"))


def validate_against_schema(
    instance: Mapping[str, Any], schema: Mapping[str, Any], *, where: str
) -> None:
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(instance), key=lambda e: list(e.path))
    if errors:
        msgs = []
        for e in errors[:10]:
            loc = "/".join(str(p) for p in e.path) or "<root>"
            msgs.append(f"{where}:{loc}: {e.message}")
        if len(errors) > 10:
            msgs.append(f"... ({len(errors) - 10} more)")
        raise ConfigError("\n".join(msgs))


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


@dataclass(frozen=True)
class AndroidSettings:
    adb_path: str = "adb"
    push_path: str = DEFAULT_PUSH_PATH
    timeout_s: float = 30.0


@dataclass(frozen=True)
class NetworkSettings:
    timeout_s: float = 300.0
    max_retries: int = 3


@dataclass(frozen=True)
class GlobalConfig:
    home: Path
    android: AndroidSettings = field(default_factory=AndroidSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    server_url_template: str = DEFAULT_SERVER_URL_TEMPLATE
    sources: ReleaseSources = field(default_factory=ReleaseSources)

    @property
    def version_map_path(self) -> Path:
        return self.home / VERSION_MAP_NAME

    @property
    def cache_dir(self) -> Path:
        return self.home / "cache"


@dataclass(frozen=True)
class ProjectConfig:
    project_dir: Optional[Path] = None
    frida_version: Optional[str] = None
    arch: str = AUTO
    server_name: str = DEFAULT_SERVER_NAME
    server_port: int = DEFAULT_PORT
    root_command: str = "su"
    elevation_template: str = DEFAULT_TEMPLATE
    auto_start: bool = False
    server_source: str = "download"
    local_server_path: Optional[Path] = None

    def elevation(self) -> ElevationWrapper:
        return ElevationWrapper(command=self.root_command, template=self.elevation_template)

    def push_plan(self, push_base: str) -> PushPlan:
        return PushPlan.from_config(push_base, self.server_name)

    def source_policy(self, url_template: str = DEFAULT_SERVER_URL_TEMPLATE) -> SourcePolicy:
        if self.server_source == "local":
            if self.local_server_path is None:
                raise ConfigError(
                    "android.server.source is 'local' but android.server.local.path is not set"
                )
            return LocalSource(self.local_server_path)
        return DownloadSource(url_template)


@dataclass(frozen=True)
class Settings:
    global_config: GlobalConfig
    project: ProjectConfig
    default_device: Optional[str] = None
    project_file: Optional[Path] = None


def load_global_config(home: Path, env: Mapping[str, str] = os.environ) -> GlobalConfig:
    path = home / GLOBAL_CONFIG_NAME
    data: Dict[str, Any] = {}
    if path.is_file():
        data = load_yaml_object(path)
        validate_against_schema(data, load_schema("global_config.schema.json"), where=str(path))

    android = _section(data, "android")
    network = _section(data, "network")
    sources = _section(data, "sources")
    defaults = ReleaseSources()

    adb_path = env.get("FRIDA_MGR_ADB_PATH") or android.get("adb_path", "adb")
    return GlobalConfig(
        home=home,
        android=AndroidSettings(
            adb_path=str(adb_path),
            push_path=str(android.get("push_path", DEFAULT_PUSH_PATH)),
            timeout_s=float(android.get("timeout_s", 30.0)),
        ),
        network=NetworkSettings(
            timeout_s=float(network.get("timeout_s", 300.0)),
            max_retries=int(network.get("max_retries", 3)),
        ),
        server_url_template=str(sources.get("server_url_template", DEFAULT_SERVER_URL_TEMPLATE)),
        sources=ReleaseSources(
            releases_feed_url=str(sources.get("releases_feed_url", defaults.releases_feed_url)),
            server_index_url=str(sources.get("server_index_url", defaults.server_index_url)),
            tools_index_url=str(sources.get("tools_index_url", defaults.tools_index_url)),
            tools_release_url_template=str(
                sources.get("tools_release_url_template", defaults.tools_release_url_template)
            ),
        ),
    )


def find_project_file(start: Path) -> Optional[Path]:
    """Walk up from ``start`` looking for ``frida.yaml``."""

    current = start.resolve()
    for candidate in (current, *current.parents):
        path = candidate / PROJECT_CONFIG_NAME
        if path.is_file():
            return path
    return None


def load_project_config(path: Path) -> ProjectConfig:
    data = load_yaml_object(path)
    raw_version = _section(data, "frida").get("version")
    if raw_version is not None and not isinstance(raw_version, str):
        # YAML reads 16.10 as the float 16.1.
        raise ConfigError(
            f"{path}:frida/version: expected a quoted string, got {raw_version!r}",
            hint='Quote the version in frida.yaml, e.g. version: "16.10.0".',
        )
    validate_against_schema(data, load_schema("project_config.schema.json"), where=str(path))

    project_dir = path.parent.resolve()
    frida = _section(data, "frida")
    android = _section(data, "android")
    server = _section(android, "server")
    local = _section(server, "local")

    version = frida.get("version")
    local_path: Optional[Path] = None
    if local.get("path"):
        local_path = Path(str(local["path"])).expanduser()
        if not local_path.is_absolute():
            local_path = project_dir / local_path

    return ProjectConfig(
        project_dir=project_dir,
        frida_version=version,
        arch=str(android.get("arch", AUTO)),
        server_name=validate_server_name(str(android.get("server_name", DEFAULT_SERVER_NAME))),
        server_port=int(android.get("server_port", DEFAULT_PORT)),
        root_command=str(android.get("root_command", "su")),
        elevation_template=str(android.get("elevation_template", DEFAULT_TEMPLATE)),
        auto_start=bool(android.get("auto_start", False)),
        server_source=str(server.get("source", "download")),
        local_server_path=local_path,
    )


def load_settings(
    *,
    project_dir: Optional[Path] = None,
    cwd: Optional[Path] = None,
    env: Mapping[str, str] = os.environ,
) -> Settings:
    home = default_home(env)
    global_config = load_global_config(home, env)

    if project_dir is not None:
        project_file: Optional[Path] = Path(project_dir) / PROJECT_CONFIG_NAME
        if not project_file.is_file():
            raise ConfigError(f"no {PROJECT_CONFIG_NAME} in {project_dir}")
    else:
        project_file = find_project_file(cwd or Path.cwd())

    if project_file is not None:
        logger.info("using project config %s", project_file)
        project = load_project_config(project_file)
    else:
        project = ProjectConfig()

    return Settings(
        global_config=global_config,
        project=project,
        default_device=env.get("ANDROID_SERIAL") or None,
        project_file=project_file,
    )
