from __future__ import annotations

import posixpath
import string
from dataclasses import dataclass

from frida_mgr.errors import ConfigError

DEFAULT_PUSH_PATH = "/data/local/tmp/"
DEFAULT_SERVER_NAME = "frida-server"

_SERVER_NAME_CHARS = frozenset(string.ascii_letters + string.digits + "._-")


def validate_server_name(name: str) -> str:
    """Reject names that could be read as an option or escape the push dir."""

    if not name:
        raise ConfigError("android.server_name cannot be empty")
    if name.startswith("-"):
        raise ConfigError(f"android.server_name cannot start with '-': {name!r}")
    if "/" in name or "\\" in name:
        raise ConfigError(f"android.server_name cannot contain path separators: {name!r}")
    bad = sorted({ch for ch in name if ch not in _SERVER_NAME_CHARS})
    if bad:
        raise ConfigError(
            f"android.server_name contains invalid characters {''.join(bad)!r}; "
            "use only ASCII letters, digits, '.', '_' and '-'"
        )
    return name


@dataclass(frozen=True)
class PushPlan:
    remote_path: str
    remote_log_path: str
    process_name: str

    @property
    def remote_tmp_path(self) -> str:
        return self.remote_path + ".tmp"

    @classmethod
    def from_config(
        cls, push_base: str = DEFAULT_PUSH_PATH, server_name: str = DEFAULT_SERVER_NAME
    ) -> "PushPlan":
        """A base ending in ``/`` is a directory; anything else is the full remote path."""

        push_base = push_base.strip()
        if not push_base:
            raise ConfigError("android.push_path cannot be empty")
        if push_base.endswith("/"):
            remote_path = push_base + validate_server_name(server_name)
        else:
            remote_path = push_base
        process_name = posixpath.basename(remote_path)
        return cls(
            remote_path=remote_path,
            remote_log_path=remote_path + ".log",
            process_name=process_name,
        )
