from __future__ import annotations

import shlex
from dataclasses import dataclass

from frida_mgr.errors import ConfigError

DEFAULT_TEMPLATE = "{elevator} -c {command}"


@dataclass(frozen=True)
class ElevationWrapper:
    """Configured privileged-execution wrapper (``su -c``, ``sudo sh -c``, ...).

    ``template`` must contain ``{command}``; the wrapped command is substituted
    as a single shell-quoted word. ``{elevator}`` expands to ``command``.
    """

    command: str = "su"
    template: str = DEFAULT_TEMPLATE

    def __post_init__(self) -> None:
        if not self.command.strip():
            raise ConfigError("android.root_command cannot be empty")
        if "{command}" not in self.template:
            raise ConfigError(
                "android.elevation_template must contain '{command}' (inline command form)"
            )

    def wrap(self, inner: str) -> str:
        return self.template.replace("{elevator}", self.command).replace(
            "{command}", shlex.quote(inner)
        )

    def describe(self) -> str:
        return self.wrap("<cmd>")
