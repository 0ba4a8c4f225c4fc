from __future__ import annotations

import enum
import logging

logger = logging.getLogger(__name__)

AUTO = "auto"

_ABI_TO_ARCH = {
    "arm64-v8a": "arm64",
    "aarch64": "arm64",
    "armeabi-v7a": "arm",
    "armeabi": "arm",
    "arm": "arm",
    "x86_64": "x86_64",
    "x86": "x86",
}


class Arch(str, enum.Enum):
    """Concrete server architectures. ``auto`` is a config value, never an Arch."""

    ARM = "arm"
    ARM64 = "arm64"
    X86 = "x86"
    X86_64 = "x86_64"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> "Arch":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(a.value for a in cls)
            raise ValueError(f"invalid architecture {value!r} (expected one of: {allowed})") from None

    @classmethod
    def from_abi(cls, abi: str) -> "Arch":
        abi = abi.strip()
        arch = _ABI_TO_ARCH.get(abi)
        if arch is None:
            logger.warning("unrecognised device ABI %r; assuming arm64", abi)
            return cls.ARM64
        return cls(arch)
