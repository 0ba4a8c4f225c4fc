from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Union

from frida_mgr.android.bridge import Device, DeviceBridge
from frida_mgr.arch import AUTO, Arch
from frida_mgr.errors import (
    DeviceAmbiguousError,
    DeviceNotFoundError,
    DeviceUnreachableError,
    NoDeviceConnectedError,
)

logger = logging.getLogger(__name__)


class DeviceSelector:
    def __init__(self, bridge: DeviceBridge) -> None:
        self._bridge = bridge

    def select(self, explicit_id: Optional[str] = None) -> Device:
        """Pick the target device.

        With ``explicit_id`` the device must be listed and reachable. Without
        it, exactly one reachable device must be connected.
        """

        devices = self._bridge.list_devices()

        if explicit_id:
            for dev in devices:
                if dev.id == explicit_id:
                    if not dev.reachable:
                        raise DeviceUnreachableError(
                            f"device {dev.id} is {dev.state}, not ready for commands"
                        )
                    return dev
            raise DeviceNotFoundError(explicit_id)

        reachable = [d for d in devices if d.reachable]
        if not reachable:
            unreachable = [f"{d.id} ({d.state})" for d in devices]
            msg = "no reachable device connected"
            if unreachable:
                msg += "; present but not ready: " + ", ".join(unreachable)
            raise NoDeviceConnectedError(msg)
        if len(reachable) > 1:
            raise DeviceAmbiguousError([d.id for d in reachable])
        logger.info("selected device %s", reachable[0].id)
        return reachable[0]

    def resolve_arch(self, device: Device, configured: Union[str, Arch] = AUTO) -> Arch:
        if isinstance(configured, Arch):
            return configured
        if str(configured).strip().lower() != AUTO:
            return Arch.parse(configured)
        abi = self._bridge.query_architecture(device.id)
        arch = Arch.from_abi(abi)
        logger.info("device %s reports ABI %r -> %s", device.id, abi, arch.value)
        return arch

    def with_arch(self, device: Device, configured: Union[str, Arch] = AUTO) -> Device:
        return replace(device, architecture=self.resolve_arch(device, configured))
