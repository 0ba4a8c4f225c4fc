from frida_mgr.android.bridge import AdbBridge, Device, DeviceBridge, ExecResult
from frida_mgr.android.elevation import ElevationWrapper
from frida_mgr.android.lifecycle import ProbePolicy, ServerLifecycleController, ServerState
from frida_mgr.android.plan import PushPlan
from frida_mgr.android.selector import DeviceSelector

__all__ = [
    "AdbBridge",
    "Device",
    "DeviceBridge",
    "DeviceSelector",
    "ElevationWrapper",
    "ExecResult",
    "ProbePolicy",
    "PushPlan",
    "ServerLifecycleController",
    "ServerState",
]
