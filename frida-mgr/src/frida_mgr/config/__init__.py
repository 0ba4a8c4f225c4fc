from frida_mgr.config.loader import (
    AndroidSettings,
    GlobalConfig,
    NetworkSettings,
    ProjectConfig,
    Settings,
    find_project_file,
    load_global_config,
    load_project_config,
    load_settings,
)

__all__ = [
    "AndroidSettings",
    "GlobalConfig",
    "NetworkSettings",
    "ProjectConfig",
    "Settings",
    "find_project_file",
    "load_global_config",
    "load_project_config",
    "load_settings",
]
