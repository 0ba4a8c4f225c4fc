from __future__ import annotations

import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[2]
    src = repo_root / "frida-mgr" / "src"
    src_str = str(src)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)

    # The fake device bridge lives under `tests/unit/android/`.
    android_tests_root = Path(__file__).resolve().parent / "unit" / "android"
    android_tests_root_str = str(android_tests_root)
    if android_tests_root.is_dir() and android_tests_root_str not in sys.path:
        sys.path.insert(0, android_tests_root_str)


_ensure_src_on_path()
