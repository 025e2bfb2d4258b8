"""Where configuration files live.

    system   /etc/chatbranch/config.yaml     %PROGRAMDATA%\\chatbranch\\config.yaml
    user     $XDG_CONFIG_HOME/chatbranch/    %APPDATA%\\chatbranch\\config.yaml
             ~/.config/chatbranch/ (if ~/.config exists), else ~/.chatbranch/
    project  <root>/.chatbranch/config.yaml

None of these files has to exist; the loader skips missing ones.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_DIR = "chatbranch"
DOT_DIR = ".chatbranch"


def _is_windows() -> bool:
    return sys.platform == "win32"


def _under_env_dir(var: str) -> Path | None:
    base = os.environ.get(var)
    if not base:
        return None
    return Path(base) / APP_DIR / CONFIG_FILENAME


def get_system_config_path() -> Path | None:
    if _is_windows():
        return _under_env_dir("PROGRAMDATA")
    return Path("/etc") / APP_DIR / CONFIG_FILENAME


def get_user_config_path() -> Path | None:
    if _is_windows():
        return _under_env_dir("APPDATA")

    xdg = _under_env_dir("XDG_CONFIG_HOME")
    if xdg is not None:
        return xdg

    home = Path.home()
    if (home / ".config").exists():
        return home / ".config" / APP_DIR / CONFIG_FILENAME
    return home / DOT_DIR / CONFIG_FILENAME


def get_project_config_path(project_root: str) -> Path:
    return Path(project_root) / DOT_DIR / CONFIG_FILENAME


def get_config_paths(project_root: str | None = None) -> list[Path]:
    """Config paths from lowest to highest priority.

    Later entries override earlier ones when the loader merges them.
    """
    candidates = [get_system_config_path(), get_user_config_path()]
    if project_root:
        candidates.append(get_project_config_path(project_root))
    return [path for path in candidates if path is not None]
