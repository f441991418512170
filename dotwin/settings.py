from __future__ import annotations

import os
import platform
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


APP_NAME = "DotWin"
_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRUE = ("1", "true", "yes", "on")


def env_flag(name: str, environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return str(env.get(name, "")).strip().lower() in _TRUE


def default_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """
    Per-user config location.

    - Windows: %APPDATA%\\DotWin (falls back to ~/AppData/Roaming/DotWin)
    - elsewhere: $XDG_CONFIG_HOME/dotwin or ~/.config/dotwin
    """
    env = os.environ if environ is None else environ
    if platform.system().lower() == "windows":
        appdata = env.get("APPDATA")
        if appdata:
            return Path(appdata) / APP_NAME
        return Path.home() / "AppData" / "Roaming" / APP_NAME
    base = env.get("XDG_CONFIG_HOME")
    if isinstance(base, str) and base.strip():
        return Path(base).expanduser() / APP_NAME.lower()
    return Path("~/.config").expanduser() / APP_NAME.lower()


@dataclass(frozen=True)
class Settings:
    """Process settings resolved from the environment; CLI flags override them."""

    log_path: Optional[Path] = None
    trace_path: Optional[Path] = None
    verbose: bool = False
    debug: bool = False
    progress_retention: int = 100
    skip_env_check: bool = False
    plugins_dir: Optional[Path] = None
    config_dir: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _path(name: str) -> Optional[Path]:
            v = env.get(name)
            return Path(v).expanduser() if isinstance(v, str) and v.strip() else None

        retention_raw = str(env.get("DOTWIN_PROGRESS_RETENTION", "")).strip()
        retention = int(retention_raw) if retention_raw.isdigit() else 100

        return cls(
            log_path=_path("DOTWIN_LOG_PATH"),
            trace_path=_path("DOTWIN_TRACE_PATH"),
            verbose=env_flag("DOTWIN_VERBOSE", env),
            debug=env_flag("DOTWIN_DEBUG", env),
            progress_retention=retention,
            skip_env_check=env_flag("DOTWIN_SKIP_ENV_CHECK", env),
            plugins_dir=_path("DOTWIN_PLUGINS_DIR"),
            config_dir=_path("DOTWIN_CONFIG_DIR") or default_config_dir(env),
        )


def load_dotenv_from_file(path: Path) -> None:
    """
    Minimal dotenv loader.

    - Supports lines like KEY=VALUE (optionally prefixed with 'export ')
    - Ignores empty lines and comments (# ...)
    - Strips single/double quotes around values
    - Does not override already-present environment variables
    """
    if not path.exists() or not path.is_file():
        return
    txt = path.read_text(encoding="utf-8", errors="replace")
    for raw_line in txt.splitlines():
        s = raw_line.strip()
        if not s or s.startswith("#"):
            continue
        if s.startswith("export "):
            s = s[len("export ") :].lstrip()
        if "=" not in s:
            continue
        k, v = s.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k or not _ENV_KEY_RE.match(k):
            continue
        if k in os.environ:
            continue
        if len(v) >= 2 and ((v[0] == v[-1] == '"') or (v[0] == v[-1] == "'")):
            v = v[1:-1]
        os.environ[k] = v


def maybe_load_dotenv(cwd: Optional[Path] = None) -> None:
    if env_flag("DOTWIN_DISABLE_DOTENV"):
        return
    base = cwd or Path.cwd()
    for name in (".env", "env"):
        load_dotenv_from_file(base / name)
