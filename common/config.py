from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


DEFAULTS: dict[str, Any] = {
    "log_level": "info",
    "log_buffer_lines": 500,
    "web_console_bind": "127.0.0.1",
    "web_console_port": 3002,
    "su_binary": "su",
    "busybox": "busybox",
    "command_timeout": 120.0,
    "base_dir": "/data/local/tmp",
    "dir_prefix": "adirf",
    "staging_dir": "/storage/emulated/0/Download",
    "default_port": "27042",
    "default_name": "frida-server",
    "listen_host": "0.0.0.0",
    "release_api_url": "https://api.github.com/repos/frida/frida/releases/latest",
    "release_asset_url": "https://github.com/frida/frida/releases/download/{tag}/frida-server-{tag}-android-{arch}.xz",
    "arch": "arm64",
    "release_timeout": 30.0,
    "settle_delay": 1.5,
    "status_poll_retries": 3,
    "status_poll_interval": 0.5,
    "auto_install": True,
}

_FLOAT_KEYS = ("command_timeout", "release_timeout", "settle_delay", "status_poll_interval")
_INT_KEYS = ("log_buffer_lines", "web_console_port", "status_poll_retries")
_PATH_KEYS = ("base_dir", "staging_dir")


def load_yaml(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file does not exist: {path}")
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    return data


def require_keys(cfg: dict[str, Any], keys: list[str], where: str = "config") -> None:
    missing = [k for k in keys if k not in cfg]
    if missing:
        raise ConfigError(f"{where} missing required keys: {', '.join(missing)}")


def validate_port(value: Any, default: str = "27042") -> str:
    """Normalize a user supplied port; blank input falls back to ``default``."""
    port = str(value if value is not None else "").strip() or default
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        raise ConfigError(f"invalid port: {port!r}")
    return str(int(port))


def validate_name(value: Any, default: str = "frida-server") -> str:
    """Normalize a user supplied binary name; it must be a plain file name."""
    name = str(value if value is not None else "").strip() or default
    if name in {".", ".."} or "/" in name or "\x00" in name or "\n" in name:
        raise ConfigError(f"invalid binary name: {name!r}")
    return name


def load_panel_config(path: str | None = None) -> dict[str, Any]:
    cfg = dict(DEFAULTS)
    if path:
        cfg.update(load_yaml(path))
    require_keys(cfg, list(DEFAULTS), where=path or "defaults")
    try:
        for key in _FLOAT_KEYS:
            cfg[key] = float(cfg[key])
        for key in _INT_KEYS:
            cfg[key] = int(cfg[key])
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid numeric setting: {exc}") from exc
    for key in _PATH_KEYS:
        raw = str(cfg[key]).strip()
        if not raw.startswith("/"):
            raise ConfigError(f"{key} must be an absolute path: {raw!r}")
        cfg[key] = raw.rstrip("/") or "/"
    cfg["default_port"] = validate_port(cfg["default_port"])
    cfg["default_name"] = validate_name(cfg["default_name"])
    if not str(cfg["dir_prefix"]).strip() or "/" in str(cfg["dir_prefix"]):
        raise ConfigError("dir_prefix must be a plain name prefix")
    cfg["log_level"] = str(cfg["log_level"]).lower().strip()
    if cfg["log_level"] not in {"debug", "info", "warning", "error"}:
        raise ConfigError(f"invalid log_level: {cfg['log_level']}")
    cfg["auto_install"] = bool(cfg["auto_install"])
    return cfg
