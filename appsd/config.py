"""
Configuration loader

Loads the agent configuration from a YAML file and applies environment
overrides.

Priority (high to low):
1. Environment overrides (APPSD_NODE_ID, APPSD_CONF_DIR, APPSD_BACKEND)
2. YAML file given by ``config_path``
3. YAML file named by $APPSD_CONFIG
4. Hard-coded defaults
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

BACKEND_DIRECT = "direct"
BACKEND_SUPERVISOR = "supervisor"
BACKENDS = {BACKEND_DIRECT, BACKEND_SUPERVISOR}


@dataclass(frozen=True)
class AppsdConfig:
    """appsd configuration"""
    enable: bool = True
    server: str = "127.0.0.1"
    port: int = 10550
    node_id: str = ""
    register_node_namespace: str = "default"
    conf_dir: Path = Path("/etc/appsd/conf.d")
    backend: str = BACKEND_DIRECT
    supervisor_url: str = "unix:///var/run/supervisor.sock"
    cert_file: Optional[Path] = None
    key_file: Optional[Path] = None
    query_timeout: float = 10.0
    stop_timeout: float = 15.0
    stop_retries: int = 3
    stop_poll_interval: float = 1.0
    dedup_cooldown: float = 2.0
    drain_timeout: float = 30.0
    shutdown_grace: float = 5.0
    log_level: str = "INFO"

    @property
    def tls_enabled(self) -> bool:
        return self.cert_file is not None and self.key_file is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Path):
                data[key] = str(value)
        return data


_PATH_FIELDS = {"conf_dir", "cert_file", "key_file"}
_FLOAT_FIELDS = {
    "query_timeout", "stop_timeout", "stop_poll_interval",
    "dedup_cooldown", "drain_timeout", "shutdown_grace",
}
_INT_FIELDS = {"port", "stop_retries"}


def _coerce(raw: Dict[str, Any]) -> Dict[str, Any]:
    known = set(AppsdConfig.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if value is None:
            continue
        if key in _PATH_FIELDS:
            values[key] = Path(str(value)).expanduser()
        elif key in _FLOAT_FIELDS:
            values[key] = float(value)
        elif key in _INT_FIELDS:
            values[key] = int(value)
        elif key == "enable":
            values[key] = bool(value)
        else:
            values[key] = str(value)
    return values


def _validate(cfg: AppsdConfig) -> AppsdConfig:
    if cfg.backend not in BACKENDS:
        raise ValueError(f"backend must be one of {sorted(BACKENDS)}, got {cfg.backend!r}")
    if not 0 < cfg.port < 65536:
        raise ValueError(f"port out of range: {cfg.port}")
    if cfg.stop_retries < 1:
        raise ValueError("stop_retries must be at least 1")
    if (cfg.cert_file is None) != (cfg.key_file is None):
        raise ValueError("cert_file and key_file must be set together")
    for name in ("query_timeout", "stop_timeout", "stop_poll_interval"):
        if getattr(cfg, name) <= 0:
            raise ValueError(f"{name} must be positive")
    return cfg


def load_config(config_path: Optional[Path] = None) -> AppsdConfig:
    """
    Load appsd configuration

    Args:
        config_path: YAML file (optional)

    Returns:
        AppsdConfig

    Raises:
        FileNotFoundError: an explicitly named file does not exist
        ValueError: invalid keys or values
    """
    if config_path is None:
        env_config_path = os.getenv("APPSD_CONFIG")
        if env_config_path:
            config_path = Path(env_config_path)

    raw: Dict[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"appsd config not found: {config_path}")
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"appsd config must be a mapping: {config_path}")
        # Accept the file either flat or under an ``appsd`` section
        if isinstance(raw.get("appsd"), dict):
            raw = raw["appsd"]

    overrides = {
        "node_id": os.getenv("APPSD_NODE_ID"),
        "conf_dir": os.getenv("APPSD_CONF_DIR"),
        "backend": os.getenv("APPSD_BACKEND"),
    }
    raw.update({k: v for k, v in overrides.items() if v})

    cfg = replace(AppsdConfig(), **_coerce(raw))
    return _validate(cfg)
