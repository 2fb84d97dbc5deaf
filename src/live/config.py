from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ROUTE = ROOT / "data" / "routes" / "seattle_bainbridge.csv"
DEFAULT_DEBUG_PAGE = ROOT / "debug.html"

# WSDOT Ferries terminal ids.
TERMINAL_SEATTLE = 7
TERMINAL_BAINBRIDGE = 3

ENV_ACCESS_CODE = "WSDOT_ACCESS_CODE"
ENV_CONFIG_FILE = "FERRYCASTER_CONFIG"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ServerConfig:
    access_code: str = ""
    bind: str = "localhost:8000"
    terminal: int = TERMINAL_BAINBRIDGE
    update_frequency: float = 15.0
    idle_after: float = 60.0
    segment_max_size: float = 10.0
    minimum_ferries: int = 2
    max_staleness: float = 18.0
    min_update_interval: float = 2.0
    debug: bool = False
    debug_page_path: str = str(DEFAULT_DEBUG_PAGE)
    route_path: str = str(DEFAULT_ROUTE)
    route_start_terminal: int = TERMINAL_SEATTLE
    route_end_terminal: int = TERMINAL_BAINBRIDGE
    telemetry_timeout: float = 10.0
    log_level: str = "INFO"

    @property
    def staleness_compensation(self) -> bool:
        return self.max_staleness >= 0

    @property
    def route_terminals(self) -> Tuple[int, int]:
        return self.route_start_terminal, self.route_end_terminal

    def host_port(self) -> Tuple[str, int]:
        host, sep, port = self.bind.rpartition(":")
        if not sep or not port.isdigit():
            raise ConfigError(f"bind must look like host:port, got {self.bind!r}")
        return host or "0.0.0.0", int(port)

    def validate(self, require_access_code: bool = False) -> "ServerConfig":
        if require_access_code and not self.access_code:
            raise ConfigError(f"an access code is required (--accesscode or env {ENV_ACCESS_CODE})")
        if self.update_frequency <= 0:
            raise ConfigError("update_frequency must be positive")
        if self.idle_after <= 0:
            raise ConfigError("idle_after must be positive")
        if self.segment_max_size <= 0:
            raise ConfigError("segment_max_size must be positive")
        if self.minimum_ferries < 0:
            raise ConfigError("minimum_ferries must not be negative")
        if self.min_update_interval <= 0:
            raise ConfigError("min_update_interval must be positive")
        if self.telemetry_timeout <= 0:
            raise ConfigError("telemetry_timeout must be positive")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        self.host_port()
        return self


def load_config_file(path: Path, required: bool = False) -> Dict[str, Any]:
    """Read a JSON config file. A missing file is an error only when `required`."""
    if not path.exists():
        if required:
            raise ConfigError(f"config file not found: {path}")
        return {}
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path.name} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} must contain a JSON object")
    return data


def _coerce(values: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name: f for f in fields(ServerConfig)}
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"unknown config option: {key}")
        default = getattr(ServerConfig, key)
        try:
            if isinstance(default, bool):
                out[key] = value if isinstance(value, bool) else str(value).lower() in {"1", "true", "yes", "on"}
            elif isinstance(default, int):
                out[key] = int(value)
            elif isinstance(default, float):
                out[key] = float(value)
            else:
                out[key] = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"bad value for {key}: {value!r}") from exc
    return out


def build_config(
    file_values: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ServerConfig:
    """Defaults < config file < environment < command-line overrides (None means not given)."""
    env = os.environ if env is None else env
    cfg = ServerConfig()
    if file_values:
        cfg = replace(cfg, **_coerce(file_values))
    access_code = (env.get(ENV_ACCESS_CODE) or "").strip()
    if access_code:
        cfg = replace(cfg, access_code=access_code)
    if overrides:
        given = {k: v for k, v in overrides.items() if v is not None}
        cfg = replace(cfg, **_coerce(given))
    logging.getLogger(__name__).debug("config: %s", {**cfg.__dict__, "access_code": "***" if cfg.access_code else ""})
    return cfg
