from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import IDENTITY_MAX_CHARS, MODE_APP, ROUTER_MODES


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "relayd.relay"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    enable_rns: bool = True
    enable_websocket: bool = True
    ws_host: str = "0.0.0.0"
    ws_port: int = 8080
    ws_max_message_bytes: int = 1024 * 1024
    ws_send_queue_size: int = 64
    router_mode: str = MODE_APP
    identity_max_chars: int = IDENTITY_MAX_CHARS
    enable_resource_transfer: bool = True
    max_resource_bytes: int = 1024 * 1024
    stats_interval_s: float = 0.0
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    """Overlay a parsed TOML document onto ``base``. Unknown keys are ignored."""
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "rns_level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    websocket = data.get("websocket") if isinstance(data, dict) else None
    if isinstance(websocket, dict):
        mapped = {}
        if "enabled" in websocket:
            mapped["enable_websocket"] = websocket.get("enabled")
        for key in ("host", "port", "max_message_bytes", "send_queue_size"):
            if key in websocket:
                mapped[f"ws_{key}"] = websocket.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the file was loaded from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    if "announce" in data and "announce_on_start" not in updates:
        updates["announce_on_start"] = bool(data["announce"])
    for key in ("configdir", "log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None
    if "ws_port" in updates:
        updates["ws_port"] = int(updates["ws_port"])

    cfg = replace(base, **updates) if updates else base
    validate_config(cfg)
    return cfg


def load_config_file(base: RelayRuntimeConfig, path: str) -> RelayRuntimeConfig:
    return apply_config_data(base, load_toml(path))


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if cfg.router_mode not in ROUTER_MODES:
        raise ValueError(
            f"router_mode must be one of {', '.join(ROUTER_MODES)}, got {cfg.router_mode!r}"
        )
    if not (0 <= int(cfg.ws_port) <= 65535):
        raise ValueError(f"ws_port out of range: {cfg.ws_port}")
    if int(cfg.ws_send_queue_size) < 1:
        raise ValueError(f"ws_send_queue_size must be at least 1, got {cfg.ws_send_queue_size}")
