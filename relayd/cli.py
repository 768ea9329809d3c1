from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import RelayRuntimeConfig, load_config_file
from .constants import ROUTER_MODES
from .logging_config import configure_logging
from .paths import default_config_path, default_identity_path, ensure_private_dir
from .service import RelayService


def _write_default_config(config_path: str, identity_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# relayd configuration (TOML)
#
# This file was created on first run.
# Edit it, then start relayd again.

[relay]

# Routing table:
#   "app"       - auth/ping, file and group rooms, broadcasts, direct messages
#   "signaling" - register/relay only (peer connection negotiation)
router_mode = "app"

# Identities longer than this (characters) are ignored.
identity_max_chars = 256

# Log a one-line stats summary this often (0 disables).
stats_interval_s = 0.0

# Reticulum transport
enable_rns = true

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where relayd stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Destination name to host the relay on.
dest_name = "relayd.relay"

# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

# Envelopes larger than a link packet are sent as RNS.Resource transfers.
enable_resource_transfer = true
max_resource_bytes = 1048576

[websocket]

enabled = true
host = "0.0.0.0"
port = 8080
max_message_bytes = 1048576

# Frames queued per client before further frames to it are dropped.
send_queue_size = 64

[logging]

# Log level for relayd itself.
level = "INFO"

# Log level for the Reticulum and websockets libraries.
rns_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except OSError:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="relayd", description="Run a presence and message-routing relay"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to relay identity file (created on first run)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: relayd.relay)"
    )
    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )

    p.add_argument(
        "--mode",
        choices=ROUTER_MODES,
        default=None,
        help="Routing table: full application router or bare signaling",
    )

    p.add_argument("--no-rns", action="store_true", help="Disable the Reticulum transport")
    p.add_argument(
        "--no-websocket", action="store_true", help="Disable the WebSocket transport"
    )
    p.add_argument("--ws-host", default=None, help="WebSocket bind address")
    p.add_argument("--ws-port", type=int, default=None, help="WebSocket port")

    p.add_argument(
        "--stats-interval",
        type=float,
        default=None,
        help="Log a stats line every N seconds (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    """Resolve the runtime config: defaults, then the config file, then flags."""
    cfg = RelayRuntimeConfig(
        config_path=str(args.config),
        configdir=args.configdir,
        identity_path=str(args.identity),
    )

    if args.config and os.path.exists(args.config):
        cfg = load_config_file(cfg, str(args.config))

    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)
    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)

    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))

    if args.mode is not None:
        cfg = replace(cfg, router_mode=args.mode)

    if args.no_rns:
        cfg = replace(cfg, enable_rns=False)
    if args.no_websocket:
        cfg = replace(cfg, enable_websocket=False)
    if args.ws_host is not None:
        cfg = replace(cfg, ws_host=args.ws_host)
    if args.ws_port is not None:
        cfg = replace(cfg, ws_port=int(args.ws_port))

    if args.stats_interval is not None:
        cfg = replace(cfg, stats_interval_s=float(args.stats_interval))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)

    if _ensure_first_run_files(config_path, identity_path):
        print(
            "Created default relayd files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run relayd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
