from __future__ import annotations

import os
from pathlib import Path


def default_relayd_dir() -> Path:
    override = os.environ.get("RELAYD_HOME")
    if override:
        return Path(override)
    return Path.home() / ".relayd"


def default_config_path() -> Path:
    return default_relayd_dir() / "relayd.toml"


def default_identity_path() -> Path:
    return default_relayd_dir() / "relay_identity"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except Exception:
        pass
