from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from appdirs import user_config_dir, user_data_dir

APP_NAME = "DissPortal"
APP_AUTHOR = "DissPortal"
CONFIG_DIR = Path(user_config_dir(APP_NAME, APP_AUTHOR))
CONFIG_FILE = CONFIG_DIR / "config.json"


def _default_cfg() -> Dict[str, Any]:
    return {
        "data_root": str(Path(user_data_dir(APP_NAME, APP_AUTHOR))),
        "poll_interval_seconds": 90,
        "max_upload_bytes": 10 * 1024 * 1024,
        "log_level": "info",
        "dspace": {
            "base_url": "http://localhost:8080",
            "username": "dspace@dspace.org",
            "password": "dspace",
            "collection": "",
            "timeout": 30.0,
        },
    }


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    path = path or CONFIG_FILE
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        cfg = _default_cfg()
        path.write_text(json.dumps(cfg, indent=2))
        return cfg
    try:
        cfg = json.loads(path.read_text())
    except ValueError:
        # If corrupt, back up and reset
        backup = path.with_suffix(".bak")
        path.replace(backup)
        cfg = _default_cfg()
        path.write_text(json.dumps(cfg, indent=2))
        return cfg
    merged = _default_cfg()
    merged.update({k: v for k, v in cfg.items() if k != "dspace"})
    merged["dspace"].update(cfg.get("dspace") or {})
    return merged


def save_config(cfg: Dict[str, Any], path: Optional[Path] = None) -> None:
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg, indent=2))


@dataclass
class DSpaceSettings:
    base_url: str
    username: str
    password: str
    collection: str = ""
    timeout: float = 30.0


@dataclass
class Settings:
    data_root: Path
    poll_interval_seconds: float = 90
    max_upload_bytes: int = 10 * 1024 * 1024
    log_level: str = "info"
    dspace: DSpaceSettings = field(default_factory=lambda: DSpaceSettings(**_default_cfg()["dspace"]))


def load_settings(path: Optional[Path] = None) -> Settings:
    """Config file values, then environment overrides."""
    cfg = load_config(path)
    ds = dict(cfg["dspace"])
    ds["base_url"] = os.getenv("DSPACE_URL") or ds["base_url"]
    ds["username"] = os.getenv("DSPACE_USERNAME") or ds["username"]
    ds["password"] = os.getenv("DSPACE_PASSWORD") or ds["password"]
    return Settings(
        data_root=Path(os.getenv("DISSPORTAL_DATA_ROOT") or cfg["data_root"]),
        poll_interval_seconds=float(cfg["poll_interval_seconds"]),
        max_upload_bytes=int(cfg["max_upload_bytes"]),
        log_level=(os.getenv("DISSPORTAL_LOG_LEVEL") or cfg["log_level"]).lower(),
        dspace=DSpaceSettings(
            base_url=ds["base_url"].rstrip("/"),
            username=ds["username"],
            password=ds["password"],
            collection=ds.get("collection") or "",
            timeout=float(ds.get("timeout") or 30.0),
        ),
    )


def remember_data_root(data_root: Path, path: Optional[Path] = None) -> None:
    cfg = load_config(path)
    cfg["data_root"] = str(data_root)
    save_config(cfg, path)
