from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shared.models import Stage, User

STAGE_SUFFIX_RE = re.compile(r"^(.+)_Stage(\d+)\.pdf$", re.IGNORECASE)
_PDF_EXT_RE = re.compile(r"\.pdf$", re.IGNORECASE)


# ─────────────────────────────────────────────────────────────────────────────
# Filename convention: <first>_<last>_Stage<N>.pdf
# ─────────────────────────────────────────────────────────────────────────────
def base_identity(filename: str) -> str:
    """Strip the stage suffix; 'john_doe_Stage2.pdf' -> 'john_doe'."""
    m = STAGE_SUFFIX_RE.match(filename)
    if m:
        return m.group(1)
    return _PDF_EXT_RE.sub("", filename)


def stage_of_filename(filename: str) -> int | None:
    m = STAGE_SUFFIX_RE.match(filename)
    return int(m.group(2)) if m else None


def stage_filename(base: str, stage: "Stage") -> str:
    return f"{base}_{stage.value}.pdf"


def rename_for_stage(filename: str, stage: "Stage") -> str:
    """
    Swap the stage suffix and keep the base verbatim.
    Names that do not follow the convention get the suffix appended instead.
    """
    return stage_filename(base_identity(filename), stage)


def normalize_name(name: str) -> str:
    s = re.sub(r"\s+", "_", name.strip())
    return s.strip("_").lower()


def student_filename(user: "User") -> str:
    from shared.models import Stage

    parts = [p for p in re.split(r"\s+", (user.display_name or "").strip()) if p]
    if len(parts) >= 2:
        first, last = parts[0], parts[-1]
    else:
        bits = user.username.split(".")
        first = bits[0]
        last = bits[1] if len(bits) > 1 else ""
    base = normalize_name(f"{first} {last}")
    return stage_filename(base, Stage.STAGE1)


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.\-_]", "_", name)


# ─────────────────────────────────────────────────────────────────────────────
# Data root layout
# ─────────────────────────────────────────────────────────────────────────────
def ensure_dirs(*paths: Path) -> None:
    for p in paths:
        p.mkdir(parents=True, exist_ok=True)


def data_layout(root: Path) -> dict[str, Path]:
    layout = {
        "ledger": root / "ledger.json",
        "blobs": root / "blobs",
        "notifications": root / "notifications.json",
        "notes": root / "notes.json",
        "logs": root / "logs",
    }
    ensure_dirs(root, layout["blobs"], layout["logs"])
    return layout
