from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_BASE = "/var/lib/lvmsetup"
_DEFAULT_FSTAB = "/etc/fstab"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def base_path() -> str:
    """Return the base directory for lvmsetup logs and artifacts.

    The location can be overridden via the ``LVMSETUP_BASE_PATH`` environment
    variable.
    """

    override = os.environ.get("LVMSETUP_BASE_PATH")
    if override:
        return _expand(override)
    return _expand(_DEFAULT_BASE)


def logs_dir() -> str:
    return str(Path(base_path()) / "logs")


def artifacts_dir() -> str:
    return str(Path(base_path()) / "artifacts")


def fstab_path() -> str:
    """Return the persisted mount table, honouring ``LVMSETUP_FSTAB``."""

    override = os.environ.get("LVMSETUP_FSTAB")
    if override:
        return _expand(override)
    return _DEFAULT_FSTAB
