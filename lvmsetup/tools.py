"""Storage tool preflight and optional package installation."""
from __future__ import annotations

import shutil
from typing import Any, Dict

from .errors import ToolMissingError
from .executil import info, run, trace, warn

REQUIRED_TOOLS = (
    "lsblk",
    "blkid",
    "findmnt",
    "wipefs",
    "sgdisk",
    "partprobe",
    "pvcreate",
    "vgcreate",
    "lvcreate",
    "pvs",
    "vgs",
    "lvs",
    "mkfs.ext4",
    "mkswap",
    "swapon",
    "mount",
    "umount",
)
REQUIRED_PACKAGES = ("gdisk", "lvm2", "parted")


def missing_tools() -> list[str]:
    return [tool for tool in REQUIRED_TOOLS if shutil.which(tool) is None]


def package_manager() -> list[str] | None:
    if shutil.which("dnf"):
        return ["dnf", "install", "-y"]
    if shutil.which("apt-get"):
        return ["apt-get", "install", "-y"]
    return None


def install_packages(dry_run: bool = False) -> Dict[str, Any]:
    """Install the storage packages with whichever package manager exists."""

    stats: Dict[str, Any] = {"manager": None, "rc": None}
    base = package_manager()
    if base is None:
        warn("could not determine the package manager (dnf/apt-get); tools may be missing")
        return stats
    stats["manager"] = base[0]
    if base[0] == "apt-get":
        update = run(["apt-get", "update"], check=False, dry_run=dry_run)
        stats["update_rc"] = update.rc
    res = run(base + list(REQUIRED_PACKAGES), check=False, dry_run=dry_run)
    stats["rc"] = res.rc
    if res.rc != 0:
        warn(f"{base[0]} failed to install {' '.join(REQUIRED_PACKAGES)} (rc={res.rc})")
    trace("tools.install", **stats)
    return stats


def ensure_tools(install: bool = False, dry_run: bool = False) -> Dict[str, Any]:
    info("checking required storage tools")
    stats: Dict[str, Any] = {"install": None}
    if install:
        stats["install"] = install_packages(dry_run=dry_run)
    missing = missing_tools()
    stats["missing"] = missing
    trace("tools.preflight", **stats)
    if missing:
        raise ToolMissingError(missing)
    return stats
