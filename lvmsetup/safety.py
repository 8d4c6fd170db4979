"""Guards and destructive-op refusals."""

from __future__ import annotations

import os
from typing import Mapping

from .errors import LiveDiskError
from .executil import run, trace
from .model import BlockDevice, DeviceRole

LIVE_MOUNTPOINTS = ("/", "/boot", "/boot/efi")


def _parent_disks(source: str) -> set[str]:
    """Return the whole-disk names backing ``source`` (``sda`` for ``/dev/sda2``)."""

    if not source or not source.startswith("/dev/"):
        return set()
    res = run(["lsblk", "-rnso", "NAME,TYPE", source], check=False)
    disks: set[str] = set()
    for line in (res.out or "").splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] == "disk":
            disks.add(parts[0])
    return disks


def live_disks() -> set[str]:
    disks: set[str] = set()
    for mountpoint in LIVE_MOUNTPOINTS:
        # -v drops the btrfs subvolume suffix ("/dev/vda2[/root]")
        res = run(["findmnt", "-nvo", "SOURCE", mountpoint], check=False)
        src = (res.out or "").strip().split("[", 1)[0]
        disks |= _parent_disks(src)
    return disks


def guard_not_live_disk(classification: Mapping[DeviceRole, BlockDevice]) -> None:
    """Refuse when a classified device backs the running system.

    ``lsblk -s`` walks from the mount source up through any device-mapper
    layers, so a root filesystem on LVM is traced to its physical disk too.
    """

    live = live_disks()
    trace("safety.live_disks", disks=sorted(live))
    for role, dev in classification.items():
        name = dev.name or os.path.basename(dev.path)
        if name in live:
            raise LiveDiskError(f"{role.name} device {dev.path} backs the running system")
