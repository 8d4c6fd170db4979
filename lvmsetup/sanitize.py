"""Bring target disks to a blank state before LVM takes them over."""
from __future__ import annotations

import os
import stat
import time
from typing import Iterable

from .devices import describe
from .executil import info, run, trace, udev_settle, warn
from .lvm import realpath
from .model import BlockDevice, EntityState, Outcome, Severity, StageReport

STAGE = "sanitize"


def _is_block_device(path: str) -> bool:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        trace("sanitize.stat_error", path=path, error=str(exc))
        return False
    return stat.S_ISBLK(st.st_mode)


def _warn(report: StageReport, entity: str, message: str, state: EntityState = EntityState.PRESENT) -> None:
    warn(message)
    report.add(Outcome(STAGE, entity, state, Severity.WARNING, message))


def unmount_partitions(dev: BlockDevice, report: StageReport, dry_run: bool = False) -> None:
    current = describe(dev.path) or dev
    for part in current.partitions:
        if not part.mountpoint:
            continue
        if part.mountpoint == "[SWAP]":
            cmd = ["swapoff", part.path]
        else:
            cmd = ["umount", part.path]
        info(f"unmounting {part.path} ({part.mountpoint})")
        res = run(cmd, check=False, dry_run=dry_run)
        if res.rc != 0:
            _warn(report, part.path, f"failed to unmount {part.path}: {(res.err or '').strip() or res.rc}")


def reread(dev: str, report: StageReport, settle_seconds: float = 2.0, dry_run: bool = False) -> None:
    res = run(["partprobe", dev], check=False, dry_run=dry_run)
    if res.rc != 0:
        _warn(report, dev, f"partprobe failed on {dev}")
    udev_settle()
    if settle_seconds > 0 and not dry_run:
        time.sleep(settle_seconds)


def wipe(dev: str, report: StageReport, settle_seconds: float = 2.0, dry_run: bool = False) -> None:
    info(f"erasing filesystem and LVM signatures on {dev}")
    res = run(["wipefs", "-a", dev], check=False, dry_run=dry_run)
    if res.rc != 0:
        _warn(report, dev, f"wipefs failed on {dev}")
    info(f"erasing partition tables on {dev}")
    res = run(["sgdisk", "--zap-all", dev], check=False, dry_run=dry_run)
    if res.rc != 0:
        _warn(report, dev, f"sgdisk failed on {dev}")
    reread(dev, report, settle_seconds=settle_seconds, dry_run=dry_run)


def sanitize(
        devices: Iterable[BlockDevice],
        claimed: Iterable[str] = (),
        settle_seconds: float = 2.0,
        dry_run: bool = False,
) -> StageReport:
    """Unmount, wipe and re-read every target disk.

    Nothing here is fatal. Devices listed in ``claimed`` are already physical
    volumes of their intended volume group and are left untouched so a rerun
    never wipes a provisioned disk.
    """

    report = StageReport(STAGE)
    claimed = {realpath(p) for p in claimed}
    for dev in devices:
        if not _is_block_device(dev.path):
            _warn(report, dev.path, f"device {dev.path} not found during sanitization, skipping",
                  state=EntityState.ABSENT)
            continue
        if realpath(dev.path) in claimed:
            info(f"{dev.path} already provisioned, skipping wipe")
            report.add(Outcome(STAGE, dev.path, EntityState.PRESENT, message="already provisioned"))
            continue
        info(f"sanitizing {dev.path}")
        unmount_partitions(dev, report, dry_run=dry_run)
        wipe(dev.path, report, settle_seconds=settle_seconds, dry_run=dry_run)
        report.add(Outcome(STAGE, dev.path, EntityState.PRESENT, message="wiped"))
    return report
