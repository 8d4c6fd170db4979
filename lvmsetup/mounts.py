"""Runtime mount and swap activation."""
from __future__ import annotations

import os

from .executil import info, run, trace, warn
from .lvm import realpath
from .model import (
    EntityState,
    LogicalVolumeSpec,
    Outcome,
    Severity,
    StageReport,
    Topology,
)

STAGE = "mount"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def findmnt_source(target: str) -> str:
    """Return the source mounted exactly at ``target`` or '' when nothing is."""

    r = run(["findmnt", "-rno", "SOURCE", "--mountpoint", target], check=False)
    if r.rc != 0:
        return ""
    return (r.out or "").strip().splitlines()[0] if (r.out or "").strip() else ""


def is_mounted(target: str) -> bool:
    return bool(findmnt_source(target))


def active_swaps() -> set[str]:
    r = run(["swapon", "--show=NAME", "--noheadings", "--raw"], check=False)
    return {realpath(line.strip()) for line in (r.out or "").splitlines() if line.strip()}


def swap_active(lv: LogicalVolumeSpec) -> bool:
    # compare this device only, not "is any swap on"
    return realpath(lv.mapper_path) in active_swaps()


def ensure_mounted(lv: LogicalVolumeSpec, mountpoint: str, report: StageReport | None = None,
                   dry_run: bool = False) -> Outcome:
    report = report if report is not None else StageReport(STAGE)
    entity = f"{lv.mapper_path} on {mountpoint}"
    if not dry_run:
        try:
            ensure_dir(mountpoint)
        except OSError as exc:
            return report.add(Outcome(
                STAGE, entity, EntityState.FAILED, Severity.FATAL,
                f"cannot create mountpoint {mountpoint}: {exc}", kind="FAIL_MOUNT",
            ))
    if is_mounted(mountpoint):
        info(f"{mountpoint} already mounted, skipping")
        return report.add(Outcome(STAGE, entity, EntityState.PRESENT, message="already mounted"))
    info(f"mounting {lv.lv_path} on {mountpoint}")
    res = run(["mount", lv.lv_path, mountpoint], check=False, dry_run=dry_run)
    if res.rc != 0:
        err = (res.err or "").strip() or f"exit status {res.rc}"
        trace("mounts.mount_failed", device=lv.lv_path, target=mountpoint, rc=res.rc, err=err)
        return report.add(Outcome(
            STAGE, entity, EntityState.FAILED, Severity.FATAL,
            f"failed to mount {lv.name} on {mountpoint}: {err}", kind="FAIL_MOUNT",
        ))
    return report.add(Outcome(STAGE, entity, EntityState.PRESENT, message="mounted", created=True))


def ensure_swap_active(lv: LogicalVolumeSpec, report: StageReport | None = None,
                       dry_run: bool = False) -> Outcome:
    report = report if report is not None else StageReport(STAGE)
    entity = f"swap {lv.mapper_path}"
    if swap_active(lv):
        info(f"{lv.name} already active as swap, skipping")
        return report.add(Outcome(STAGE, entity, EntityState.PRESENT, message="already active"))
    info(f"activating swap on {lv.lv_path}")
    res = run(["swapon", lv.lv_path], check=False, dry_run=dry_run)
    if res.rc != 0:
        message = f"failed to activate {lv.name} as swap (it may already be active): {(res.err or '').strip()}"
        warn(message)
        return report.add(Outcome(STAGE, entity, EntityState.FAILED, Severity.WARNING, message))
    return report.add(Outcome(STAGE, entity, EntityState.PRESENT, message="activated", created=True))


def mount_all(topology: Topology, dry_run: bool = False) -> StageReport:
    report = StageReport(STAGE)
    for spec in topology.mounts:
        if spec.lv.is_swap:
            ensure_swap_active(spec.lv, report, dry_run=dry_run)
            continue
        outcome = ensure_mounted(spec.lv, spec.target, report, dry_run=dry_run)
        if outcome.severity is Severity.FATAL:
            break
    return report
