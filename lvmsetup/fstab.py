"""Persisted mount table (fstab) backup and guarded appends."""
import os
import shutil
from datetime import date
from typing import Iterable, NamedTuple, Optional

from .executil import info, trace
from .lvm import realpath
from .model import EntityState, MountSpec, Outcome, Severity, StageReport

STAGE = "fstab"


class FstabEntry(NamedTuple):
    device: str
    mountpoint: str
    fstype: str
    options: str
    dump: str
    passno: str


def parse_fstab(text: str) -> list[FstabEntry]:
    entries: list[FstabEntry] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        parts = stripped.split()
        if len(parts) < 2:
            continue
        parts += ["", "defaults", "0", "0"][len(parts) - 2:]
        entries.append(FstabEntry(*parts[:6]))
    return entries


def read_fstab(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()
    except FileNotFoundError:
        return ""


def has_entry(entries: Iterable[FstabEntry], spec: MountSpec) -> bool:
    """Match on mountpoint (real mounts) or device, never on substrings."""

    want_dev = realpath(spec.device)
    for entry in entries:
        if spec.target != "none" and entry.mountpoint == spec.target:
            return True
        if entry.device == spec.device or entry.device == spec.lv.lv_path:
            return True
        if entry.device.startswith("/dev/") and realpath(entry.device) == want_dev:
            return True
    return False


def backup_path(path: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{path}.bak.{today.strftime('%Y%m%d')}"


def backup_fstab(path: str, today: Optional[date] = None) -> Optional[str]:
    """Copy ``path`` aside once per calendar day; return the new backup or None."""

    dst = backup_path(path, today)
    if os.path.exists(dst):
        info(f"backup {dst} already exists for today, skipping")
        return None
    if not os.path.exists(path):
        return None
    shutil.copy2(path, dst)
    info(f"backed up {path} to {dst}")
    return dst


def ensure_persisted(
        specs: Iterable[MountSpec],
        path: str,
        today: Optional[date] = None,
        dry_run: bool = False,
) -> StageReport:
    report = StageReport(STAGE)
    backed_up = False
    try:
        entries = parse_fstab(read_fstab(path))
        for spec in specs:
            line = spec.fstab_line()
            if has_entry(entries, spec):
                info(f"fstab already references {spec.target} / {spec.device}, skipping")
                report.add(Outcome(STAGE, line, EntityState.PRESENT, message="already present"))
                continue
            if dry_run:
                info(f"would append to {path}: {line}")
                report.add(Outcome(STAGE, line, EntityState.ABSENT, message="dry-run"))
                continue
            if not backed_up:
                backup_fstab(path, today)
                backed_up = True
            current = read_fstab(path)
            with open(path, "a", encoding="utf-8") as fh:
                if current and not current.endswith("\n"):
                    fh.write("\n")
                fh.write(line + "\n")
                fh.flush()
                os.fsync(fh.fileno())
            entries.extend(parse_fstab(line))
            trace("fstab.append", path=path, line=line)
            info(f"appended to {path}: {line}")
            report.add(Outcome(STAGE, line, EntityState.PRESENT, message="appended", created=True))
    except OSError as exc:
        report.add(Outcome(
            STAGE, path, EntityState.FAILED, Severity.FATAL,
            f"failed to update {path}: {exc}", kind="FAIL_FSTAB",
        ))
    return report
