"""LVM state queries and create calls.

Queries use ``--reportformat json`` so presence checks never depend on the
column layout of the human-readable report.
"""

from __future__ import annotations

import json
import os
from typing import Dict, Iterable, Set, Tuple

from .errors import QueryError
from .executil import Result, run, trace, udev_settle
from .model import LogicalVolumeSpec


def _report_rows(res: Result, key: str) -> list[dict]:
    tool = f"{key}s"
    if res.rc != 0:
        err = (res.err or "").strip()
        trace("lvm.report_failed", key=key, rc=res.rc, err=err)
        raise QueryError(tool, err or f"exit status {res.rc}")
    try:
        payload = json.loads(res.out or "{}")
    except json.JSONDecodeError as exc:
        trace("lvm.report_parse_error", key=key, raw=(res.out or "")[:200])
        raise QueryError(tool, f"unparseable report: {exc}") from exc
    rows: list[dict] = []
    for report in payload.get("report") or []:
        rows.extend(report.get(key) or [])
    return rows


def realpath(path: str) -> str:
    try:
        return os.path.realpath(path)
    except OSError:
        return path


def query_pvs() -> Dict[str, str]:
    """Map each physical volume (resolved path) to its VG name ('' if none)."""

    res = run(["pvs", "--reportformat", "json", "-o", "pv_name,vg_name"], check=False)
    pvs: Dict[str, str] = {}
    for row in _report_rows(res, "pv"):
        name = (row.get("pv_name") or "").strip()
        if name:
            pvs[realpath(name)] = (row.get("vg_name") or "").strip()
    return pvs


def query_vgs() -> Set[str]:
    res = run(["vgs", "--reportformat", "json", "-o", "vg_name"], check=False)
    return {(row.get("vg_name") or "").strip() for row in _report_rows(res, "vg")} - {""}


def query_lvs() -> Set[Tuple[str, str]]:
    res = run(["lvs", "--reportformat", "json", "-o", "vg_name,lv_name"], check=False)
    lvs: Set[Tuple[str, str]] = set()
    for row in _report_rows(res, "lv"):
        vg = (row.get("vg_name") or "").strip()
        lv = (row.get("lv_name") or "").strip()
        if vg and lv:
            lvs.add((vg, lv))
    return lvs


def pv_present(dev: str, pvs: Dict[str, str] | None = None) -> bool:
    if pvs is None:
        pvs = query_pvs()
    return realpath(dev) in pvs


def fs_type(path: str) -> str:
    """Signature TYPE of ``path``; '' when blkid finds none (exit status 2)."""

    r = run(["blkid", "-s", "TYPE", "-o", "value", path], check=False)
    if r.rc == 2:
        return ""
    if r.rc != 0:
        err = (r.err or "").strip() or f"exit status {r.rc}"
        raise QueryError("blkid", f"{path}: {err}")
    return (r.out or "").strip()


def create_pv(dev: str, dry_run: bool = False) -> Result:
    # -ff overrides any stale signature the wipe may have missed
    return run(["pvcreate", "-ff", "-y", dev], check=False, dry_run=dry_run)


def create_vg(name: str, members: Iterable[str], dry_run: bool = False) -> Result:
    return run(["vgcreate", name, *members], check=False, dry_run=dry_run)


def create_lv(spec: LogicalVolumeSpec, dry_run: bool = False) -> Result:
    cmd = ["lvcreate", "-y"]
    if spec.size:
        cmd += ["-L", spec.size]
    else:
        cmd += ["-l", "100%FREE"]
    cmd += ["-n", spec.name, spec.vg]
    res = run(cmd, check=False, dry_run=dry_run)
    udev_settle()
    return res


def make_fs(path: str, fstype: str, dry_run: bool = False) -> Result:
    if fstype == "swap":
        cmd = ["mkswap", path]
    elif fstype == "ext4":
        cmd = ["mkfs.ext4", "-F", path]
    else:
        cmd = [f"mkfs.{fstype}", path]
    return run(cmd, check=False, dry_run=dry_run)


def summary() -> Dict[str, object]:
    """Snapshot of pvs/vgs/lvs for the log, like the post-stage listings."""

    try:
        pvs, vgs, lvs = query_pvs(), query_vgs(), query_lvs()
    except QueryError as exc:
        return {"error": str(exc)}
    return {
        "pvs": pvs,
        "vgs": sorted(vgs),
        "lvs": sorted(f"{vg}/{lv}" for vg, lv in lvs),
    }
