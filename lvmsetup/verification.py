"""End-to-end check of the device -> PV -> VG -> LV -> filesystem -> mount chain."""

from __future__ import annotations

from typing import Mapping

from . import lvm
from .errors import QueryError
from .executil import warn
from .fstab import has_entry, parse_fstab, read_fstab
from .mounts import findmnt_source, swap_active
from .model import (
    BlockDevice,
    DeviceRole,
    EntityState,
    Outcome,
    Severity,
    StageReport,
    Topology,
)

STAGE = "verify"


def _ok(report: StageReport, entity: str, message: str = "ok") -> None:
    report.add(Outcome(STAGE, entity, EntityState.PRESENT, message=message))


def _broken(report: StageReport, entity: str, message: str, severity: Severity = Severity.FATAL) -> None:
    if severity is Severity.WARNING:
        warn(message)
    report.add(Outcome(
        STAGE, entity, EntityState.ABSENT, severity, message,
        kind="FAIL_VERIFY" if severity is Severity.FATAL else "",
    ))


def verify_chain(
        topology: Topology,
        classification: Mapping[DeviceRole, BlockDevice],
        fstab_path: str,
) -> StageReport:
    """Re-query live state and report every broken link.

    Unlike the reconcile stages this does not stop at the first failure so the
    report names everything that is missing.
    """

    report = StageReport(STAGE)
    try:
        _check_chain(report, topology, classification, fstab_path)
    except QueryError as exc:
        _broken(report, f"query {exc.tool}", f"cannot verify current state: {exc}")
    return report


def _check_chain(
        report: StageReport,
        topology: Topology,
        classification: Mapping[DeviceRole, BlockDevice],
        fstab_path: str,
) -> None:
    pvs = lvm.query_pvs()
    vgs = lvm.query_vgs()
    lvs = lvm.query_lvs()

    for role in topology.roles():
        dev = classification[role]
        vg = topology.vg_of(role)
        actual = pvs.get(lvm.realpath(dev.path))
        if actual is None:
            _broken(report, f"PV {dev.path}", f"{dev.path} is not a physical volume")
        elif vg and actual != vg.name:
            _broken(report, f"PV {dev.path}", f"{dev.path} belongs to {actual or 'no VG'}, expected {vg.name}")
        else:
            _ok(report, f"PV {dev.path}")

    for vg in topology.volume_groups:
        if vg.name in vgs:
            _ok(report, f"VG {vg.name}")
        else:
            _broken(report, f"VG {vg.name}", f"volume group {vg.name} missing")

    for spec in topology.logical_volumes:
        entity = f"LV {spec.vg}/{spec.name}"
        if (spec.vg, spec.name) not in lvs:
            _broken(report, entity, f"logical volume {spec.vg}/{spec.name} missing")
            continue
        _ok(report, entity)
        current = lvm.fs_type(spec.mapper_path)
        if current != spec.fstype:
            _broken(report, f"{spec.fstype} on {spec.mapper_path}",
                    f"{spec.mapper_path} has signature {current or 'none'}, expected {spec.fstype}")
        else:
            _ok(report, f"{spec.fstype} on {spec.mapper_path}")

    entries = parse_fstab(read_fstab(fstab_path))
    for mount in topology.mounts:
        if mount.lv.is_swap:
            if swap_active(mount.lv):
                _ok(report, f"swap {mount.device}")
            else:
                _broken(report, f"swap {mount.device}", f"{mount.device} is not an active swap area",
                        severity=Severity.WARNING)
        else:
            source = findmnt_source(mount.target)
            if not source:
                _broken(report, f"mount {mount.target}", f"nothing mounted at {mount.target}")
            elif lvm.realpath(source) != lvm.realpath(mount.device):
                _broken(report, f"mount {mount.target}",
                        f"{mount.target} is backed by {source}, expected {mount.device}")
            else:
                _ok(report, f"mount {mount.target}")
        if has_entry(entries, mount):
            _ok(report, f"fstab {mount.device}")
        else:
            _broken(report, f"fstab {mount.device}", f"{fstab_path} has no entry for {mount.device}")
