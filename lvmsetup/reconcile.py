"""Guard-then-act reconciliation of PVs, VGs, LVs and filesystems.

Every entity is checked against live state first; only absent entities are
created. A failed creation ends the stage with a fatal outcome, and later
stages are never attempted on top of a broken chain. A state query that
fails is fatal as well; it is never read as absence.
"""

from __future__ import annotations

from typing import Dict, Mapping

from . import lvm
from .errors import QueryError
from .executil import info, trace
from .model import (
    BlockDevice,
    DeviceRole,
    EntityState,
    Outcome,
    Severity,
    StageReport,
    Topology,
)


def claimed_devices(
        topology: Topology,
        classification: Mapping[DeviceRole, BlockDevice],
        pvs: Dict[str, str] | None = None,
) -> list[str]:
    """Devices that are already PVs of the volume group they are meant for."""

    if pvs is None:
        pvs = lvm.query_pvs()
    claimed = []
    for role, dev in classification.items():
        vg = topology.vg_of(role)
        if vg and pvs.get(lvm.realpath(dev.path)) == vg.name:
            claimed.append(dev.path)
    return claimed


class Reconciler:
    def __init__(
            self,
            topology: Topology,
            classification: Mapping[DeviceRole, BlockDevice],
            dry_run: bool = False,
    ) -> None:
        self.topology = topology
        self.classification = classification
        self.dry_run = dry_run

    def _exists(self, report: StageReport, entity: str) -> Outcome:
        info(f"{entity} already exists, skipping")
        return report.add(Outcome(report.stage, entity, EntityState.PRESENT, message="already exists"))

    def _created(self, report: StageReport, entity: str) -> Outcome:
        info(f"{entity} created")
        return report.add(Outcome(report.stage, entity, EntityState.PRESENT, message="created", created=True))

    def _failed(self, report: StageReport, entity: str, message: str, kind: str = "FAIL_LVM") -> Outcome:
        trace("reconcile.failed", stage=report.stage, entity=entity, message=message)
        return report.add(
            Outcome(report.stage, entity, EntityState.FAILED, Severity.FATAL, message, kind=kind)
        )

    def _attempt(self, report: StageReport, entity: str, action, kind: str = "FAIL_LVM") -> bool:
        trace("reconcile.transition", stage=report.stage, entity=entity, state=EntityState.CREATING.value)
        res = action()
        if res.rc != 0:
            err = (res.err or res.out or "").strip() or f"exit status {res.rc}"
            self._failed(report, entity, f"failed to create {entity}: {err}", kind=kind)
            return False
        self._created(report, entity)
        return True

    def ensure_pvs(self) -> StageReport:
        return self._guarded("pv", self._ensure_pvs)

    def ensure_vgs(self) -> StageReport:
        return self._guarded("vg", self._ensure_vgs)

    def ensure_lvs(self) -> StageReport:
        return self._guarded("lv", self._ensure_lvs)

    def ensure_filesystems(self) -> StageReport:
        return self._guarded("filesystem", self._ensure_filesystems)

    def _guarded(self, stage: str, body) -> StageReport:
        """Run ``body`` into a fresh report; a failed state query is fatal."""

        report = StageReport(stage)
        try:
            body(report)
        except QueryError as exc:
            self._failed(report, f"query {exc.tool}", f"cannot determine current state: {exc}",
                         kind=exc.result_kind)
        return report

    def _ensure_pvs(self, report: StageReport) -> None:
        pvs = lvm.query_pvs()
        for role in self.topology.roles():
            dev = self.classification[role]
            if lvm.pv_present(dev.path, pvs):
                self._exists(report, f"PV {dev.path}")
                continue
            info(f"creating PV on {dev.path}")
            if not self._attempt(report, f"PV {dev.path}", lambda: lvm.create_pv(dev.path, dry_run=self.dry_run)):
                return

    def _ensure_vgs(self, report: StageReport) -> None:
        vgs = lvm.query_vgs()
        pvs = lvm.query_pvs()
        for vg in self.topology.volume_groups:
            if vg.name in vgs:
                self._exists(report, f"VG {vg.name}")
                continue
            members = [self.classification[role].path for role in vg.members]
            absent = [m for m in members if not lvm.pv_present(m, pvs)]
            if absent and not self.dry_run:
                self._failed(report, f"VG {vg.name}", f"cannot create VG {vg.name}: PVs absent on {', '.join(absent)}")
                return
            info(f"creating VG {vg.name} from {' '.join(members)}")
            if not self._attempt(report, f"VG {vg.name}", lambda: lvm.create_vg(vg.name, members, dry_run=self.dry_run)):
                return

    def _ensure_lvs(self, report: StageReport) -> None:
        vgs = lvm.query_vgs()
        lvs = lvm.query_lvs()
        for spec in self.topology.logical_volumes:
            entity = f"LV {spec.vg}/{spec.name}"
            if (spec.vg, spec.name) in lvs:
                self._exists(report, entity)
                continue
            if spec.vg not in vgs and not self.dry_run:
                self._failed(report, entity, f"cannot create {entity}: VG {spec.vg} absent")
                return
            info(f"creating {entity} ({spec.size or '100%FREE'})")
            if not self._attempt(report, entity, lambda: lvm.create_lv(spec, dry_run=self.dry_run)):
                return

    def _ensure_filesystems(self, report: StageReport) -> None:
        lvs = lvm.query_lvs()
        for spec in self.topology.logical_volumes:
            entity = f"{spec.fstype} on {spec.mapper_path}"
            if (spec.vg, spec.name) not in lvs and not self.dry_run:
                self._failed(report, entity, f"cannot format {spec.mapper_path}: LV absent", kind="FAIL_MKFS")
                return
            if lvm.fs_type(spec.mapper_path) == spec.fstype:
                self._exists(report, entity)
                continue
            info(f"formatting {spec.lv_path} as {spec.fstype}")
            if not self._attempt(
                    report,
                    entity,
                    lambda: lvm.make_fs(spec.lv_path, spec.fstype, dry_run=self.dry_run),
                    kind="FAIL_MKFS",
            ):
                return

    def run(self) -> StageReport:
        """Run every stage in dependency order, stopping at the first fatal one."""

        report = StageReport("reconcile")
        for stage in (self.ensure_pvs, self.ensure_vgs, self.ensure_lvs, self.ensure_filesystems):
            sub = stage()
            report.extend(sub)
            if sub.fatal:
                break
            if not self.dry_run:
                trace("reconcile.state", stage=sub.stage, **lvm.summary())
        return report
