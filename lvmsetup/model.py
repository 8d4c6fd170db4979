from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

GIB = 1024 ** 3


@dataclass
class Flags:
    plan: bool = False
    dry_run: bool = False
    install_tools: bool = False
    json: bool = True


@dataclass
class BlockDevice:
    path: str
    size_bytes: int
    kind: str = "disk"
    name: str = ""
    mountpoint: Optional[str] = None
    partitions: list["BlockDevice"] = field(default_factory=list)

    @property
    def size_gb(self) -> int:
        # lsblk human sizes are GiB rounded to one decimal; the integer part is the class
        return int(round(self.size_bytes / GIB, 1))


class DeviceRole(Enum):
    SIZE_5G = 5
    SIZE_3G_PRIMARY = 3
    SIZE_2G = 2
    SIZE_1G = 1

    @property
    def size_gb(self) -> int:
        return self.value


@dataclass(frozen=True)
class VolumeGroupSpec:
    name: str
    members: tuple[DeviceRole, ...]


@dataclass(frozen=True)
class LogicalVolumeSpec:
    name: str
    vg: str
    size: Optional[str]  # lvcreate -L literal; None means remaining capacity
    fstype: str = "ext4"

    @property
    def is_swap(self) -> bool:
        return self.fstype == "swap"

    @property
    def lv_path(self) -> str:
        return f"/dev/{self.vg}/{self.name}"

    @property
    def mapper_path(self) -> str:
        # device-mapper escapes literal dashes by doubling them
        vg = self.vg.replace("-", "--")
        lv = self.name.replace("-", "--")
        return f"/dev/mapper/{vg}-{lv}"


@dataclass(frozen=True)
class MountSpec:
    lv: LogicalVolumeSpec
    target: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 2

    @property
    def fstype(self) -> str:
        return self.lv.fstype

    @property
    def device(self) -> str:
        return self.lv.mapper_path

    def fstab_line(self) -> str:
        return f"{self.device} {self.target} {self.fstype} {self.options} {self.dump} {self.passno}"


@dataclass(frozen=True)
class Topology:
    volume_groups: tuple[VolumeGroupSpec, ...]
    logical_volumes: tuple[LogicalVolumeSpec, ...]
    mounts: tuple[MountSpec, ...]

    def roles(self) -> list[DeviceRole]:
        seen: list[DeviceRole] = []
        for vg in self.volume_groups:
            for role in vg.members:
                if role not in seen:
                    seen.append(role)
        return seen

    def vg_of(self, role: DeviceRole) -> Optional[VolumeGroupSpec]:
        for vg in self.volume_groups:
            if role in vg.members:
                return vg
        return None

    def mount_for(self, lv: LogicalVolumeSpec) -> Optional[MountSpec]:
        for m in self.mounts:
            if m.lv == lv:
                return m
        return None


LV_DOCKER = LogicalVolumeSpec("lv_docker", "vg_datos", "12M", "ext4")
LV_WORKAREAS = LogicalVolumeSpec("lv_workareas", "vg_datos", "2.5G", "ext4")
LV_SWAP = LogicalVolumeSpec("lv_swap", "vg_temp", "2.5G", "swap")

DEFAULT_TOPOLOGY = Topology(
    volume_groups=(
        VolumeGroupSpec("vg_datos", (DeviceRole.SIZE_5G, DeviceRole.SIZE_3G_PRIMARY)),
        VolumeGroupSpec("vg_temp", (DeviceRole.SIZE_2G, DeviceRole.SIZE_1G)),
    ),
    logical_volumes=(LV_DOCKER, LV_WORKAREAS, LV_SWAP),
    mounts=(
        MountSpec(LV_DOCKER, "/var/lib/docker"),
        MountSpec(LV_WORKAREAS, "/work"),
        MountSpec(LV_SWAP, "none", options="sw", dump=0, passno=0),
    ),
)


class EntityState(Enum):
    ABSENT = "absent"
    CREATING = "creating"
    PRESENT = "present"
    FAILED = "failed"


class Severity(Enum):
    OK = "ok"
    WARNING = "warning"
    FATAL = "fatal"


@dataclass
class Outcome:
    stage: str
    entity: str
    state: EntityState
    severity: Severity = Severity.OK
    message: str = ""
    created: bool = False
    kind: str = ""  # result code name for fatal outcomes

    def as_dict(self) -> dict:
        data = {
            "stage": self.stage,
            "entity": self.entity,
            "state": self.state.value,
            "severity": self.severity.value,
            "message": self.message,
            "created": self.created,
        }
        if self.kind:
            data["kind"] = self.kind
        return data


@dataclass
class StageReport:
    stage: str
    outcomes: list[Outcome] = field(default_factory=list)

    def add(self, outcome: Outcome) -> Outcome:
        self.outcomes.append(outcome)
        return outcome

    def extend(self, other: "StageReport") -> None:
        self.outcomes.extend(other.outcomes)

    @property
    def fatal(self) -> Optional[Outcome]:
        for o in self.outcomes:
            if o.severity is Severity.FATAL:
                return o
        return None

    @property
    def warnings(self) -> list[Outcome]:
        return [o for o in self.outcomes if o.severity is Severity.WARNING]

    @property
    def created(self) -> int:
        return sum(1 for o in self.outcomes if o.created)

    def as_dict(self) -> dict:
        return {
            "stage": self.stage,
            "created": self.created,
            "warnings": len(self.warnings),
            "outcomes": [o.as_dict() for o in self.outcomes],
        }
