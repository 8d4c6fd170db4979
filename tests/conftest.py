import json
import subprocess
from types import SimpleNamespace

import pytest

from lvmsetup import cli, devices, executil, lvm, mounts, safety, sanitize, tools

GIB = 1024 ** 3


def _mapper(path: str) -> str:
    """/dev/vg/lv -> /dev/mapper/vg-lv, the name findmnt and swapon report."""

    parts = path.split("/")
    if len(parts) == 4 and parts[1] == "dev" and parts[2] != "mapper":
        return f"/dev/mapper/{parts[2]}-{parts[3]}"
    return path


class FakeHost:
    """In-memory stand-in for lsblk, LVM, blkid, mount and swap tools."""

    def __init__(self, sizes=None):
        sizes = sizes or [("sdb", 5), ("sdc", 3), ("sdd", 3), ("sde", 2), ("sdf", 1)]
        self.disks = [{"name": n, "size": gb * GIB, "children": []} for n, gb in sizes]
        self.pvs: dict[str, str] = {}
        self.vgs: set[str] = set()
        self.lvs: set[tuple[str, str]] = set()
        self.fs: dict[str, str] = {}
        self.mounted: dict[str, str] = {}
        self.swaps: set[str] = set()
        self.live_root = ""
        self.missing: set[str] = set()
        self.fail: set[str] = set()
        self.calls: list[list[str]] = []

    def present(self, path: str) -> bool:
        return path.startswith("/dev/") and path not in self.missing

    def _node(self, disk: dict) -> dict:
        return {
            "name": disk["name"],
            "path": f"/dev/{disk['name']}",
            "size": disk["size"],
            "type": "disk",
            "mountpoint": None,
            "children": [dict(c, type="part") for c in disk["children"]],
        }

    def mutations(self, *names: str) -> list[list[str]]:
        return [c for c in self.calls if c and c[0] in names]

    def run(self, cmd, check=True, dry_run=False, **_kwargs):
        cmd = list(cmd)
        self.calls.append(cmd)
        if dry_run:
            return SimpleNamespace(rc=0, out="DRY-RUN: " + " ".join(cmd), err="")
        rc, out = self._dispatch(cmd)
        if cmd[0] in self.fail:
            rc, out = 5, ""
        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, cmd, out, "boom")
        return SimpleNamespace(rc=rc, out=out, err="" if rc == 0 else f"{cmd[0]} failed")

    def _dispatch(self, cmd):
        tool = cmd[0]
        if tool == "lsblk" and cmd[1] == "-J":
            nodes = [self._node(d) for d in self.disks]
            if len(cmd) > 5:
                nodes = [n for n in nodes if n["path"] == cmd[5]]
            return 0, json.dumps({"blockdevices": nodes})
        if tool == "lsblk" and cmd[1] == "-rnso":
            src = cmd[3]
            disk = src.rsplit("/", 1)[-1].rstrip("0123456789")
            return 0, f"{src.rsplit('/', 1)[-1]} part\n{disk} disk\n"
        if tool == "findmnt" and cmd[1] in ("-no", "-nvo"):
            if cmd[3] == "/" and self.live_root:
                source = self.live_root
                if "v" in cmd[1]:
                    source = source.split("[", 1)[0]
                return 0, source + "\n"
            return 1, ""
        if tool == "findmnt":
            target = cmd[-1]
            if target in self.mounted:
                return 0, self.mounted[target] + "\n"
            return 1, ""
        if tool == "pvs":
            rows = [{"pv_name": p, "vg_name": vg} for p, vg in self.pvs.items()]
            return 0, json.dumps({"report": [{"pv": rows}]})
        if tool == "vgs":
            return 0, json.dumps({"report": [{"vg": [{"vg_name": v} for v in sorted(self.vgs)]}]})
        if tool == "lvs":
            rows = [{"vg_name": vg, "lv_name": lv} for vg, lv in sorted(self.lvs)]
            return 0, json.dumps({"report": [{"lv": rows}]})
        if tool == "blkid":
            value = self.fs.get(_mapper(cmd[-1]), "")
            return (0 if value else 2), value + ("\n" if value else "")
        if tool == "swapon" and cmd[1].startswith("--show"):
            return 0, "".join(f"{s}\n" for s in sorted(self.swaps))
        if tool in self.fail:
            return 5, ""
        if tool == "pvcreate":
            self.pvs[cmd[-1]] = ""
        elif tool == "vgcreate":
            self.vgs.add(cmd[1])
            for member in cmd[2:]:
                self.pvs[member] = cmd[1]
        elif tool == "lvcreate":
            name = cmd[cmd.index("-n") + 1]
            self.lvs.add((cmd[-1], name))
        elif tool == "mkfs.ext4":
            self.fs[_mapper(cmd[-1])] = "ext4"
        elif tool == "mkswap":
            self.fs[_mapper(cmd[-1])] = "swap"
        elif tool == "mount":
            self.mounted[cmd[-1]] = _mapper(cmd[-2])
        elif tool == "swapon":
            self.swaps.add(_mapper(cmd[-1]))
        return 0, ""


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    monkeypatch.setenv("LVMSETUP_BASE_PATH", str(tmp_path / "base"))
    monkeypatch.setattr(executil, "LOG_DIRS", [str(tmp_path / "logs")])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    monkeypatch.setattr(cli, "RESULT_LOG_PATH", None)


@pytest.fixture
def host(monkeypatch):
    fake = FakeHost()
    for module in (devices, safety, sanitize, lvm, mounts, tools):
        monkeypatch.setattr(module, "run", fake.run)
    for module in (devices, sanitize, lvm):
        monkeypatch.setattr(module, "udev_settle", lambda: None)
    monkeypatch.setattr(sanitize, "_is_block_device", fake.present)
    monkeypatch.setattr(sanitize.time, "sleep", lambda _s: None)
    monkeypatch.setattr(mounts, "ensure_dir", lambda path: None)
    monkeypatch.setattr(tools.shutil, "which", lambda name: f"/usr/sbin/{name}")
    return fake
