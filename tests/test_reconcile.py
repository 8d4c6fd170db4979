from types import SimpleNamespace

import pytest

from lvmsetup import devices, reconcile
from lvmsetup.errors import QueryError
from lvmsetup.model import DEFAULT_TOPOLOGY, EntityState, Severity


def _reconciler(host, dry_run=False):
    mapping = devices.classify(devices.discover())
    return reconcile.Reconciler(DEFAULT_TOPOLOGY, mapping, dry_run=dry_run)


def test_reconcile_builds_example_topology(host):
    report = _reconciler(host).run()

    assert report.fatal is None
    assert host.mutations("pvcreate") == [
        ["pvcreate", "-ff", "-y", "/dev/sdb"],
        ["pvcreate", "-ff", "-y", "/dev/sdc"],
        ["pvcreate", "-ff", "-y", "/dev/sde"],
        ["pvcreate", "-ff", "-y", "/dev/sdf"],
    ]
    assert host.mutations("vgcreate") == [
        ["vgcreate", "vg_datos", "/dev/sdb", "/dev/sdc"],
        ["vgcreate", "vg_temp", "/dev/sde", "/dev/sdf"],
    ]
    assert host.mutations("lvcreate") == [
        ["lvcreate", "-y", "-L", "12M", "-n", "lv_docker", "vg_datos"],
        ["lvcreate", "-y", "-L", "2.5G", "-n", "lv_workareas", "vg_datos"],
        ["lvcreate", "-y", "-L", "2.5G", "-n", "lv_swap", "vg_temp"],
    ]
    assert host.mutations("mkfs.ext4") == [
        ["mkfs.ext4", "-F", "/dev/vg_datos/lv_docker"],
        ["mkfs.ext4", "-F", "/dev/vg_datos/lv_workareas"],
    ]
    assert host.mutations("mkswap") == [["mkswap", "/dev/vg_temp/lv_swap"]]
    assert "/dev/sdd" not in host.pvs
    assert report.created == 4 + 2 + 3 + 3


def test_second_run_creates_nothing(host):
    _reconciler(host).run()
    host.calls.clear()

    report = _reconciler(host).run()

    assert report.fatal is None
    assert report.created == 0
    assert all(o.state is EntityState.PRESENT for o in report.outcomes)
    assert all(o.message == "already exists" for o in report.outcomes)
    assert not host.mutations("pvcreate", "vgcreate", "lvcreate", "mkfs.ext4", "mkswap")


def test_resumes_after_partial_state(host):
    host.pvs["/dev/sdb"] = "vg_datos"
    host.pvs["/dev/sdc"] = "vg_datos"
    host.vgs.add("vg_datos")
    host.lvs.add(("vg_datos", "lv_docker"))

    report = _reconciler(host).run()

    assert report.fatal is None
    assert [c[-1] for c in host.mutations("pvcreate")] == ["/dev/sde", "/dev/sdf"]
    assert host.mutations("vgcreate") == [["vgcreate", "vg_temp", "/dev/sde", "/dev/sdf"]]
    assert [c[5] for c in host.mutations("lvcreate")] == ["lv_workareas", "lv_swap"]


def test_vg_failure_is_fatal_and_stops_everything_after(host):
    host.fail.add("vgcreate")

    report = _reconciler(host).run()

    fatal = report.fatal
    assert fatal is not None
    assert fatal.entity == "VG vg_datos"
    assert fatal.state is EntityState.FAILED
    assert fatal.kind == "FAIL_LVM"
    assert len(host.mutations("vgcreate")) == 1
    assert not host.mutations("lvcreate", "mkfs.ext4", "mkswap")


def test_vg_not_created_before_member_pvs_present(host):
    mapping = devices.classify(devices.discover())
    rec = reconcile.Reconciler(DEFAULT_TOPOLOGY, mapping)

    report = rec.ensure_vgs()

    assert report.fatal is not None
    assert "PVs absent" in report.fatal.message
    assert not host.mutations("vgcreate")


def test_lv_not_created_before_vg_present(host):
    mapping = devices.classify(devices.discover())
    rec = reconcile.Reconciler(DEFAULT_TOPOLOGY, mapping)

    report = rec.ensure_lvs()

    assert report.fatal is not None
    assert report.fatal.entity == "LV vg_datos/lv_docker"
    assert not host.mutations("lvcreate")


def test_existing_signature_skips_format(host):
    rec = _reconciler(host)
    rec.ensure_pvs()
    rec.ensure_vgs()
    rec.ensure_lvs()
    host.fs["/dev/mapper/vg_datos-lv_docker"] = "ext4"
    host.fs["/dev/mapper/vg_temp-lv_swap"] = "swap"

    report = rec.ensure_filesystems()

    assert report.fatal is None
    assert host.mutations("mkfs.ext4") == [["mkfs.ext4", "-F", "/dev/vg_datos/lv_workareas"]]
    assert not host.mutations("mkswap")


def test_wrong_signature_is_reformatted(host):
    rec = _reconciler(host)
    rec.run()
    host.fs["/dev/mapper/vg_datos-lv_workareas"] = "xfs"
    host.calls.clear()

    rec.ensure_filesystems()

    assert host.mutations("mkfs.ext4") == [["mkfs.ext4", "-F", "/dev/vg_datos/lv_workareas"]]


def test_mkfs_failure_reports_mkfs_kind(host):
    host.fail.add("mkswap")

    report = _reconciler(host).run()

    assert report.fatal.kind == "FAIL_MKFS"
    assert report.fatal.severity is Severity.FATAL


def test_dry_run_changes_nothing(host):
    report = _reconciler(host, dry_run=True).run()

    assert report.fatal is None
    assert not host.pvs and not host.vgs and not host.lvs
    assert host.mutations("vgcreate")


def test_claimed_devices_matches_intended_vg(host):
    mapping = devices.classify(devices.discover())
    pvs = {"/dev/sdb": "vg_datos", "/dev/sdc": "vg_other", "/dev/sde": ""}

    assert reconcile.claimed_devices(DEFAULT_TOPOLOGY, mapping, pvs) == ["/dev/sdb"]


@pytest.mark.parametrize(
    "tool, stage, blocked",
    [
        ("pvs", "pv", ("pvcreate", "vgcreate", "lvcreate", "mkfs.ext4", "mkswap")),
        ("lvs", "lv", ("lvcreate", "mkfs.ext4", "mkswap")),
        ("blkid", "filesystem", ("mkfs.ext4", "mkswap")),
    ],
)
def test_failed_query_is_fatal_not_absent(host, tool, stage, blocked):
    _reconciler(host).run()
    host.calls.clear()
    host.fail.add(tool)

    report = _reconciler(host).run()

    assert report.fatal is not None
    assert report.fatal.stage == stage
    assert report.fatal.entity == f"query {tool}"
    assert report.fatal.kind == "FAIL_LVM"
    assert host.mutations(*blocked) == []


def test_claimed_devices_raises_when_pvs_fails(host):
    mapping = devices.classify(devices.discover())
    host.fail.add("pvs")

    with pytest.raises(QueryError) as exc:
        reconcile.claimed_devices(DEFAULT_TOPOLOGY, mapping)

    assert exc.value.result_kind == "FAIL_LVM"


def test_unparseable_report_is_a_query_error(host, monkeypatch):
    monkeypatch.setattr(reconcile.lvm, "run", lambda cmd, check=True, **_: SimpleNamespace(rc=0, out="{oops", err=""))

    with pytest.raises(QueryError):
        reconcile.lvm.query_vgs()
