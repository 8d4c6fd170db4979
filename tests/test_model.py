from lvmsetup.model import (
    DEFAULT_TOPOLOGY,
    LV_DOCKER,
    LV_SWAP,
    DeviceRole,
    EntityState,
    LogicalVolumeSpec,
    Outcome,
    Severity,
    StageReport,
)


def test_topology_roles_follow_vg_order():
    assert DEFAULT_TOPOLOGY.roles() == [
        DeviceRole.SIZE_5G,
        DeviceRole.SIZE_3G_PRIMARY,
        DeviceRole.SIZE_2G,
        DeviceRole.SIZE_1G,
    ]
    assert DEFAULT_TOPOLOGY.vg_of(DeviceRole.SIZE_2G).name == "vg_temp"


def test_fstab_lines_match_expected_format():
    lines = [m.fstab_line() for m in DEFAULT_TOPOLOGY.mounts]
    assert lines == [
        "/dev/mapper/vg_datos-lv_docker /var/lib/docker ext4 defaults 0 2",
        "/dev/mapper/vg_datos-lv_workareas /work ext4 defaults 0 2",
        "/dev/mapper/vg_temp-lv_swap none swap sw 0 0",
    ]
    assert DEFAULT_TOPOLOGY.mount_for(LV_SWAP).target == "none"


def test_mapper_path_escapes_dashes():
    lv = LogicalVolumeSpec("lv-data", "vg-main", None)
    assert lv.mapper_path == "/dev/mapper/vg--main-lv--data"
    assert lv.lv_path == "/dev/vg-main/lv-data"
    assert LV_DOCKER.mapper_path == "/dev/mapper/vg_datos-lv_docker"


def test_stage_report_aggregates():
    report = StageReport("x")
    report.add(Outcome("x", "a", EntityState.PRESENT, created=True))
    report.add(Outcome("x", "b", EntityState.PRESENT, Severity.WARNING, "meh"))
    assert report.fatal is None
    assert report.created == 1
    assert len(report.warnings) == 1

    failed = report.add(Outcome("x", "c", EntityState.FAILED, Severity.FATAL, "no", kind="FAIL_LVM"))
    assert report.fatal is failed
    assert report.as_dict()["outcomes"][2]["kind"] == "FAIL_LVM"
