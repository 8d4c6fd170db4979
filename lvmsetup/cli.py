"""CLI entrypoint: sequence the storage stages and report one result."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Any, Dict, Mapping, Optional

from . import lvm
from .devices import classify, discover
from .errors import LvmSetupError
from .executil import append_jsonl, error, info, resolve_log_path, trace
from .fstab import ensure_persisted
from .model import DEFAULT_TOPOLOGY, BlockDevice, DeviceRole, Flags, StageReport, Topology
from .mounts import mount_all
from .paths import artifacts_dir, fstab_path, logs_dir
from .reconcile import Reconciler, claimed_devices
from .safety import guard_not_live_disk
from .sanitize import sanitize
from .tools import ensure_tools
from .verification import verify_chain

RESULT_CODES: Dict[str, int] = {
    "LVM_DONE_OK": 0,
    "PLAN_OK": 0,
    "DRYRUN_OK": 0,
    "FAIL_CLASSIFY": 2,
    "FAIL_LIVE_DISK_GUARD": 2,
    "FAIL_TOOLS": 3,
    "FAIL_LVM": 4,
    "FAIL_MKFS": 5,
    "FAIL_MOUNT": 6,
    "FAIL_FSTAB": 7,
    "FAIL_VERIFY": 8,
    "FAIL_GENERIC": 9,
    "FAIL_UNHANDLED": 12,
}

RESULT_LOG_PATH: Optional[str] = None
CLI_START_MONO = time.perf_counter()
JSON_OUTPUT_ENABLED = True


def _result_log_path() -> str:
    global RESULT_LOG_PATH
    if RESULT_LOG_PATH:
        return RESULT_LOG_PATH
    path = resolve_log_path()
    if not path:
        path = os.path.join(logs_dir(), "lvmsetup.jsonl")
    RESULT_LOG_PATH = path
    return path


def _emit_result(
        kind: str,
        extra: Optional[Dict[str, Any]] = None,
        exit_code: Optional[int] = None,
) -> None:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    payload.setdefault("log_path", _result_log_path())
    total_ms = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    payload.setdefault("timing_total_ms", total_ms)
    append_jsonl(_result_log_path(), payload)
    if JSON_OUTPUT_ENABLED:
        print(json.dumps(payload, sort_keys=True, separators=(",", ":")))
    why_text = str(payload.get("why") or "")
    print(
        f"result={kind} why={why_text} timing_total_ms={total_ms} log_path={payload['log_path']}",
        file=sys.stderr,
    )
    code = RESULT_CODES.get(kind, 1) if exit_code is None else exit_code
    raise SystemExit(code)


def _log_path(name: str) -> str:
    base = artifacts_dir()
    try:
        os.makedirs(base, exist_ok=True)
    except OSError:
        pass
    ts = time.strftime("%Y%m%d_%H%M%S")
    return os.path.join(base, f"{name}_{ts}.json")


def _write_json_artifact(name: str, data: Dict[str, Any]) -> str:
    path = _log_path(name)
    payload = dict(data)
    payload["artifact"] = path
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
    except OSError:
        pass
    return path


def _classification_payload(classification: Mapping[DeviceRole, BlockDevice]) -> Dict[str, Any]:
    return {
        role.name: {"path": dev.path, "size_gb": dev.size_gb}
        for role, dev in classification.items()
    }


def _planned_steps(topology: Topology, classification: Mapping[DeviceRole, BlockDevice]) -> list[str]:
    steps = [f"sanitize({classification[role].path})" for role in topology.roles()]
    steps += [f"pvcreate({classification[role].path})" for role in topology.roles()]
    for vg in topology.volume_groups:
        members = " ".join(classification[role].path for role in vg.members)
        steps.append(f"vgcreate({vg.name}: {members})")
    for lv in topology.logical_volumes:
        steps.append(f"lvcreate({lv.vg}/{lv.name}, {lv.size or '100%FREE'})")
        steps.append(f"{'mkswap' if lv.is_swap else 'mkfs.' + lv.fstype}({lv.lv_path})")
    for mount in topology.mounts:
        if mount.lv.is_swap:
            steps.append(f"swapon({mount.lv.lv_path})")
        else:
            steps.append(f"mount({mount.lv.lv_path}, {mount.target})")
    steps += [f"fstab += {mount.fstab_line()}" for mount in topology.mounts]
    steps.append("verify_chain()")
    return steps


def _check_stage(report: StageReport, payload: Dict[str, Any]) -> None:
    """Record ``report``; the first fatal outcome ends the run here."""

    payload.setdefault("stages", []).append(report.as_dict())
    trace("cli.stage", stage=report.stage, created=report.created, warnings=len(report.warnings))
    fatal = report.fatal
    if fatal is None:
        info(f"stage {report.stage} complete ({report.created} created, {len(report.warnings)} warnings)")
        return
    error(fatal.message)
    extra = dict(payload)
    extra.update({"why": fatal.message, "entity": fatal.entity, "stage": report.stage})
    _emit_result(fatal.kind or "FAIL_GENERIC", extra=extra)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="configure-lvm",
        description="Provision vg_datos/vg_temp and their logical volumes on a fresh VM.",
    )
    parser.add_argument("--plan", action="store_true", help="classify disks and print the planned steps")
    parser.add_argument("--dry-run", action="store_true", help="query live state but do not change it")
    parser.add_argument("--install-tools", action="store_true", help="install gdisk/lvm2/parted first")
    parser.add_argument("--fstab", default=None, help="persisted mount table (default: /etc/fstab)")
    parser.add_argument("--settle-seconds", type=float, default=2.0)
    parser.add_argument("--json", dest="json", action="store_true", default=True)
    parser.add_argument("--no-json", dest="json", action="store_false")
    return parser


def run_pipeline(
        flags: Flags,
        topology: Topology = DEFAULT_TOPOLOGY,
        fstab: Optional[str] = None,
        settle_seconds: float = 2.0,
) -> None:
    """Run every stage in order; always ends via :func:`_emit_result`."""

    fstab = fstab or fstab_path()
    payload: Dict[str, Any] = {"fstab": fstab, "dry_run": flags.dry_run}
    try:
        info("identifying disks by size")
        classification = classify(discover(), topology.roles())
        payload["classification"] = _classification_payload(classification)
        for role, dev in classification.items():
            info(f"identified {role.name}: {dev.path}")
        guard_not_live_disk(classification)

        if flags.plan:
            payload["steps"] = _planned_steps(topology, classification)
            payload["artifact"] = _write_json_artifact("plan", payload)
            _emit_result("PLAN_OK", payload)

        payload["tools"] = ensure_tools(install=flags.install_tools, dry_run=flags.dry_run)
        claimed = claimed_devices(topology, classification)
    except LvmSetupError as exc:
        error(str(exc))
        extra = dict(payload)
        extra["why"] = str(exc)
        missing = getattr(exc, "missing", None)
        if missing:
            extra["missing"] = [getattr(m, "name", m) for m in missing]
        found = getattr(exc, "found", None)
        if found:
            extra["classification"] = _classification_payload(found)
        _emit_result(exc.result_kind, extra=extra)

    targets = [classification[role] for role in topology.roles()]
    info("unmounting and wiping disks before handing them to LVM")
    _check_stage(sanitize(targets, claimed=claimed, settle_seconds=settle_seconds, dry_run=flags.dry_run), payload)

    info("reconciling physical volumes, volume groups and logical volumes")
    _check_stage(Reconciler(topology, classification, dry_run=flags.dry_run).run(), payload)

    info("mounting logical volumes and activating swap")
    _check_stage(mount_all(topology, dry_run=flags.dry_run), payload)

    info(f"persisting mounts in {fstab}")
    _check_stage(ensure_persisted(topology.mounts, fstab, dry_run=flags.dry_run), payload)

    if flags.dry_run:
        payload["artifact"] = _write_json_artifact("dryrun", payload)
        _emit_result("DRYRUN_OK", payload)

    info("verifying the storage chain")
    _check_stage(verify_chain(topology, classification, fstab), payload)
    payload["lvm"] = lvm.summary()
    payload["created"] = sum(stage["created"] for stage in payload["stages"])
    payload["artifact"] = _write_json_artifact("full", payload)
    info("LVM configuration complete")
    _emit_result("LVM_DONE_OK", payload)


def _main_impl(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    global JSON_OUTPUT_ENABLED
    JSON_OUTPUT_ENABLED = bool(args.json)
    flags = Flags(
        plan=args.plan,
        dry_run=args.dry_run,
        install_tools=args.install_tools,
        json=args.json,
    )
    trace("cli.args", plan=flags.plan, dry_run=flags.dry_run, install_tools=flags.install_tools,
          fstab=args.fstab, settle_seconds=args.settle_seconds)
    run_pipeline(flags, fstab=args.fstab, settle_seconds=args.settle_seconds)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        _emit_result("FAIL_UNHANDLED", extra={"why": str(exc), "error": type(exc).__name__})
    return 0


if __name__ == "__main__":
    sys.exit(main())
