"""Block device discovery and capacity-based role classification."""
from __future__ import annotations

import json
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from .errors import ClassificationError, DiscoveryError
from .executil import run, trace, udev_settle
from .model import BlockDevice, DeviceRole

LSBLK_COLUMNS = "NAME,PATH,SIZE,TYPE,MOUNTPOINT"


def _node_path(node: dict) -> str:
    path = node.get("path") or node.get("name") or ""
    if path and not path.startswith("/"):
        path = f"/dev/{path}"
    return path


def _to_device(node: dict) -> BlockDevice:
    try:
        size = int(node.get("size") or 0)
    except (TypeError, ValueError):
        size = 0
    children = [_to_device(child) for child in (node.get("children") or [])]
    return BlockDevice(
        path=_node_path(node),
        size_bytes=size,
        kind=node.get("type") or "",
        name=node.get("name") or "",
        mountpoint=node.get("mountpoint"),
        partitions=[c for c in children if c.kind == "part"],
    )


def parse_lsblk(text: str) -> list[BlockDevice]:
    try:
        payload = json.loads(text or "{}")
    except json.JSONDecodeError as exc:
        raise DiscoveryError(f"failed to parse lsblk output: {exc}") from exc
    return [_to_device(node) for node in (payload.get("blockdevices") or [])]


def discover() -> list[BlockDevice]:
    """Return every top-level block device in lsblk enumeration order.

    Read-only, so it also runs during ``--dry-run``.
    """

    udev_settle()
    result = run(["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS], check=True)
    devices = parse_lsblk(result.out)
    trace(
        "devices.discover",
        devices=[{"path": d.path, "size_gb": d.size_gb, "type": d.kind} for d in devices],
    )
    return devices


def describe(dev: str) -> BlockDevice | None:
    result = run(["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS, dev], check=False)
    if result.rc != 0:
        return None
    for node in parse_lsblk(result.out):
        if node.path == dev or node.name == dev.rsplit("/", 1)[-1]:
            return node
    return None


def classify(
        devices: Iterable[BlockDevice],
        roles: Sequence[DeviceRole] = tuple(DeviceRole),
) -> Mapping[DeviceRole, BlockDevice]:
    """Bind each role to exactly one whole disk of the matching capacity.

    Devices are visited once in the given order; a device fills the first
    still-unfilled role expecting its size, so ties go to the first device
    seen. Every missing role is reported together.
    """

    mapping: dict[DeviceRole, BlockDevice] = {}
    for dev in devices:
        if dev.kind != "disk":
            continue
        for role in roles:
            if role in mapping or role.size_gb != dev.size_gb:
                continue
            mapping[role] = dev
            trace("devices.classify.bind", role=role.name, device=dev.path, size_gb=dev.size_gb)
            break
        else:
            trace("devices.classify.unused", device=dev.path, size_gb=dev.size_gb)

    missing = [role for role in roles if role not in mapping]
    if missing:
        raise ClassificationError(missing, found=mapping)
    return MappingProxyType(dict((role, mapping[role]) for role in roles))
