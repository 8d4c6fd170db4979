"""Exception types raised by lvmsetup stages."""

from __future__ import annotations


class LvmSetupError(RuntimeError):
    """Base class; ``result_kind`` maps onto the CLI result codes."""

    result_kind = "FAIL_GENERIC"


class ClassificationError(LvmSetupError):
    result_kind = "FAIL_CLASSIFY"

    def __init__(self, missing, found=None) -> None:
        self.missing = list(missing)
        self.found = dict(found or {})
        names = ", ".join(role.name for role in self.missing)
        super().__init__(f"no device found for required roles: {names}")


class DiscoveryError(LvmSetupError):
    result_kind = "FAIL_CLASSIFY"


class LiveDiskError(LvmSetupError):
    result_kind = "FAIL_LIVE_DISK_GUARD"


class ToolMissingError(LvmSetupError):
    result_kind = "FAIL_TOOLS"

    def __init__(self, missing) -> None:
        self.missing = list(missing)
        super().__init__("required tools not found: " + ", ".join(self.missing))


class QueryError(LvmSetupError):
    """A state query failed, so presence or absence is unknown."""

    result_kind = "FAIL_LVM"

    def __init__(self, tool: str, detail: str) -> None:
        self.tool = tool
        super().__init__(f"{tool} query failed: {detail}")
