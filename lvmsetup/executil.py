from __future__ import annotations

"""Subprocess wrapper, dry-run hook and JSONL trace log."""

import datetime as _dt
import json
import os
import shlex
import subprocess
import sys
import time
from typing import Sequence

from .paths import logs_dir


LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None
LOG_NAME = "lvmsetup.jsonl"


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return [
        logs_dir(),
        "/var/log/lvmsetup",
        "/tmp/lvmsetup-logs",
    ]


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, exist_ok=True)
            LOG_PATH = os.path.join(d_expanded, LOG_NAME)
            return LOG_PATH
        except OSError:
            continue
    LOG_PATH = None
    return None


def resolve_log_path() -> str | None:
    """Return the active log path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("LVMSETUP_LOG_LEVEL", "TRACE").upper()


def _write_jsonl(obj: dict):
    path = _ensure_logger()
    try:
        if path:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(obj) + "\n")
    except OSError:
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    _write_jsonl(rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def say(level: str, message: str, **fields):
    """Narrate a progress line on stderr and mirror it into the JSONL log."""

    print(f"[{level.upper()}] {message}", file=sys.stderr, flush=True)
    log(level, "say", message=message, **fields)


def info(message: str, **fields):
    say("INFO", message, **fields)


def warn(message: str, **fields):
    say("WARN", message, **fields)


def error(message: str, **fields):
    say("ERROR", message, **fields)


def run(
    cmd: Sequence[str],
    check: bool = True,
    dry_run: bool = False,
    env: dict | None = None,
) -> Result:
    """Run ``cmd`` to completion.

    No timeout is applied; a hung storage tool hangs the run.
    """

    trace("exec.start", cmd=list(cmd), dry_run=dry_run)
    started = time.time()
    if dry_run:
        text = "DRY-RUN: " + " ".join(shlex.quote(c) for c in cmd)
        return Result(0, text, "", 0.0)
    env2 = (env or os.environ).copy()
    env2.setdefault("LVMSETUP_LOG_LEVEL", LOG_LEVEL)
    try:
        proc = subprocess.run(list(cmd), capture_output=True, text=True, env=env2)
    except FileNotFoundError as exc:
        trace("exec.missing", cmd=list(cmd), error=str(exc))
        if check:
            raise subprocess.CalledProcessError(127, list(cmd), "", str(exc)) from exc
        return Result(127, "", str(exc), time.time() - started)
    dur = time.time() - started
    trace("exec.done", cmd=list(cmd), rc=proc.returncode, dur=dur, out=proc.stdout, err=proc.stderr)
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, cmd, proc.stdout, proc.stderr)
    return Result(proc.returncode, proc.stdout, proc.stderr, dur)


def udev_settle():
    try:
        subprocess.run(["udevadm", "settle"], check=False)
    except OSError:
        pass


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    except OSError:
        pass
