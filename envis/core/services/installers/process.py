"""
Pid-file process control for daemon-type services.

Daemons run in the foreground as detached children; envis records the
child pid in ``{service_data_folder}/{name}.pid`` and uses it for
``status`` and ``stop``.  A pid file whose process is gone is stale and
is removed on the next status probe.
"""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from envis.core.errors import EnvisError
from envis.core.models.service import ServiceStatus
from envis.core.services.subprocess_runner import run_command, spawn_detached

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 10.0
_POLL_INTERVAL = 0.2


def read_pid(pid_file: Path) -> int | None:
    try:
        text = pid_file.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return int(text) if text.isdigit() else None


def pid_alive(pid: int) -> bool:
    """True if a process with ``pid`` exists."""
    if pid <= 0:
        return False
    if os.name == "nt":
        result = run_command(["tasklist", "/FI", f"PID eq {pid}", "/NH"], timeout=15)
        return bool(result.get("ok")) and str(pid) in result.get("stdout", "")
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists but owned by someone else
        return True
    except OSError:
        return False
    return True


def process_status(pid_file: Path) -> ServiceStatus:
    """running | stopped from the pid file; stale files are removed."""
    if not pid_file.exists():
        return ServiceStatus.STOPPED
    pid = read_pid(pid_file)
    if pid is None:
        logger.warning("Unreadable pid file %s", pid_file)
        return ServiceStatus.UNKNOWN
    if pid_alive(pid):
        return ServiceStatus.RUNNING
    logger.debug("Removing stale pid file %s (pid %d)", pid_file, pid)
    pid_file.unlink(missing_ok=True)
    return ServiceStatus.STOPPED


def start_process(
    cmd: list[str],
    pid_file: Path,
    *,
    cwd: Path | None = None,
    log_file: Path | None = None,
    env_overrides: dict[str, str] | None = None,
) -> int:
    """Spawn ``cmd`` detached and record its pid.

    Raises:
        EnvisError: Already running, or the executable could not start.
    """
    if process_status(pid_file) == ServiceStatus.RUNNING:
        raise EnvisError(f"Already running (pid {read_pid(pid_file)})")

    try:
        pid = spawn_detached(cmd, cwd=cwd, env_overrides=env_overrides, log_file=log_file)
    except OSError as e:
        raise EnvisError(f"Failed to start {Path(cmd[0]).name}: {e}") from e

    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(f"{pid}\n", encoding="utf-8")
    return pid


def stop_process(
    pid_file: Path,
    *,
    sig: int = signal.SIGTERM,
    timeout: float = STOP_TIMEOUT,
    runner: Callable[..., dict[str, Any]] = run_command,
) -> bool:
    """Signal the recorded process and wait for it to exit.

    Escalates to SIGKILL (``taskkill /F`` on Windows) after ``timeout``.

    Returns:
        True if a running process was stopped, False if none was running.
    """
    pid = read_pid(pid_file)
    if pid is None or not pid_alive(pid):
        pid_file.unlink(missing_ok=True)
        return False

    if os.name == "nt":
        result = runner(["taskkill", "/PID", str(pid), "/F"], timeout=30)
        if not result.get("ok"):
            raise EnvisError(f"taskkill failed: {result.get('stderr') or result.get('error')}")
        pid_file.unlink(missing_ok=True)
        return True

    _signal(pid, sig)
    if not wait_for_exit(pid, timeout):
        logger.warning("pid %d ignored signal %d, sending SIGKILL", pid, sig)
        _signal(pid, signal.SIGKILL)
        wait_for_exit(pid, 2.0)
    pid_file.unlink(missing_ok=True)
    logger.info("Stopped pid %d", pid)
    return True


def wait_for_exit(pid: int, timeout: float) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        _reap(pid)
        if not pid_alive(pid):
            return True
        time.sleep(_POLL_INTERVAL)
    return not pid_alive(pid)


def _signal(pid: int, sig: int) -> None:
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as e:
        raise EnvisError(f"Not allowed to signal pid {pid}: {e}") from e


def _reap(pid: int) -> None:
    # our own detached children linger as zombies until waited on
    waitpid = getattr(os, "waitpid", None)
    if waitpid is None or os.name == "nt":
        return
    try:
        waitpid(pid, os.WNOHANG)
    except OSError:
        # not our child
        pass
