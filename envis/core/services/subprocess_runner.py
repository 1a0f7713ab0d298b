"""
Subprocess runner: the single place where envis calls ``subprocess``.

Extraction, compilation, openssl, the hosts-file privileged copy and the
Windows registry helper all come through here.  Results follow the
``{"ok": bool, ...}`` convention; callers turn failures into the typed
error that fits their layer.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

OUTPUT_LIMIT = 2000

# sudo's stderr when the password is wrong.  Kept in one table so other
# locales can be added without touching the matching logic.
SUDO_PASSWORD_FAILURE_MARKERS: tuple[str, ...] = (
    "incorrect password",
    "sorry, try again",
    "authentication failure",
)


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return bool(geteuid) and geteuid() == 0


def is_password_failure(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in SUDO_PASSWORD_FAILURE_MARKERS)


def run_command(
    cmd: list[str],
    *,
    needs_sudo: bool = False,
    sudo_password: str = "",
    timeout: int | None = 120,
    env_overrides: dict[str, str] | None = None,
    cwd: str | Path | None = None,
    input_text: str | None = None,
) -> dict[str, Any]:
    """Run ``cmd`` and capture its output.

    Sudo rules:
        - Password piped via stdin only (``sudo -S``)
        - ``-k`` invalidates cached credentials every time
        - Password never logged and never placed in the argument list

    Args:
        cmd: Command list for ``subprocess.run()``.
        needs_sudo: Prefix with ``sudo -S -k`` unless already root.
        sudo_password: Admin password, written to stdin.
        timeout: Seconds before giving up; None waits forever.
        env_overrides: Extra environment variables.
        cwd: Working directory.
        input_text: Data for stdin (after the password, if any).

    Returns:
        ``{"ok": True, "stdout", "stderr", "elapsed_ms"}`` on success,
        ``{"ok": False, "error", ...}`` on failure.  A rejected sudo
        password adds ``"password_incorrect": True``.
    """
    # ── Sudo handling ──
    use_sudo = needs_sudo and not _is_root()
    if use_sudo:
        if not sudo_password:
            return {
                "ok": False,
                "needs_sudo": True,
                "error": "This step requires an admin password.",
            }
        cmd = ["sudo", "-S", "-k", *cmd]

    # ── Environment ──
    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    stdin_data = None
    if use_sudo:
        stdin_data = sudo_password + "\n" + (input_text or "")
    elif input_text is not None:
        stdin_data = input_text

    logger.debug("Running: %s (cwd=%s)", " ".join(str(c) for c in cmd), cwd)

    # ── Execute ──
    start = time.monotonic()
    try:
        result = subprocess.run(
            [str(c) for c in cmd],
            capture_output=True,
            text=True,
            timeout=timeout,
            input=stdin_data,
            env=env,
            cwd=str(cwd) if cwd else None,
        )
    except subprocess.TimeoutExpired:
        return {"ok": False, "error": f"Command timed out ({timeout}s)"}
    except FileNotFoundError as e:
        return {"ok": False, "missing": True, "error": f"Command not found: {e.filename or cmd[0]}"}
    except OSError as e:
        logger.exception("Subprocess error: %s", cmd[0])
        return {"ok": False, "error": str(e)}

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = result.stdout or ""
    stderr = result.stderr[-OUTPUT_LIMIT:] if result.stderr else ""

    if result.returncode == 0:
        return {
            "ok": True,
            "stdout": stdout,
            "stderr": stderr,
            "elapsed_ms": elapsed_ms,
        }

    if use_sudo and is_password_failure(stderr):
        return {
            "ok": False,
            "needs_sudo": True,
            "password_incorrect": True,
            "error": "Wrong password.",
        }

    return {
        "ok": False,
        "error": f"Command failed (exit {result.returncode})",
        "returncode": result.returncode,
        "stderr": stderr,
        "stdout": stdout[-OUTPUT_LIMIT:],
        "elapsed_ms": elapsed_ms,
    }


def spawn_detached(
    cmd: list[str],
    *,
    cwd: str | Path | None = None,
    env_overrides: dict[str, str] | None = None,
    log_file: Path | None = None,
) -> int:
    """Start a long-running daemon and return its pid without waiting.

    Output goes to ``log_file`` when given, otherwise it is discarded.

    Raises:
        OSError: The executable could not be started.
    """
    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    kwargs: dict[str, Any] = {}
    if os.name == "nt":
        kwargs["creationflags"] = getattr(subprocess, "CREATE_NO_WINDOW", 0)
    else:
        kwargs["start_new_session"] = True

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        out = open(log_file, "ab")  # noqa: SIM115 - handed to the child
    else:
        out = subprocess.DEVNULL

    try:
        proc = subprocess.Popen(
            [str(c) for c in cmd],
            cwd=str(cwd) if cwd else None,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=subprocess.STDOUT,
            **kwargs,
        )
    finally:
        if log_file is not None:
            out.close()
    logger.info("Spawned %s (pid %d)", Path(str(cmd[0])).name, proc.pid)
    return proc.pid
