"""
Source builds: plans of ``configure`` / ``make`` steps and their execution.

A plan is an ordered list of step dicts::

    {"label": "Configure", "command": [...], "cwd": "...",
     "timeout": 600, "env": {...}}

Steps run one after another; the first failure stops the build and is
raised as InstallFailureError with the tail of stderr attached.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from envis.core.errors import InstallFailureError
from envis.core.services.subprocess_runner import run_command

logger = logging.getLogger(__name__)

CONFIGURE_TIMEOUT = 600
COMPILE_TIMEOUT = 3600
INSTALL_TIMEOUT = 600


def cpu_count() -> int:
    return os.cpu_count() or 1


def autotools_plan(
    src_dir: Path,
    prefix: Path,
    configure_args: list[str] | None = None,
    env: dict[str, str] | None = None,
    nproc: int | None = None,
) -> list[dict[str, Any]]:
    """``./configure --prefix=…`` then ``make -jN`` then ``make install``."""
    jobs = nproc or cpu_count()
    return [
        {
            "label": "Configure",
            "command": ["./configure", f"--prefix={prefix}", *(configure_args or [])],
            "cwd": str(src_dir),
            "timeout": CONFIGURE_TIMEOUT,
            "env": env or {},
        },
        {
            "label": f"Compile ({jobs} cores)",
            "command": ["make", f"-j{jobs}"],
            "cwd": str(src_dir),
            "timeout": COMPILE_TIMEOUT,
            "env": env or {},
        },
        {
            "label": "Install (make install)",
            "command": ["make", "install"],
            "cwd": str(src_dir),
            "timeout": INSTALL_TIMEOUT,
            "env": env or {},
        },
    ]


def make_plan(
    src_dir: Path,
    prefix: Path,
    env: dict[str, str] | None = None,
    nproc: int | None = None,
) -> list[dict[str, Any]]:
    """Plain Makefile project: ``make`` then ``make install PREFIX=…``."""
    jobs = nproc or cpu_count()
    return [
        {
            "label": f"Compile ({jobs} cores)",
            "command": ["make", f"-j{jobs}"],
            "cwd": str(src_dir),
            "timeout": COMPILE_TIMEOUT,
            "env": env or {},
        },
        {
            "label": "Install (make install)",
            "command": ["make", "install", f"PREFIX={prefix}"],
            "cwd": str(src_dir),
            "timeout": INSTALL_TIMEOUT,
            "env": env or {},
        },
    ]


def execute_plan(
    steps: list[dict[str, Any]],
    runner: Callable[..., dict[str, Any]] = run_command,
) -> None:
    """Run ``steps`` in order.

    Raises:
        InstallFailureError: A step exited non-zero.
    """
    for i, step in enumerate(steps, 1):
        logger.info("[%d/%d] %s", i, len(steps), step["label"])
        result = runner(
            step["command"],
            cwd=step.get("cwd"),
            timeout=step.get("timeout"),
            env_overrides=step.get("env") or None,
        )
        if not result.get("ok"):
            raise InstallFailureError(
                f"{step['label']} failed ({result.get('error', 'unknown error')})",
                result.get("stderr", ""),
            )
