"""
Download Manager: in-memory registry of streaming HTTP downloads.

Each task walks its ordered mirror list until one URL succeeds.  Bytes
are streamed straight to ``{target_dir}/{filename}`` in 8 KiB chunks;
the registry lock is taken once per chunk to publish progress and to
observe cancellation.

State machine::

    pending -> downloading -> downloaded -> installing -> installed
                    |                              |
                    +--> failed / cancelled <------+

Terminal states (installed, failed, cancelled) are final.  Starting a
download under an existing id replaces the previous task: installers
use this to run a second phase under the same id (task rearm).
"""

from __future__ import annotations

import http.client
import logging
import shutil
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from pathlib import Path

from envis import __version__
from envis.core.errors import (
    DownloadCancelledError,
    DownloadFailureError,
    EnvisError,
    NotFoundError,
)
from envis.core.models.download import DownloadStatus, DownloadTask

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300
CHUNK_SIZE = 8192
PROGRESS_LOG_INTERVAL = 1.0

SuccessCallback = Callable[[DownloadTask], None]


class _Cancelled(Exception):
    pass


def _fmt_size(n: int | float) -> str:
    """Format byte count to human-readable string."""
    for unit in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} TB"


class DownloadManager:
    """Process-wide download registry keyed by task id."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, chunk_size: int = CHUNK_SIZE) -> None:
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._tasks: dict[str, DownloadTask] = {}
        self._lock = threading.Lock()

    # ── Public API ──────────────────────────────────────────────

    def start_download(
        self,
        task_id: str,
        urls: list[str],
        target_dir: Path,
        filename: str,
        overwrite: bool = True,
        on_success: SuccessCallback | None = None,
    ) -> DownloadTask:
        """Download ``filename`` into ``target_dir`` from the first working URL.

        Blocks until the download (and ``on_success``, if given) finishes.

        Returns:
            Snapshot of the task in its final state.

        Raises:
            DownloadFailureError: Every URL failed.
            DownloadCancelledError: ``cancel()`` was called meanwhile.
        """
        if not urls:
            raise EnvisError("Download URL list is empty")

        target_dir.mkdir(parents=True, exist_ok=True)
        target_path = target_dir / filename
        if overwrite and target_path.exists():
            if target_path.is_dir():
                shutil.rmtree(target_path)
            else:
                target_path.unlink()
            logger.debug("Removed existing %s", target_path)

        task = DownloadTask(
            id=task_id,
            urls=list(urls),
            target_path=target_path,
            filename=filename,
            success_callback=on_success,
        )
        with self._lock:
            if task_id in self._tasks:
                logger.debug("Replacing download task %s", task_id)
            self._tasks[task_id] = task

        self._download_with_fallback(task)
        return self.get_task(task_id) or task.snapshot()

    def cancel(self, task_id: str) -> bool:
        """Mark the task cancelled and remove its partial file.

        A task that already finished (installed, failed or cancelled) is
        left alone, file included.

        Returns:
            True if this call cancelled the task.

        Raises:
            NotFoundError: No task with this id.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError(f"No download task '{task_id}'")
            if task.status.is_terminal:
                logger.info("Download %s is already %s, not cancelling", task_id, task.status.value)
                return False
            task.status = DownloadStatus.CANCELLED
            target = task.target_path
        logger.info("Cancelled download %s", task_id)
        _remove_partial(target)
        return True

    def get_task(self, task_id: str) -> DownloadTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.snapshot() if task else None

    def all_tasks(self) -> list[DownloadTask]:
        with self._lock:
            return [t.snapshot() for t in self._tasks.values()]

    def update_task_status(
        self,
        task_id: str,
        status: DownloadStatus,
        error_message: str | None = None,
        *,
        force: bool = False,
    ) -> bool:
        """Move a task to ``status``.

        Leaving a terminal state is refused unless ``force`` is set (used
        when an installer settles a rearmed task).

        Returns:
            True if the status was changed.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError(f"No download task '{task_id}'")
            if task.status.is_terminal and task.status != status and not force:
                logger.warning(
                    "Ignoring %s -> %s for task %s",
                    task.status.value, status.value, task_id,
                )
                return False
            task.status = status
            if error_message is not None:
                task.error_message = error_message
            return True

    def settle(self, task_id: str, status: DownloadStatus, message: str | None = None) -> bool:
        """Finish a task at ``status`` unless it was cancelled.

        The cancelled check and the write share one lock acquisition, so a
        concurrent ``cancel()`` always wins.  Other states may be left even
        when terminal: a rearmed task whose follow-up download failed still
        settles at ``installed``.

        Returns:
            True if the task now has ``status``.

        Raises:
            NotFoundError: No task with this id.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError(f"No download task '{task_id}'")
            if task.status == DownloadStatus.CANCELLED:
                logger.info("Task %s was cancelled, not settling at %s", task_id, status.value)
                return False
            task.status = status
            if message is not None:
                task.error_message = message
            return True

    # ── Fallback loop ───────────────────────────────────────────

    def _download_with_fallback(self, task: DownloadTask) -> None:
        while True:
            with self._lock:
                if task.status == DownloadStatus.CANCELLED:
                    raise DownloadCancelledError(f"Download {task.id} was cancelled")
                url = task.url

            try:
                self._download_one(task, url)
            except _Cancelled:
                _remove_partial(task.target_path)
                raise DownloadCancelledError(f"Download {task.id} was cancelled") from None
            except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
                with self._lock:
                    if task.status == DownloadStatus.CANCELLED:
                        cancelled = True
                    else:
                        cancelled = False
                        has_next = task.switch_to_next_url()
                        if not has_next:
                            task.status = DownloadStatus.FAILED
                            task.error_message = (
                                f"All download URLs failed: {task.failed_urls}. Last error: {e}"
                            )
                    failed = list(task.failed_urls)
                    next_url = task.url
                if cancelled:
                    _remove_partial(task.target_path)
                    raise DownloadCancelledError(f"Download {task.id} was cancelled") from None
                if has_next:
                    logger.warning("Download from %s failed (%s), trying %s", url, e, next_url)
                    continue
                task.target_path.unlink(missing_ok=True)
                logger.error("Download %s failed on every mirror", task.id)
                raise DownloadFailureError(task.error_message or str(e), failed) from e

            with self._lock:
                if task.status == DownloadStatus.CANCELLED:
                    callback = None
                else:
                    task.status = DownloadStatus.DOWNLOADED
                    task.progress = 100.0
                    callback = task.success_callback
                snapshot = task.snapshot()
            if snapshot.status == DownloadStatus.CANCELLED:
                _remove_partial(task.target_path)
                raise DownloadCancelledError(f"Download {task.id} was cancelled")

            if callback is not None:
                self._run_callback(task.id, callback, snapshot)
            return

    def _run_callback(self, task_id: str, callback: SuccessCallback, snapshot: DownloadTask) -> None:
        try:
            callback(snapshot)
        except Exception as e:
            logger.error("Post-download step for %s failed: %s", task_id, e)
            with self._lock:
                task = self._tasks.get(task_id)
                if task is not None and not task.status.is_terminal:
                    task.status = DownloadStatus.FAILED
                    task.error_message = f"Install failed: {e}"
            raise

    def _download_one(self, task: DownloadTask, url: str) -> None:
        logger.info("Downloading %s -> %s", url, task.target_path)
        req = urllib.request.Request(url, headers={"User-Agent": f"envis/{__version__}"})

        with urllib.request.urlopen(req, timeout=self._timeout) as resp:
            total = int(resp.headers.get("Content-Length") or 0)
            with self._lock:
                if task.status == DownloadStatus.CANCELLED:
                    raise _Cancelled()
                task.status = DownloadStatus.DOWNLOADING
                task.total_size = total
                task.downloaded_size = 0
            logger.info("Size: %s", _fmt_size(total) if total else "unknown")

            downloaded = 0
            last_log = time.monotonic()
            with open(task.target_path, "wb") as fh:
                while True:
                    chunk = resp.read(self._chunk_size)
                    if not chunk:
                        break
                    with self._lock:
                        if task.status == DownloadStatus.CANCELLED:
                            raise _Cancelled()
                    fh.write(chunk)
                    downloaded += len(chunk)
                    with self._lock:
                        task.downloaded_size = downloaded
                        if total > 0:
                            task.progress = downloaded * 100.0 / total
                        progress = task.progress

                    now = time.monotonic()
                    if now - last_log >= PROGRESS_LOG_INTERVAL:
                        logger.info(
                            "Download progress [%s]: %.1f%% (%s / %s)",
                            task.id, progress, _fmt_size(downloaded), _fmt_size(total),
                        )
                        last_log = now

        logger.info("Downloaded %s (%s)", task.target_path, _fmt_size(downloaded))


def _remove_partial(target: Path) -> None:
    """Delete a partial download and its parent directory if now empty."""
    try:
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove partial download %s: %s", target, e)
        return
    parent = target.parent
    try:
        if parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            logger.debug("Removed empty directory %s", parent)
    except OSError as e:
        logger.debug("Left directory %s in place: %s", parent, e)
