"""
DownloadTask: in-memory record of one streaming download.

Lives only in the DownloadManager registry; never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable


class DownloadStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    INSTALLING = "installing"
    INSTALLED = "installed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            DownloadStatus.INSTALLED,
            DownloadStatus.FAILED,
            DownloadStatus.CANCELLED,
        )


@dataclass
class DownloadTask:
    """State of one download, keyed by ``id`` (``"{type}-{version}"``)."""

    id: str
    urls: list[str]
    target_path: Path
    filename: str
    current_url_index: int = 0
    total_size: int = 0
    downloaded_size: int = 0
    status: DownloadStatus = DownloadStatus.PENDING
    progress: float = 0.0
    error_message: str | None = None
    failed_urls: list[str] = field(default_factory=list)
    success_callback: Callable[[DownloadTask], None] | None = field(
        default=None, repr=False,
    )

    @property
    def url(self) -> str:
        """The URL currently being attempted ("" once the list is exhausted)."""
        if 0 <= self.current_url_index < len(self.urls):
            return self.urls[self.current_url_index]
        return ""

    def switch_to_next_url(self) -> bool:
        """Record the current URL as failed and move to the next one.

        Returns:
            True if another URL remains to be tried.
        """
        if self.url:
            self.failed_urls.append(self.url)
        self.current_url_index += 1
        self.downloaded_size = 0
        self.total_size = 0
        self.progress = 0.0
        self.status = DownloadStatus.PENDING
        return self.current_url_index < len(self.urls)

    def snapshot(self) -> DownloadTask:
        """Copy safe to hand out of the registry lock."""
        return DownloadTask(
            id=self.id,
            urls=list(self.urls),
            target_path=self.target_path,
            filename=self.filename,
            current_url_index=self.current_url_index,
            total_size=self.total_size,
            downloaded_size=self.downloaded_size,
            status=self.status,
            progress=self.progress,
            error_message=self.error_message,
            failed_urls=list(self.failed_urls),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "urls": list(self.urls),
            "currentUrlIndex": self.current_url_index,
            "url": self.url,
            "targetPath": str(self.target_path),
            "filename": self.filename,
            "totalSize": self.total_size,
            "downloadedSize": self.downloaded_size,
            "status": self.status.value,
            "progress": round(self.progress, 2),
            "errorMessage": self.error_message,
            "failedUrls": list(self.failed_urls),
        }
