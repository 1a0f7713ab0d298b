"""
Error taxonomy surfaced by the core to its callers.

Every manager raises one of these.  The CLI catches ``EnvisError``,
prints the message and exits 1; nothing below the CLI calls ``sys.exit``.
"""

from __future__ import annotations


class EnvisError(Exception):
    """Base class for every error the core raises on purpose."""


class NotFoundError(EnvisError):
    """Environment, service-data, installation or task id does not exist."""


class AlreadyExistsError(EnvisError):
    """Duplicate host entry, or a service-data at an existing (type, version)."""


class PermissionDeniedError(EnvisError):
    """A privileged write was refused."""


class PasswordIncorrectError(PermissionDeniedError):
    """sudo rejected the supplied admin password."""

    def __init__(self, message: str = "passwordIncorrect") -> None:
        super().__init__(message)


class NeedsAdminError(PermissionDeniedError):
    """A privileged write was requested without an admin password."""

    SENTINEL = "needAdminPasswordToModifyHosts"

    def __init__(self, message: str = SENTINEL) -> None:
        super().__init__(message)


class DownloadFailureError(EnvisError):
    """Every URL in a download task failed."""

    def __init__(self, message: str, failed_urls: list[str] | None = None) -> None:
        super().__init__(message)
        self.failed_urls = list(failed_urls or [])


class DownloadCancelledError(EnvisError):
    """The download was cancelled; no further mirrors are tried."""


class InstallFailureError(EnvisError):
    """Extraction or compilation exited non-zero."""

    _STDERR_LIMIT = 2000

    def __init__(self, message: str, stderr: str = "") -> None:
        self.stderr = stderr[-self._STDERR_LIMIT:] if stderr else ""
        if self.stderr:
            message = f"{message}: {self.stderr.strip()}"
        super().__init__(message)


class CorruptedStateError(EnvisError):
    """A managed block has unpaired markers; the file is left untouched."""


class EnvisIOError(EnvisError):
    """Underlying filesystem error."""
