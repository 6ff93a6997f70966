"""Error hierarchy of the downloader."""
from typing import Dict, Optional


class DownloaderError(Exception):
    """Base exception for all downloader errors."""


class ConfigError(DownloaderError):
    """Storage root is missing or unwritable, or configuration is invalid."""


class MetadataError(DownloaderError):
    """Listing the repository tree failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            message = f"{message} (status code: {status_code}, body: {body})"
        super().__init__(message)


class TransportError(DownloaderError):
    """HEAD or GET for a single file failed."""

    def __init__(self, path: str, message: str, status_code: Optional[int] = None) -> None:
        self.path = path
        self.status_code = status_code
        super().__init__(f"{path}: {message}")


class SizeMismatchError(DownloaderError):
    """Received byte count differs from the declared size."""

    def __init__(self, path: str, expected: int, actual: int) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"{path}: download size mismatch: got {actual} bytes, expected {expected} bytes")


class PublishError(DownloaderError):
    """Linking or copying a blob into the snapshot tree failed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class DownloadError(DownloaderError):
    """One or more files of a snapshot failed.

    failures maps each failed logical path to its exception. The snapshot
    directory may still contain every file that succeeded.
    """

    def __init__(self, failures: Dict[str, Exception], snapshot_dir: Optional[str] = None) -> None:
        self.failures = failures
        self.snapshot_dir = snapshot_dir
        first_path = next(iter(failures))
        super().__init__(
            f"{len(failures)} file(s) failed, first: error processing {first_path}: {failures[first_path]}"
        )
