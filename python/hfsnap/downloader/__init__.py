"""hfsnap.downloader

Cache-aware parallel downloader for Hugging Face repositories. Files land in
the hub cache layout (blobs/refs/snapshots) so other hub tooling can use them.
Run as module: python -m hfsnap.downloader <repo_id> [revision] [path]
"""

__version__ = "0.1.0"

from .entity import DownloaderConfig, ManifestEntry
from .errors import (
    ConfigError,
    DownloadError,
    DownloaderError,
    MetadataError,
    PublishError,
    SizeMismatchError,
    TransportError,
)
from .huggingface import HuggingFaceDownloader
from .utils import build_config_from_env

__all__ = [
    "DownloaderConfig",
    "ManifestEntry",
    "HuggingFaceDownloader",
    "build_config_from_env",
    "DownloaderError",
    "ConfigError",
    "MetadataError",
    "TransportError",
    "SizeMismatchError",
    "PublishError",
    "DownloadError",
]
