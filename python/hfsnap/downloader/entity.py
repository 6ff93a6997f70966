from dataclasses import dataclass, field
from typing import Optional, List

DEFAULT_ENDPOINT = "https://huggingface.co"
DEFAULT_IGNORE_PATTERNS = [r"\.md$", r"\.txt$"]
DOWNLOAD_CHUNK_SIZE = 8192


@dataclass
class DownloaderConfig:
    """Explicit configuration consumed by the retrieval engine.

    Nothing inside the engine reads the environment. Use
    utils.build_config_from_env() at the entry point to fill this from
    HF_* / HFSNAP_* variables.
    """
    endpoint: str = DEFAULT_ENDPOINT
    # root holding one folder per repository (models--owner--name)
    cache_dir: Optional[str] = None
    # when set, used directly as the storage folder of the repository
    custom_path: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)
    ignore_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    repo_type: str = "model"
    timeout: Optional[float] = 30.0
    max_workers: int = 8
    chunk_size: int = DOWNLOAD_CHUNK_SIZE
    # seconds between two progress lines for the same file
    progress_interval: float = 1.0
    use_symlinks: bool = True


@dataclass(frozen=True)
class ManifestEntry:
    """One remote file of a repository at a resolved revision."""
    # logical path inside the repository, always "/" separated
    path: str
    # blob pool key: LFS sha256 for LFS files, git blob oid otherwise
    content_hash: str
    size: int = 0
    lfs: bool = False


@dataclass
class FileMetadata:
    """Result of the HEAD probe on a resolve URL."""
    commit_hash: Optional[str]
    etag: Optional[str]
    location: str
    size: int = 0
