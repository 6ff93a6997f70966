import logging
import os

from .entity import DownloaderConfig
from .errors import ConfigError
from .utils import ensure_dir

logger = logging.getLogger(__name__)

BLOBS_DIR = "blobs"
REFS_DIR = "refs"
SNAPSHOTS_DIR = "snapshots"


def repo_folder_name(repo_id: str, repo_type: str = "model") -> str:
    """Cache folder name used by the hub client, e.g. models--org--name."""
    parts = [f"{repo_type}s"] + repo_id.split("/")
    return "--".join(parts)


class CacheLayout:
    """Owns the blobs/refs/snapshots tree of one repository storage folder."""

    def __init__(self, config: DownloaderConfig):
        self.config = config

    def storage_folder(self, repo_id: str) -> str:
        if self.config.custom_path:
            return self.config.custom_path
        if not self.config.cache_dir:
            raise ConfigError("no storage root configured: set custom_path or cache_dir")
        return os.path.join(self.config.cache_dir, repo_folder_name(repo_id, self.config.repo_type))

    def prepare(self, root: str, commit_id: str, revision: str) -> str:
        """Create the cache tree under root and return the snapshot dir of commit_id."""
        for path in (root,
                     os.path.join(root, BLOBS_DIR),
                     os.path.join(root, REFS_DIR),
                     os.path.join(root, SNAPSHOTS_DIR)):
            try:
                ensure_dir(path)
            except OSError as e:
                raise ConfigError(f"could not create directory {path}: {e}") from e

        if revision != commit_id:
            self._write_ref(root, revision, commit_id)

        snapshot_dir = os.path.join(root, SNAPSHOTS_DIR, commit_id)
        try:
            ensure_dir(snapshot_dir)
        except OSError as e:
            raise ConfigError(f"could not create snapshot directory {snapshot_dir}: {e}") from e
        return snapshot_dir

    @staticmethod
    def _write_ref(root: str, revision: str, commit_id: str) -> None:
        # labels like refs/pr/1 become nested files
        ref_path = os.path.join(root, REFS_DIR, *revision.split("/"))
        try:
            ensure_dir(os.path.dirname(ref_path))
            with open(ref_path, "w", encoding="utf-8") as f:
                f.write(commit_id)
        except OSError as e:
            logger.warning("Could not write revision reference %s: %s", ref_path, e)
