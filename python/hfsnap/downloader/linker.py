import logging
import os
import shutil
import tempfile

from .entity import ManifestEntry
from .errors import PublishError
from .utils import ensure_dir

logger = logging.getLogger(__name__)


def is_symlink_supported() -> bool:
    """Check whether a throwaway symlink can be created in a temp dir."""
    try:
        with tempfile.TemporaryDirectory(prefix="symlink-test") as tmp:
            test_file = os.path.join(tmp, "test-file")
            with open(test_file, "w") as f:
                f.write("test")
            os.symlink(test_file, os.path.join(tmp, "test-link"))
    except (OSError, NotImplementedError):
        return False
    return True


class SnapshotLinker:
    """Publishes blobs into a snapshot tree.

    Symlink support is probed once per linker instance; one linker is
    created per download invocation.
    """

    def __init__(self, use_symlinks: bool = True):
        self.use_symlinks = use_symlinks
        self._symlinks = None

    @property
    def symlinks(self) -> bool:
        if self._symlinks is None:
            self._symlinks = self.use_symlinks and is_symlink_supported()
            if self.use_symlinks and not self._symlinks:
                logger.warning("Symbolic links are not supported here, snapshot files will be copied")
        return self._symlinks

    @staticmethod
    def pointer_path(entry: ManifestEntry, snapshot_dir: str) -> str:
        """Local path of entry inside snapshot_dir. Paths escaping the snapshot raise PublishError."""
        pointer = os.path.normpath(os.path.join(snapshot_dir, *entry.path.split("/")))
        snapshot = os.path.normpath(snapshot_dir)
        if pointer == snapshot or os.path.commonpath([snapshot, pointer]) != snapshot:
            raise PublishError(entry.path, f"path escapes the snapshot directory {snapshot_dir}")
        return pointer

    def is_published(self, entry: ManifestEntry, blob_path: str, snapshot_dir: str) -> bool:
        pointer = self.pointer_path(entry, snapshot_dir)
        if not os.path.lexists(pointer):
            return False
        if not os.path.exists(blob_path):
            logger.warning("Pointer exists but blob missing for %s, redownloading", entry.path)
            return False
        return True

    def publish(self, entry: ManifestEntry, blob_path: str, snapshot_dir: str, force: bool = False) -> bool:
        """Link (or copy) blob_path into snapshot_dir. Returns False if already published.

        force relinks an existing pointer, e.g. after its blob was fetched again.
        """
        pointer = self.pointer_path(entry, snapshot_dir)
        try:
            ensure_dir(os.path.dirname(pointer))
        except OSError as e:
            raise PublishError(entry.path, f"could not create directory: {e}") from e

        # a dangling pointer does not count as published
        if not force and os.path.exists(pointer) and os.path.exists(blob_path):
            return False

        try:
            if os.path.lexists(pointer):
                os.remove(pointer)
            if self.symlinks:
                rel_path = os.path.relpath(blob_path, os.path.dirname(pointer))
                try:
                    os.symlink(rel_path, pointer)
                    return True
                except OSError as e:
                    logger.warning("Could not create symlink for %s, copying file instead: %s", entry.path, e)
            shutil.copy2(blob_path, pointer)
        except OSError as e:
            raise PublishError(entry.path, f"error publishing: {e}") from e
        return True
