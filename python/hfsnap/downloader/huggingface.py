import asyncio
import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Pattern

import httpx

from .entity import DownloaderConfig, ManifestEntry
from .errors import ConfigError, DownloadError
from .fetcher import BlobFetcher
from .layout import CacheLayout
from .linker import SnapshotLinker
from .resolver import MetadataResolver
from .utils import build_config_from_env

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 10


def compile_patterns(patterns: Iterable[str]) -> List[Pattern]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise ConfigError(f"invalid ignore pattern {pattern!r}: {e}") from e
    return compiled


class HuggingFaceDownloader:
    """Downloader for Hugging Face repositories into a hub-style cache.

    The repository is resolved to a commit, the blobs/refs/snapshots tree is
    prepared, and every non-ignored file is fetched and published with at
    most `config.max_workers` transfers in flight. All files are attempted;
    failures are raised together as a DownloadError afterwards.
    """

    def __init__(self, config: Optional[DownloaderConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or DownloaderConfig()
        self.transport = transport

    @classmethod
    def from_env(cls, custom_path: Optional[str] = None) -> "HuggingFaceDownloader":
        return cls(build_config_from_env(custom_path))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, max_redirects=MAX_REDIRECTS,
                                 transport=self.transport)

    def download(self, repo_id: str, revision: str = "main",
                 ignore_patterns: Optional[List[str]] = None) -> str:
        """Download repo_id at revision and return its snapshot directory.

        Must not be called from a running event loop; use adownload there.
        """
        return asyncio.run(self.adownload(repo_id, revision, ignore_patterns))

    async def adownload(self, repo_id: str, revision: str = "main",
                        ignore_patterns: Optional[List[str]] = None) -> str:
        revision = revision or "main"
        if self.config.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.config.max_workers}")
        if ignore_patterns is None:
            ignore_patterns = self.config.ignore_patterns
        ignore = compile_patterns(ignore_patterns)

        layout = CacheLayout(self.config)
        root = layout.storage_folder(repo_id)

        async with self._client() as client:
            manifest, commit_id = await MetadataResolver(client, self.config).resolve(repo_id, revision)
            snapshot_dir = layout.prepare(root, commit_id, revision)

            wanted = [e for e in manifest if not any(p.search(e.path) for p in ignore)]
            logger.info("Repository %s@%s resolved to %s: %d files, %d ignored",
                        repo_id, revision, commit_id, len(wanted), len(manifest) - len(wanted))

            fetcher = BlobFetcher(client, self.config)
            linker = SnapshotLinker(self.config.use_symlinks)
            semaphore = asyncio.Semaphore(self.config.max_workers)
            inflight: Dict[str, asyncio.Future] = {}

            results = await asyncio.gather(
                *(self._process(fetcher, linker, semaphore, inflight, repo_id, revision, entry, root, snapshot_dir)
                  for entry in wanted),
                return_exceptions=True,
            )

        failures = {}
        for entry, result in zip(wanted, results):
            if isinstance(result, Exception):
                logger.error("Error processing %s: %s", entry.path, result)
                failures[entry.path] = result
            elif isinstance(result, BaseException):
                raise result
        if failures:
            raise DownloadError(failures, snapshot_dir)

        return snapshot_dir

    async def _process(self, fetcher: BlobFetcher, linker: SnapshotLinker, semaphore: asyncio.Semaphore,
                       inflight: Dict[str, asyncio.Future], repo_id: str, revision: str,
                       entry: ManifestEntry, root: str, snapshot_dir: str) -> None:
        if linker.is_published(entry, fetcher.blob_path(root, entry), snapshot_dir):
            logger.info("File already exists: %s", entry.path)
            return
        # pointer present but not published: its blob went missing
        stale = os.path.lexists(linker.pointer_path(entry, snapshot_dir))

        # entries sharing a content hash share one transfer
        task = inflight.get(entry.content_hash)
        if task is None:
            task = asyncio.ensure_future(self._fetch(fetcher, semaphore, repo_id, revision, entry, root))
            inflight[entry.content_hash] = task
        blob_path = await task

        linker.publish(entry, blob_path, snapshot_dir, force=stale)
        logger.info("Processed: %s", entry.path)

    @staticmethod
    async def _fetch(fetcher: BlobFetcher, semaphore: asyncio.Semaphore, repo_id: str, revision: str,
                     entry: ManifestEntry, root: str) -> str:
        async with semaphore:
            return await fetcher.ensure_blob(repo_id, revision, entry, root)
