"""Content-addressed blob fetching.

A blob lives at ``<root>/blobs/<content_hash>``. Missing blobs are streamed
into ``<blob>.incomplete`` and promoted with a single ``os.replace``, so the
pool never exposes a partially written blob. The temporary file is removed
on every failure path.
"""
import logging
import os
from urllib.parse import quote

import httpx

from .entity import DownloaderConfig, FileMetadata, ManifestEntry
from .errors import SizeMismatchError, TransportError
from .layout import BLOBS_DIR
from .progress import ProgressReporter
from .utils import build_headers, normalize_etag, parse_int

logger = logging.getLogger(__name__)

INCOMPLETE_SUFFIX = ".incomplete"


class BlobFetcher:
    def __init__(self, client: httpx.AsyncClient, config: DownloaderConfig):
        self.client = client
        self.config = config

    def resolve_url(self, repo_id: str, revision: str, path: str) -> str:
        prefix = "" if self.config.repo_type == "model" else f"{self.config.repo_type}s/"
        return (f"{self.config.endpoint.rstrip('/')}/{prefix}{repo_id}/resolve/"
                f"{quote(revision, safe='')}/{quote(path)}")

    @staticmethod
    def blob_path(root: str, entry: ManifestEntry) -> str:
        return os.path.join(root, BLOBS_DIR, entry.content_hash)

    async def ensure_blob(self, repo_id: str, revision: str, entry: ManifestEntry, root: str) -> str:
        """Return the blob path of entry, downloading it first if the pool lacks it."""
        blob_path = self.blob_path(root, entry)
        if os.path.exists(blob_path):
            logger.debug("Blob cache hit: %s -> %s", entry.path, entry.content_hash)
            return blob_path

        url = self.resolve_url(repo_id, revision, entry.path)
        metadata = await self.get_file_metadata(entry.path, url)
        logger.info("Downloading: %s (%.2f MB%s, etag: %s, commit: %s)", entry.path, metadata.size / 1024 / 1024,
                    ", LFS" if entry.lfs else "", metadata.etag, metadata.commit_hash)
        logger.debug("Resolved %s to %s", entry.path, metadata.location)

        expected_size = metadata.size if metadata.size > 0 else entry.size
        tmp_path = blob_path + INCOMPLETE_SUFFIX
        promoted = False
        try:
            await self._download_to(entry.path, url, tmp_path, expected_size)
            try:
                os.replace(tmp_path, blob_path)
            except OSError as e:
                raise TransportError(entry.path, f"error renaming temp file: {e}") from e
            promoted = True
        finally:
            if not promoted and os.path.exists(tmp_path):
                os.remove(tmp_path)
        return blob_path

    async def get_file_metadata(self, path: str, url: str) -> FileMetadata:
        headers = build_headers(self.config)
        headers["Accept-Encoding"] = "identity"
        try:
            response = await self.client.head(url, headers=headers, follow_redirects=True)
        except httpx.HTTPError as e:
            raise TransportError(path, f"error making HEAD request: {e}") from e

        if response.status_code != 200:
            raise TransportError(path, f"HEAD request returned status code: {response.status_code}",
                                 status_code=response.status_code)

        # hub redirects LFS files to a CDN; linked headers sit on the first hop
        chain = list(response.history) + [response]
        linked_etag = _first_header(chain, "X-Linked-Etag")
        linked_size = _first_header(chain, "X-Linked-Size")
        return FileMetadata(
            commit_hash=_first_header(chain, "X-Repo-Commit"),
            etag=normalize_etag(linked_etag or response.headers.get("ETag")),
            location=str(response.url),
            size=parse_int(linked_size) or parse_int(response.headers.get("Content-Length")),
        )

    async def _download_to(self, path: str, url: str, tmp_path: str, expected_size: int) -> None:
        headers = build_headers(self.config)
        headers["Accept-Encoding"] = "identity"

        downloaded = 0
        try:
            async with self.client.stream("GET", url, headers=headers, follow_redirects=True) as response:
                if response.status_code != 200:
                    raise TransportError(path, f"bad status: {response.status_code}",
                                         status_code=response.status_code)
                with open(tmp_path, "wb") as out, \
                        ProgressReporter(path, total=expected_size,
                                         interval=self.config.progress_interval) as progress:
                    async for chunk in response.aiter_bytes(self.config.chunk_size):
                        out.write(chunk)
                        downloaded += len(chunk)
                        progress.update(len(chunk))
        except httpx.HTTPError as e:
            raise TransportError(path, f"error downloading: {e}") from e

        if expected_size > 0 and downloaded != expected_size:
            raise SizeMismatchError(path, expected_size, downloaded)


def _first_header(responses, name):
    for r in responses:
        value = r.headers.get(name)
        if value:
            return value
    return None
