"""Resolve a repository revision into a file manifest and a commit id.

The tree listing endpoint is queried recursively and followed across
paginated responses (``Link: <...>; rel="next"``). Only regular files are
kept. The commit id comes from the ``X-Repo-Commit`` header of the first
page; when the header is absent the content hash of the first listed file
is used, and for an empty listing the revision label itself.
"""
import logging
from typing import List, Tuple
from urllib.parse import quote

import httpx

from .entity import DownloaderConfig, ManifestEntry
from .errors import MetadataError
from .utils import build_headers

logger = logging.getLogger(__name__)

COMMIT_HEADER = "X-Repo-Commit"


class MetadataResolver:
    def __init__(self, client: httpx.AsyncClient, config: DownloaderConfig):
        self.client = client
        self.config = config

    def tree_url(self, repo_id: str, revision: str) -> str:
        return (f"{self.config.endpoint.rstrip('/')}/api/{self.config.repo_type}s/"
                f"{repo_id}/tree/{quote(revision, safe='')}")

    async def resolve(self, repo_id: str, revision: str) -> Tuple[List[ManifestEntry], str]:
        url = self.tree_url(repo_id, revision)
        params = {"recursive": "true"}
        headers = build_headers(self.config)

        manifest: List[ManifestEntry] = []
        commit_id = None
        first_page = True
        while url:
            try:
                response = await self.client.get(url, params=params, headers=headers)
            except httpx.HTTPError as e:
                raise MetadataError(f"error making API request to {url}: {e}") from e

            if response.status_code != 200:
                raise MetadataError("API returned an error", status_code=response.status_code,
                                    body=response.text)

            if first_page:
                commit_id = response.headers.get(COMMIT_HEADER)
                if commit_id:
                    _check_path_component(commit_id, "commit id", response)
                first_page = False

            manifest.extend(self._parse_page(response))

            # next page URL already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None

        if not commit_id:
            if manifest:
                commit_id = manifest[0].content_hash
                logger.warning("No %s header for %s@%s, using %s as commit id",
                               COMMIT_HEADER, repo_id, revision, commit_id)
            else:
                commit_id = revision

        logger.debug("Resolved %s@%s to %s (%d files)", repo_id, revision, commit_id, len(manifest))
        return manifest, commit_id

    @staticmethod
    def _parse_page(response: httpx.Response) -> List[ManifestEntry]:
        try:
            files = response.json()
        except ValueError as e:
            raise MetadataError("error decoding API response", status_code=response.status_code,
                                body=response.text) from e
        if not isinstance(files, list):
            raise MetadataError("API response is not a file list", status_code=response.status_code,
                                body=response.text)

        entries = []
        for item in files:
            if not isinstance(item, dict):
                raise MetadataError("malformed tree entry", status_code=response.status_code,
                                    body=response.text)
            if item.get("type") != "file":
                continue
            lfs = item.get("lfs")
            try:
                content_hash = lfs["oid"] if lfs else item["oid"]
                _check_path_component(content_hash, "content hash", response)
                entries.append(ManifestEntry(
                    path=item["path"],
                    content_hash=content_hash,
                    size=int(item.get("size") or 0),
                    lfs=bool(lfs),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise MetadataError(f"malformed tree entry: {item!r}", status_code=response.status_code,
                                    body=response.text) from e
        return entries


def _check_path_component(value: str, what: str, response: httpx.Response) -> None:
    # used as a single file or directory name inside the cache
    if not isinstance(value, str) or not value or "/" in value or "\\" in value or ".." in value:
        raise MetadataError(f"invalid {what}: {value!r}", status_code=response.status_code,
                            body=response.text)
