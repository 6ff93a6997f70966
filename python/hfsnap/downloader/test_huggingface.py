import asyncio
import os
import tempfile
import unittest

import httpx

from hfsnap.downloader.entity import DownloaderConfig
from hfsnap.downloader.errors import (
    ConfigError,
    DownloadError,
    MetadataError,
    PublishError,
    SizeMismatchError,
    TransportError,
)
from hfsnap.downloader.huggingface import HuggingFaceDownloader

ENDPOINT = "https://hub.test"
COMMIT = "4f2a9c0b1d3e5f60718293a4b5c6d7e8f9012345"


class FakeHub:
    """In-memory stand-in for the tree and resolve endpoints of one repository."""

    def __init__(self, files, commit=COMMIT, repo_id="org/tiny-model"):
        # files: logical path -> (content hash, body)
        self.files = files
        self.commit = commit
        self.repo_id = repo_id
        self.calls = []
        self.head_sizes = {}
        self.failing = set()
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay = 0

    def tree(self):
        entries = [{"type": "directory", "path": "onnx", "oid": "d1r", "size": 0}]
        for path, (content_hash, body) in self.files.items():
            entries.append({"type": "file", "path": path, "oid": content_hash, "size": len(body)})
        return entries

    async def handler(self, request):
        path = request.url.path
        self.calls.append((request.method, path))

        if path.startswith("/api/models/"):
            if not path.startswith(f"/api/models/{self.repo_id}/tree/"):
                return httpx.Response(404, text="Repository not found")
            headers = {"X-Repo-Commit": self.commit} if self.commit else {}
            return httpx.Response(200, json=self.tree(), headers=headers)

        prefix = f"/{self.repo_id}/resolve/"
        if not path.startswith(prefix):
            return httpx.Response(404)
        filename = path[len(prefix):].split("/", 1)[1]
        if filename not in self.files:
            return httpx.Response(404)
        body = self.files[filename][1]

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if filename in self.failing:
            return httpx.Response(500)
        if request.method == "HEAD":
            size = self.head_sizes.get(filename, len(body))
            return httpx.Response(200, headers={"Content-Length": str(size), "X-Repo-Commit": self.commit or ""})
        return httpx.Response(200, content=body)

    def count(self, method, filename=None):
        """Number of file requests (resolve endpoint only, tree listings excluded)."""
        return len([c for c in self.calls
                    if c[0] == method and "/resolve/" in c[1]
                    and (filename is None or c[1].endswith("/" + filename))])


def snapshot_listing(snapshot_dir):
    listing = {}
    for root, _, files in os.walk(snapshot_dir):
        for name in files:
            full = os.path.join(root, name)
            target = os.readlink(full) if os.path.islink(full) else None
            with open(full, "rb") as f:
                listing[os.path.relpath(full, snapshot_dir)] = (target, f.read())
    return listing


class TestHuggingFaceDownloader(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = os.path.join(tmp.name, "store")
        self.hub = FakeHub({
            "config.json": ("abc123", b"x" * 42),
            "README.md": ("def456", b"y" * 10),
        })

    def _downloader(self, **config):
        config.setdefault("custom_path", self.root)
        return HuggingFaceDownloader(DownloaderConfig(endpoint=ENDPOINT, **config),
                                     transport=httpx.MockTransport(self.hub.handler))

    async def test_end_to_end_tiny_model(self):
        snapshot_dir = await self._downloader().adownload("org/tiny-model", "main")

        self.assertEqual(snapshot_dir, os.path.join(self.root, "snapshots", COMMIT))
        blob = os.path.join(self.root, "blobs", "abc123")
        self.assertEqual(os.path.getsize(blob), 42)

        pointer = os.path.join(snapshot_dir, "config.json")
        self.assertTrue(os.path.islink(pointer))
        self.assertEqual(os.path.realpath(pointer), os.path.realpath(blob))

        self.assertFalse(os.path.lexists(os.path.join(snapshot_dir, "README.md")))
        self.assertFalse(os.path.exists(os.path.join(self.root, "blobs", "def456")))
        self.assertEqual(self.hub.count("HEAD", "README.md"), 0)
        self.assertEqual(self.hub.count("GET", "README.md"), 0)

        with open(os.path.join(self.root, "refs", "main")) as f:
            self.assertEqual(f.read(), COMMIT)

    async def test_second_download_is_network_free_and_identical(self):
        downloader = self._downloader()
        snapshot_dir = await downloader.adownload("org/tiny-model", "main")
        before = snapshot_listing(snapshot_dir)
        gets = self.hub.count("GET", "config.json")

        await downloader.adownload("org/tiny-model", "main")

        self.assertEqual(self.hub.count("GET", "config.json"), gets)
        self.assertEqual(self.hub.count("HEAD"), 1)
        self.assertEqual(snapshot_listing(snapshot_dir), before)

    async def test_custom_ignore_patterns_override_defaults(self):
        snapshot_dir = await self._downloader().adownload("org/tiny-model", "main",
                                                          ignore_patterns=[r"\.json$"])

        self.assertEqual(os.listdir(snapshot_dir), ["README.md"])
        self.assertEqual(self.hub.count("GET", "config.json"), 0)

    async def test_invalid_ignore_pattern_raises_before_network(self):
        with self.assertRaises(ConfigError):
            await self._downloader().adownload("org/tiny-model", "main", ignore_patterns=["(unclosed"])

        self.assertEqual(self.hub.calls, [])

    async def test_shared_content_hash_is_fetched_once(self):
        self.hub.files = {
            "tokenizer.json": ("f00d", b"same bytes"),
            "onnx/tokenizer.json": ("f00d", b"same bytes"),
        }

        snapshot_dir = await self._downloader().adownload("org/tiny-model", "main")

        self.assertEqual(self.hub.count("GET"), 1)
        self.assertEqual(os.listdir(os.path.join(self.root, "blobs")), ["f00d"])
        for rel in ("tokenizer.json", os.path.join("onnx", "tokenizer.json")):
            with open(os.path.join(snapshot_dir, rel), "rb") as f:
                self.assertEqual(f.read(), b"same bytes")

    async def test_size_mismatch_fails_without_promoting_blob(self):
        self.hub.head_sizes["config.json"] = 100

        with self.assertRaises(DownloadError) as ctx:
            await self._downloader().adownload("org/tiny-model", "main")

        error = ctx.exception
        self.assertIsInstance(error.failures["config.json"], SizeMismatchError)
        self.assertEqual(os.listdir(os.path.join(self.root, "blobs")), [])
        self.assertFalse(os.path.lexists(os.path.join(error.snapshot_dir, "config.json")))

    async def test_invalid_repository_creates_no_layout(self):
        with self.assertRaises(MetadataError):
            await self._downloader().adownload("invalid/repo", "main")

        self.assertFalse(os.path.exists(self.root))

    async def test_failures_are_collected_per_path(self):
        self.hub.files = {
            "config.json": ("abc123", b"x" * 42),
            "model.bin": ("b1n", b"z" * 64),
            "vocab.json": ("v0c", b"w" * 8),
        }
        self.hub.failing = {"model.bin", "vocab.json"}

        with self.assertRaises(DownloadError) as ctx:
            await self._downloader().adownload("org/tiny-model", "main")

        failures = ctx.exception.failures
        self.assertEqual(sorted(failures), ["model.bin", "vocab.json"])
        self.assertTrue(all(isinstance(e, TransportError) for e in failures.values()))
        self.assertIn("2 file(s) failed", str(ctx.exception))
        # the healthy file still made it into the snapshot
        with open(os.path.join(ctx.exception.snapshot_dir, "config.json"), "rb") as f:
            self.assertEqual(f.read(), b"x" * 42)

    async def test_stale_pointer_is_refetched(self):
        downloader = self._downloader()
        snapshot_dir = await downloader.adownload("org/tiny-model", "main")
        os.remove(os.path.join(self.root, "blobs", "abc123"))

        with self.assertLogs("hfsnap.downloader.linker", level="WARNING"):
            await downloader.adownload("org/tiny-model", "main")

        self.assertEqual(self.hub.count("GET", "config.json"), 2)
        with open(os.path.join(snapshot_dir, "config.json"), "rb") as f:
            self.assertEqual(f.read(), b"x" * 42)

    async def test_concurrency_is_bounded(self):
        self.hub.files = {f"shard-{i}.bin": (f"h{i}", bytes([i]) * 16) for i in range(8)}
        self.hub.delay = 0.01

        await self._downloader(max_workers=2).adownload("org/tiny-model", "main")

        self.assertLessEqual(self.hub.max_in_flight, 2)
        self.assertEqual(len(os.listdir(os.path.join(self.root, "blobs"))), 8)

    async def test_invalid_max_workers(self):
        with self.assertRaises(ConfigError):
            await self._downloader(max_workers=0).adownload("org/tiny-model", "main")

    async def test_path_escaping_snapshot_is_rejected(self):
        self.hub.files = {
            "config.json": ("abc123", b"x" * 42),
            "../../../escaped.bin": ("h1", b"bad"),
        }

        with self.assertRaises(DownloadError) as ctx:
            await self._downloader().adownload("org/tiny-model", "main")

        self.assertEqual(list(ctx.exception.failures), ["../../../escaped.bin"])
        self.assertIsInstance(ctx.exception.failures["../../../escaped.bin"], PublishError)
        self.assertFalse(os.path.lexists(os.path.join(os.path.dirname(self.root), "escaped.bin")))
        self.assertFalse(os.path.exists(os.path.join(self.root, "blobs", "h1")))
        self.assertEqual(self.hub.count("GET", "escaped.bin"), 0)

    async def test_hash_with_path_separator_is_rejected(self):
        self.hub.files = {"config.json": ("../../abc123", b"x" * 42)}

        with self.assertRaises(MetadataError):
            await self._downloader().adownload("org/tiny-model", "main")

        self.assertFalse(os.path.exists(self.root))

    async def test_stale_copy_is_republished(self):
        downloader = self._downloader(use_symlinks=False)
        snapshot_dir = await downloader.adownload("org/tiny-model", "main")
        pointer = os.path.join(snapshot_dir, "config.json")
        with open(pointer, "wb") as f:
            f.write(b"tampered")
        os.remove(os.path.join(self.root, "blobs", "abc123"))

        with self.assertLogs("hfsnap.downloader.linker", level="WARNING"):
            await downloader.adownload("org/tiny-model", "main")

        with open(pointer, "rb") as f:
            self.assertEqual(f.read(), b"x" * 42)

    async def test_commit_revision_writes_no_ref(self):
        snapshot_dir = await self._downloader().adownload("org/tiny-model", COMMIT)

        self.assertEqual(os.listdir(os.path.join(self.root, "refs")), [])
        self.assertTrue(os.path.exists(os.path.join(snapshot_dir, "config.json")))

    async def test_default_cache_folder(self):
        cache_dir = os.path.dirname(self.root)
        snapshot_dir = await self._downloader(custom_path=None, cache_dir=cache_dir).adownload(
            "org/tiny-model", "main")

        self.assertEqual(snapshot_dir,
                         os.path.join(cache_dir, "models--org--tiny-model", "snapshots", COMMIT))

    async def test_copies_when_symlinks_disabled(self):
        snapshot_dir = await self._downloader(use_symlinks=False).adownload("org/tiny-model", "main")

        pointer = os.path.join(snapshot_dir, "config.json")
        self.assertFalse(os.path.islink(pointer))
        self.assertEqual(os.path.getsize(pointer), 42)


class TestSyncDownload(unittest.TestCase):
    def test_download_runs_event_loop(self):
        with tempfile.TemporaryDirectory() as tmp:
            hub = FakeHub({"config.json": ("abc123", b"{}")})
            downloader = HuggingFaceDownloader(
                DownloaderConfig(endpoint=ENDPOINT, custom_path=tmp),
                transport=httpx.MockTransport(hub.handler))

            snapshot_dir = downloader.download("org/tiny-model")

            self.assertEqual(snapshot_dir, os.path.join(tmp, "snapshots", COMMIT))
            self.assertTrue(os.path.exists(os.path.join(snapshot_dir, "config.json")))


if __name__ == "__main__":
    unittest.main()
