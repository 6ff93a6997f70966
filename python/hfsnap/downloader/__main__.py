"""CLI entrypoint for the downloader package.
"""
import argparse
import logging
import os
import sys

from .errors import DownloaderError
from .huggingface import HuggingFaceDownloader

DEFAULT_REPO = "openai-community/gpt2"
DEFAULT_REVISION = "main"


def _build_parser():
    p = argparse.ArgumentParser(prog="hfsnap.downloader")
    # Only the model coordinates are exposed. Everything else (token, cache dir,
    # ignore patterns, concurrency) comes from the environment (HF_*, HFSNAP_*).
    p.add_argument("repo_id", nargs="?", default=DEFAULT_REPO, help="repository id, e.g. owner/name")
    p.add_argument("revision", nargs="?", default=DEFAULT_REVISION, help="branch, tag or commit")
    p.add_argument("path", nargs="?", default=None, help="custom storage folder (default: hub cache)")

    return p


def _setup_logging():
    level = os.environ.get("HFSNAP_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, stream=sys.stdout, format="[Downloader] %(message)s")


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    args = _build_parser().parse_args(argv)
    _setup_logging()

    print(f"Downloading model: {args.repo_id} (revision: {args.revision})")
    if args.path:
        print(f"Download location: {args.path}")

    try:
        downloader = HuggingFaceDownloader.from_env(custom_path=args.path)
        snapshot_dir = downloader.download(args.repo_id, args.revision)
    except DownloaderError as e:
        print(f"Error downloading model: {e}")
        return 1

    print(f"Downloaded to: {snapshot_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
