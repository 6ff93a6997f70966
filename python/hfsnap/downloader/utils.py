import os
from typing import Dict, Optional

from . import __version__
from .entity import DownloaderConfig, DEFAULT_IGNORE_PATTERNS
from .errors import ConfigError

USER_AGENT = f"hfsnap/{__version__}"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)

def env_bool(key: str, default: bool) -> bool:
    v = os.environ.get(key)
    if v is None:
        return default
    return v.lower() not in ("0", "false", "no")

def normalize_etag(etag: Optional[str]) -> Optional[str]:
    """Strip the weak-validator prefix and surrounding quotes."""
    if not etag:
        return None
    if etag.startswith("W/"):
        etag = etag[2:]
    return etag.strip('"')

def parse_int(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        return 0

def build_headers(config: DownloaderConfig) -> Dict[str, str]:
    headers = {"User-Agent": USER_AGENT}
    if config.token:
        headers["Authorization"] = f"Bearer {config.token}"
    return headers

def build_config_from_env(custom_path: Optional[str] = None) -> DownloaderConfig:
    """Build a DownloaderConfig from the environment.

    This is the only place environment variables are consulted:
    - endpoint: HF_ENDPOINT (through huggingface_hub.constants)
    - cache_dir: HFSNAP_CACHE_DIR or the hub cache (HF_HUB_CACHE / HF_HOME)
    - token: HF_TOKEN or the stored hub token (huggingface_hub.get_token)
    - ignore_patterns: HFSNAP_IGNORE_PATTERNS, comma separated
    - timeout/max_workers/use_symlinks: HFSNAP_TIMEOUT, HFSNAP_MAX_WORKERS, HFSNAP_USE_SYMLINKS
    """
    from huggingface_hub import constants, get_token

    cache_dir = os.environ.get("HFSNAP_CACHE_DIR") or constants.HF_HUB_CACHE

    ignore_patterns = list(DEFAULT_IGNORE_PATTERNS)
    raw_patterns = os.environ.get("HFSNAP_IGNORE_PATTERNS")
    if raw_patterns is not None:
        ignore_patterns = [p.strip() for p in raw_patterns.split(",") if p.strip()]

    timeout = 30.0
    if os.environ.get("HFSNAP_TIMEOUT"):
        try:
            timeout = float(os.environ.get("HFSNAP_TIMEOUT"))
        except ValueError:
            timeout = 30.0

    try:
        max_workers = int(os.environ.get("HFSNAP_MAX_WORKERS", "8"))
    except ValueError as e:
        raise ConfigError(f"HFSNAP_MAX_WORKERS must be an integer: {e}") from e

    return DownloaderConfig(
        endpoint=constants.ENDPOINT,
        cache_dir=cache_dir,
        custom_path=custom_path or None,
        token=get_token(),
        ignore_patterns=ignore_patterns,
        timeout=timeout,
        max_workers=max_workers,
        use_symlinks=env_bool("HFSNAP_USE_SYMLINKS", True),
    )
