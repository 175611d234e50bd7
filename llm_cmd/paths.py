"""Filesystem locations used by llm-cmd.

- Config: ~/.cmd/config.json
- Transcription cache: .cache/cache.json, relative to the working directory
- Scratch files for executed code blocks: per-user temp directory
"""
import os
import tempfile
from pathlib import Path

APP_NAME = "llm-cmd"

CONFIG_DIR_NAME = ".cmd"
CONFIG_FILE_NAME = "config.json"

DEFAULT_CACHE_PATH = Path(".cache") / "cache.json"


def get_config_path() -> Path:
    """Get path to the persisted config file.

    Returns:
        Path to ~/.cmd/config.json
    """
    return Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def get_temp_dir(app_name: str = APP_NAME) -> Path:
    """Get temp directory for code block files with user isolation.

    The directory is created if missing.

    Args:
        app_name: Application name used as the first path component

    Returns:
        Path to <tmp>/app_name/{uid}
    """
    base = Path(tempfile.gettempdir())
    uid = os.getuid() if hasattr(os, "getuid") else 0
    path = base / app_name / str(uid)
    path.mkdir(parents=True, exist_ok=True)
    return path
