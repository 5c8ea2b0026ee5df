"""Object key derivation for uploads.

Keys are ``<directory>/<millis>-<name>`` (or ``<directory>/<name>-<millis>``).
The millisecond timestamp only lowers the odds of two uploads landing on the
same key; nothing else reads it back.
"""
import time
from typing import Literal

KeyPosition = Literal["prefix", "suffix"]


def current_millis() -> int:
    return int(time.time() * 1000)


def normalize_directory(directory: str | None) -> str:
    """Trim surrounding whitespace and end a non-empty directory with exactly one ``/``."""
    directory = (directory or "").strip()
    if not directory:
        return ""
    return directory.rstrip("/") + "/"


def build_key(
    directory: str | None,
    file_name: str,
    now_ms: int,
    position: KeyPosition = "prefix",
) -> str:
    prefix = normalize_directory(directory)
    if position == "suffix":
        return f"{prefix}{file_name}-{now_ms}"
    return f"{prefix}{now_ms}-{file_name}"
