"""Utility functions for deepshell."""

import re
import secrets
import string
import time
from pathlib import Path

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_ID_ALPHABET = string.ascii_lowercase + string.digits
_BASE36_DIGITS = string.digits + string.ascii_lowercase


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the user-level deepshell data directory (~/.deepshell)."""
    return ensure_dir(Path.home() / ".deepshell")


def safe_filename(name: str) -> str:
    """Convert a string to a safe filename."""
    return _UNSAFE_CHARS.sub("_", name).strip()


def to_base36(value: int) -> str:
    """Encode a non-negative integer in base 36 (lowercase)."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def timestamp36() -> str:
    """Current time in milliseconds, base 36."""
    return to_base36(int(time.time() * 1000))


def new_session_id() -> str:
    """Build a short sortable session id: `<base36 ms>-<4 random chars>`."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(4))
    return f"{timestamp36()}-{suffix}"


def truncate_lines(text: str, max_lines: int = 4) -> str:
    """Keep the first `max_lines` lines and note how many were dropped."""
    lines = (text or "").split("\n")
    if len(lines) <= max_lines:
        return text or ""
    return "\n".join(lines[:max_lines]) + f"\n... [{len(lines) - max_lines} more lines]"


def truncate_chars(text: str, max_len: int) -> str:
    """Truncate very long text, keeping the head."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + f"\n... (truncated, {len(text) - max_len} more chars)"
