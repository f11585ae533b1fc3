"""Utility functions for deepshell."""

from deepshell.utils.helpers import ensure_dir, safe_filename, truncate_lines

__all__ = ["ensure_dir", "safe_filename", "truncate_lines"]
