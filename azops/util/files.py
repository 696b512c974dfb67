"""
File utility functions.
"""

import shutil
from pathlib import Path


def ensure_dir(path: str | Path) -> Path:
    """Ensure directory exists, creating if necessary."""
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_text(path: str | Path, content: str) -> None:
    """Write text to file, creating parent directories if needed."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content)


def write_bytes(path: str | Path, content: bytes) -> None:
    """Write bytes to file, creating parent directories if needed."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(content)


def remove_path(path: str | Path) -> bool:
    """
    Remove a file or directory tree.

    Returns:
        True if something was removed, False if the path did not exist
    """
    p = Path(path)
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
        return True
    if p.exists() or p.is_symlink():
        p.unlink()
        return True
    return False


def safe_filename(name: str) -> str:
    """Replace characters that are awkward in file names."""
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name)
