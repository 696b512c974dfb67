"""
File hashing utilities.
"""

import hashlib
from pathlib import Path


def sha256_file(path: str | Path) -> str:
    """Compute SHA256 hash of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(1024 * 1024):
            h.update(chunk)
    return h.hexdigest()


def sha256_bytes(content: bytes) -> str:
    """Compute SHA256 hash of a byte string."""
    return hashlib.sha256(content).hexdigest()
