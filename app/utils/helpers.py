"""
Helper utilities for the inbox organizer.

Common functions used across domains.
"""

import fnmatch
import hashlib
import re
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import List, Optional


def hash_text(text: str) -> str:
    """Generate SHA256 hash of text."""
    return hashlib.sha256(text.encode()).hexdigest()


def record_id_for_path(path: str, salt: int = 0) -> str:
    """
    Derive a stable record identifier from a vault path.

    Args:
        path: Original vault-relative path of the file
        salt: Disambiguator used when the plain id is already taken

    Returns:
        16 character hex identifier
    """
    key = path if salt == 0 else f"{path}#{salt}"
    return hash_text(key)[:16]


def sanitize_filename(filename: str) -> str:
    """Sanitize filename by removing invalid characters."""
    # Remove invalid filename characters
    sanitized = re.sub(r'[<>:"/\\|?*#^\[\]]', '_', filename)
    sanitized = re.sub(r'\s+', ' ', sanitized)
    # Remove leading/trailing spaces and dots
    sanitized = sanitized.strip('. ')
    # Limit length
    if len(sanitized) > 200:
        sanitized = sanitized[:200].rstrip('. ')
    return sanitized


def get_file_extension(path: str) -> str:
    """Get lowercase file extension without dot."""
    return PurePosixPath(path).suffix.lstrip('.').lower()


def join_path(folder: str, name: str) -> str:
    """Join a vault folder and a file name into a vault path."""
    folder = folder.strip('/')
    return f"{folder}/{name}" if folder else name


def parent_folder(path: str) -> str:
    """Vault folder containing ``path`` ('' for the root)."""
    parent = str(PurePosixPath(path).parent)
    return '' if parent == '.' else parent


def is_in_folder(path: str, folder: str) -> bool:
    """Check whether ``path`` lives directly inside ``folder``."""
    return parent_folder(path) == folder.strip('/')


def unique_name(name: str, taken) -> str:
    """
    Return ``name`` or the first free ``stem N.ext`` variant.

    Args:
        name: Desired file name
        taken: Callable returning True when a candidate name is in use

    Returns:
        A file name for which ``taken`` is False
    """
    if not taken(name):
        return name

    stem = PurePosixPath(name).stem
    suffix = PurePosixPath(name).suffix
    counter = 1
    while taken(f"{stem} {counter}{suffix}"):
        counter += 1
    return f"{stem} {counter}{suffix}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def is_hidden(path: str) -> bool:
    """Check if path is hidden (starts with dot)."""
    return PurePosixPath(path).name.startswith('.')


def should_exclude_path(path: str, exclude_patterns: Optional[List[str]] = None) -> bool:
    """
    Check if path should be excluded based on patterns.

    Args:
        path: Path to check
        exclude_patterns: List of glob patterns matched against the file name

    Returns:
        True if should exclude, False otherwise
    """
    if exclude_patterns is None:
        exclude_patterns = [
            '.DS_Store',
            '*.tmp',
            '*.part',
        ]

    name = PurePosixPath(path).name

    for pattern in exclude_patterns:
        if fnmatch.fnmatch(name, pattern):
            return True

    return False
