#!/usr/bin/env python3
"""Path utilities shared by the OneDrive client and the local mirror."""

import logging
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)

# Prefixes Graph puts in front of parentReference.path
_GRAPH_ROOT_PREFIXES = ('/drive/root:', '/drive/root')


class SecurityError(Exception):
    """Raised when a path or URL would escape its trusted boundary."""
    pass


def sanitize_onedrive_path(raw_path: str) -> str:
    """Turn a Graph path into a safe relative POSIX path.

    Args:
        raw_path: Path from the API, e.g. "/drive/root:/Documents/Work"

    Returns:
        Relative path such as "Documents/Work", or "" for the drive root
    """
    path = raw_path
    for prefix in _GRAPH_ROOT_PREFIXES:
        if path.startswith(prefix):
            path = path[len(prefix):]
            break

    parts = []
    for part in path.replace('\\', '/').split('/'):
        if part in ('', '.'):
            continue
        if part == '..':
            logger.warning(f"Blocked path traversal component in: {raw_path}")
            continue
        parts.append(part)

    return '/'.join(parts)


def build_item_path(item: Dict[str, Any]) -> str:
    """Build the relative path of a Graph drive item.

    Args:
        item: Item JSON with 'name' and optional 'parentReference'

    Returns:
        Relative path, e.g. "Documents/file.txt"
    """
    parent_path = (item.get('parentReference') or {}).get('path', '')
    name = item.get('name') or item.get('id', '')

    safe_parent = sanitize_onedrive_path(parent_path) if parent_path else ''
    return f"{safe_parent}/{name}" if safe_parent else name


def normalize_relative_path(relative_path: str) -> str:
    """Normalize a relative path to forward slashes without leading slash."""
    return sanitize_onedrive_path(relative_path.replace('\\', '/'))


def split_remote_path(relative_path: str) -> Tuple[str, str]:
    """Split a relative path into (parent folder, file name).

    The parent is "" for files at the drive root.
    """
    pure = PurePosixPath(normalize_relative_path(relative_path))
    parent = str(pure.parent)
    return ('' if parent == '.' else parent), pure.name


def validate_sync_path(rel_path: str, sync_dir: Path) -> Path:
    """Validate path is within sync directory and not a symlink.

    Args:
        rel_path: Relative path to validate
        sync_dir: Sync directory base path

    Returns:
        Validated absolute path

    Raises:
        SecurityError: If path validation fails
    """
    full_path = (sync_dir / rel_path).resolve()
    sync_dir_resolved = sync_dir.resolve()

    try:
        full_path.relative_to(sync_dir_resolved)
    except ValueError:
        raise SecurityError(f"Path traversal detected: {rel_path}")

    if full_path == sync_dir_resolved:
        raise SecurityError(f"Path resolves to the sync directory itself: {rel_path}")

    # resolve() follows links, so inspect the components as given
    check_path = sync_dir_resolved
    for part in Path(rel_path).parts:
        check_path = check_path / part
        if check_path.is_symlink():
            raise SecurityError(f"Symlink detected in path: {rel_path}")

    return full_path


def cleanup_empty_parent_dirs(file_path: Path, sync_dir: Path) -> None:
    """Remove empty parent directories up to sync_dir.

    Args:
        file_path: Path to the deleted file
        sync_dir: Sync directory (don't delete above this)
    """
    try:
        parent = file_path.parent
        sync_dir_resolved = sync_dir.resolve()

        while parent != sync_dir_resolved and parent.exists():
            if any(parent.iterdir()):
                break
            logger.info(f"Removing empty directory: {parent.relative_to(sync_dir_resolved)}")
            parent.rmdir()
            parent = parent.parent
    except (OSError, ValueError) as e:
        logger.debug(f"Could not clean up empty directories: {e}")
