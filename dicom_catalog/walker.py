"""
walker.py - Stack-based recursive file listing.

Collects every regular file beneath a root directory without recursion,
so very deep folder trees cannot exhaust the interpreter's call stack.
Directories that cannot be listed (permissions, files removed mid-walk)
are skipped and the walk carries on.
"""

import logging
import os

logger = logging.getLogger(__name__)


def list_files(root: str) -> list[str]:
    """
    Return the path of every regular file reachable beneath *root*.

    Entries inside each directory are visited in name order so that two
    walks of an unchanged tree produce the same list.  Symlinked
    directories are not followed.

    Parameters
    ----------
    root : str
        Directory to walk.  A missing or unreadable root yields ``[]``.

    Returns
    -------
    list[str]
        Absolute-or-relative paths, joined onto *root* as given.
    """
    out: list[str] = []
    stack: list[str] = [root]

    while stack:
        directory = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            logger.debug("Skipping unreadable directory %s: %s", directory, exc)
            continue

        subdirs = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(entry.path)
                elif entry.is_file():
                    out.append(entry.path)
            except OSError as exc:
                logger.debug("Skipping entry %s: %s", entry.path, exc)

        # Reversed so the first subdirectory is popped first.
        stack.extend(reversed(subdirs))

    return out
