"""
Log file discovery.

Finds every ``*.jsonl`` file below ``<root>/projects``.
"""

import logging
from pathlib import Path
from typing import List, Union

from claudelytics.errors import DirectoryNotFoundError

logger = logging.getLogger(__name__)

PROJECTS_DIR = "projects"
LOG_EXTENSION = ".jsonl"


def projects_dir(root: Union[str, Path]) -> Path:
    """Return ``<root>/projects``.

    Raises:
        DirectoryNotFoundError: If the root or its projects directory is missing
    """
    root = Path(root).expanduser()
    if not root.is_dir():
        raise DirectoryNotFoundError(str(root))
    projects = root / PROJECTS_DIR
    if not projects.is_dir():
        raise DirectoryNotFoundError(str(projects))
    return projects


def find_jsonl_files(root: Union[str, Path]) -> List[Path]:
    """All regular ``.jsonl`` files under ``<root>/projects``, sorted."""
    projects = projects_dir(root)
    files = sorted(
        path for path in projects.rglob(f"*{LOG_EXTENSION}")
        if path.is_file()
    )
    logger.debug("Discovered %d log files under %s", len(files), projects)
    return files
