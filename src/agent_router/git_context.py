"""Git context detection.

Only the current branch is read from git. Files for routing always come from
the caller's associated_files, never from the working tree.
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 5


def _run_git(args: list, cwd: Optional[Path]) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"git {' '.join(args)} timed out")
        return None
    except (FileNotFoundError, NotADirectoryError):
        logger.debug("git not available")
        return None

    if result.returncode != 0:
        return None
    return result.stdout.strip()


def detect_branch(cwd: Optional[Path] = None) -> Optional[str]:
    """Detect the current git branch.

    Args:
        cwd: Directory to inspect (default: process working directory)

    Returns:
        Branch name, or None outside a repository, without git, or on a
        detached HEAD.
    """
    if _run_git(["rev-parse", "--is-inside-work-tree"], cwd) != "true":
        return None
    return _run_git(["branch", "--show-current"], cwd) or None
