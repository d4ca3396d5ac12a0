"""Check whether a git checkout of the tool is behind ``origin/master``."""

from __future__ import annotations

import logging
import subprocess

from .exceptions import AssetPipelineError

logger = logging.getLogger(__name__)

LOCAL_BRANCH = "master"
REMOTE_BRANCH = "origin/master"


def _git(directory: str, *args: str) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=directory,
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as exc:
        raise AssetPipelineError(f"git {' '.join(args)} failed: {exc.stderr.strip() or exc}") from exc
    except OSError as exc:
        raise AssetPipelineError(f"Unable to run git: {exc}") from exc
    return result.stdout.strip()


def last_commit_timestamp(directory: str, ref: str) -> int | None:
    output = _git(directory, "log", "--pretty=format:%ct", "-n", "1", ref)
    return int(output) if output else None


def check_repo_up_to_date(directory: str, local: str = LOCAL_BRANCH, remote: str = REMOTE_BRANCH) -> bool:
    """Fetch, then compare the newest commit dates of ``local`` and ``remote``.

    The checkout counts as up to date when its branch is at least as recent
    as the remote one.
    """
    _git(directory, "fetch")
    local_date = last_commit_timestamp(directory, local)
    remote_date = last_commit_timestamp(directory, remote)
    if local_date is None or remote_date is None:
        return False
    logger.debug("Local commit %s, remote commit %s", local_date, remote_date)
    return local_date >= remote_date


__all__ = ["check_repo_up_to_date", "last_commit_timestamp"]
