"""Human readable lock client identities."""

from __future__ import annotations

import getpass
import os
import socket
from datetime import datetime
from typing import Mapping

MAX_CLIENT_NAME_LENGTH = 256


def _lockstep_version() -> str:
    try:
        from importlib.metadata import version as get_version

        return get_version("lockstep")
    except Exception:
        return "unknown"


def _format(value: str | None, max_len: int = 30) -> str:
    if not value:
        return ""
    return " " + value.strip()[:max_len]


def generate_client_name(
    env: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> str:
    """Generate the identity this process uses as lease holder.

    Locally this is `user@host version timestamp`. In GitLab-style CI
    (CI_PROJECT_NAME and CI_COMMIT_SHA set) it names project, branch or tag,
    short commit, environment and job URL instead, so that whoever finds a
    stale lease can tell which pipeline holds it.
    """
    env = os.environ if env is None else env
    now_str = (now or datetime.now().astimezone()).isoformat(timespec="seconds")
    version = _lockstep_version()

    if env.get("CI_PROJECT_NAME") and env.get("CI_COMMIT_SHA"):
        project_name = _format(env.get("CI_PROJECT_NAME"))
        commit_name = _format(env.get("CI_COMMIT_TAG") or env.get("CI_COMMIT_BRANCH"), 50)
        commit_hash = _format(env.get("CI_COMMIT_SHORT_SHA") or env.get("CI_COMMIT_SHA"))
        env_name = _format(env.get("CI_ENVIRONMENT_NAME"))
        job_url = _format(env.get("CI_JOB_URL"), 100)
        name = (
            f"ci{project_name}{commit_name}{commit_hash}{env_name}{job_url}"
            f" {version} {now_str}"
        )
    else:
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = "unknown"
        name = f"{user}@{socket.gethostname()} {version} {now_str}"

    return name[:MAX_CLIENT_NAME_LENGTH]
