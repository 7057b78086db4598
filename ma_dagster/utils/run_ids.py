from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


def generate_run_timestamp(now: datetime | None = None) -> str:
    """Return YYYYMMDDHHMMSSUUUU, UUUU being ten-thousandths of a second."""

    now = now or datetime.now(UTC)
    return now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 100:04d}"


@dataclass(frozen=True)
class GitProvenance:
    """Code version a scoring run was produced with; None outside a checkout."""

    commit: str | None = None
    clean: bool | None = None


def _git(args: list[str], cwd: str | None) -> str | None:
    try:
        completed = subprocess.run(
            ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None
    return completed.stdout.strip()


def get_git_provenance(cwd: str | None = None) -> GitProvenance:
    """Commit hash plus whether uncommitted changes could have shaped the scores.

    Untracked files count as dirty (`git status --porcelain`).
    """

    commit = _git(["rev-parse", "HEAD"], cwd)
    if not commit:
        return GitProvenance()

    status = _git(["status", "--porcelain"], cwd)
    return GitProvenance(commit=commit, clean=None if status is None else status == "")


def json_dumps(obj: Any) -> str:
    """Compact JSON for the registry and score detail columns; dates become ISO strings."""
    return json.dumps(obj, separators=(",", ":"), default=str)
