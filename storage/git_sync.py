"""
Git backing for the certificate store.

The store directory is a clone of a shared repository: it is cloned (or
fast-forwarded) before a run and receives a single commit + push afterwards.
"""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)


class RepositorySyncError(Exception):
    """A git command against the certificate repository failed."""


class GitRepository:
    def __init__(
        self,
        path: Union[str, Path],
        url: str = "",
        user_name: str = "",
        user_email: str = "",
        timeout: int = 120,
    ) -> None:
        self.path = Path(path)
        self.url = url
        self.user_name = user_name
        self.user_email = user_email
        self.timeout = timeout

    @property
    def is_clone(self) -> bool:
        return (self.path / ".git").exists()

    def sync(self) -> None:
        """Clone the repository if needed, otherwise fast-forward it."""
        if self.is_clone:
            if self.url:
                self._git("pull", "--ff-only")
                logger.info("Pulled certificate repository at %s", self.path)
            return
        if not self.url:
            self.path.mkdir(parents=True, exist_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._run(["git", "clone", self.url, str(self.path)], cwd=self.path.parent)
        logger.info("Cloned %s into %s", self.url, self.path)

    def commit_and_push(self, message: str) -> bool:
        """Stage everything, commit, and push. Returns False when there was nothing to commit."""
        self._git("add", "-A")
        if not self._git("status", "--porcelain").strip():
            logger.info("Certificate repository has no changes to commit")
            return False

        identity: List[str] = []
        if self.user_name:
            identity += ["-c", f"user.name={self.user_name}"]
        if self.user_email:
            identity += ["-c", f"user.email={self.user_email}"]
        self._git(*identity, "commit", "-m", message)

        if self.url:
            self._git("push")
            logger.info("Pushed certificate repository: %s", message)
        return True

    def _git(self, *args: str) -> str:
        return self._run(["git", *args], cwd=self.path)

    def _run(self, cmd: List[str], cwd: Path) -> str:
        try:
            proc = subprocess.run(
                cmd, cwd=str(cwd), capture_output=True, text=True, check=True, timeout=self.timeout
            )
        except subprocess.CalledProcessError as exc:
            raise RepositorySyncError(
                f"{' '.join(cmd[:3])} failed ({exc.returncode}): {exc.stderr.strip()}"
            ) from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RepositorySyncError(f"{' '.join(cmd[:3])} failed: {exc}") from exc
        return proc.stdout
