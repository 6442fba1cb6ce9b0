# fleet_engine/infrastructure/git.py
"""git source fetcher."""

import logging
from pathlib import Path
from typing import Optional

from fleet_engine.core.capabilities import SourceFetcher
from fleet_engine.core.errors import CommandError, FetchError
from fleet_engine.infrastructure.shell import CommandRunner, run_command

logger = logging.getLogger(__name__)


class GitSourceFetcher(SourceFetcher):
    """
    Keeps one working tree per service and detaches it at the requested ref.

    A service without a locator builds from whatever tree is already in place.
    """

    def __init__(self, git_bin: str = "git", runner: CommandRunner = run_command, timeout: int = 600):
        self.git_bin = git_bin
        self._run = runner
        self.timeout = timeout

    def _git(self, *args: str, cwd: Optional[Path] = None, check: bool = True):
        return self._run([self.git_bin, *args], cwd=cwd, timeout=self.timeout, check=check)

    def fetch(self, locator: Optional[str], ref: str, dest: Path) -> str:
        dest = Path(dest)
        try:
            if locator is None:
                return self._existing_revision(dest)

            if not (dest / ".git").is_dir():
                dest.parent.mkdir(parents=True, exist_ok=True)
                logger.info(f"[git] cloning {locator} into {dest}")
                self._git("clone", "--no-checkout", locator, str(dest))
            else:
                self._git("remote", "set-url", "origin", locator, cwd=dest)

            self._git("fetch", "--prune", "--tags", "--force", "origin", cwd=dest)
            target = self._resolve(dest, ref)
            self._git("checkout", "--force", "--detach", target, cwd=dest)
            return self._head(dest)

        except CommandError as e:
            raise FetchError(f"fetching {locator or dest} at {ref}: {e.stderr.strip() or e}") from e

    def _resolve(self, dest: Path, ref: str) -> str:
        # Branches resolve through the remote-tracking ref; tags and shas as-is
        remote_ref = f"origin/{ref}"
        probe = self._git("rev-parse", "--verify", "--quiet", f"{remote_ref}^{{commit}}", cwd=dest, check=False)
        if probe.returncode == 0:
            return remote_ref
        return ref

    def _head(self, dest: Path) -> str:
        return self._git("rev-parse", "HEAD", cwd=dest).stdout.strip()

    def _existing_revision(self, dest: Path) -> str:
        if not dest.is_dir():
            raise FetchError(f"no source locator and no working tree at {dest}")
        if (dest / ".git").is_dir():
            return self._head(dest)
        return "local"
