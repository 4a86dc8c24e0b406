"""Thin wrapper around the git command line.

Every call names the repository explicitly (``cwd=``) so that repositories can
be processed in parallel without touching the process working directory.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import FatalConfigurationError, GitCommandError, GitTimeoutError


class GitRunner:
    """Runs git commands against explicit repository paths."""

    def __init__(self, timeout_seconds: int = 120, network_timeout_seconds: int = 60,
                 git_binary: str = "git", author_name: Optional[str] = None,
                 author_email: Optional[str] = None):
        """Initialize git runner.

        Args:
            timeout_seconds: Timeout for local git commands.
            network_timeout_seconds: Timeout for commands that reach a remote.
            git_binary: Name or path of the git executable.
            author_name: Optional identity used for automated commits.
            author_email: Optional identity used for automated commits.
        """
        self.timeout_seconds = timeout_seconds
        self.network_timeout_seconds = network_timeout_seconds
        self.git_binary = git_binary
        self.author_name = author_name
        self.author_email = author_email
        self.logger = logging.getLogger(__name__)

    def is_available(self) -> bool:
        return shutil.which(self.git_binary) is not None

    def run(self, repo: str, *args: str, check: bool = True, network: bool = False,
            timeout: Optional[int] = None) -> subprocess.CompletedProcess:
        """Run a git command inside ``repo``.

        Args:
            repo: Repository working tree.
            *args: Git arguments.
            check: Raise GitCommandError on a non-zero exit status.
            network: Use the network timeout and disable credential prompts.
            timeout: Explicit timeout overriding the defaults.

        Returns:
            Completed process with text stdout/stderr.

        Raises:
            GitCommandError: If the command fails and ``check`` is set.
            GitTimeoutError: If the command times out.
            FatalConfigurationError: If git is not installed.
        """
        if timeout is None:
            timeout = self.network_timeout_seconds if network else self.timeout_seconds

        env = dict(os.environ)
        if network:
            # Never block an unattended run on a credential prompt
            env["GIT_TERMINAL_PROMPT"] = "0"
            env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")

        command = [self.git_binary] + self._identity_args() + list(args)
        self.logger.debug(f"[{Path(repo).name}] git {' '.join(args)}")

        try:
            proc = subprocess.run(
                command,
                cwd=str(repo),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise GitTimeoutError(f"git {' '.join(args)} timed out after {timeout}s", str(repo))
        except FileNotFoundError as e:
            raise FatalConfigurationError(f"git executable not available: {e}")

        if check and proc.returncode != 0:
            raise GitCommandError(args, proc.returncode, proc.stderr, str(repo))
        return proc

    def output(self, repo: str, *args: str, **kwargs) -> str:
        """Run a git command and return its stripped stdout."""
        return self.run(repo, *args, **kwargs).stdout.strip()

    def lines(self, repo: str, *args: str, **kwargs) -> List[str]:
        """Run a git command and return its non-empty output lines."""
        return [line for line in self.run(repo, *args, **kwargs).stdout.splitlines() if line.strip()]

    def succeeds(self, repo: str, *args: str) -> bool:
        """Return True if the command exits with status zero."""
        return self.run(repo, *args, check=False).returncode == 0

    def toplevel(self, path: str) -> Optional[str]:
        """Return the working tree root containing ``path``, or None."""
        proc = self.run(path, "rev-parse", "--show-toplevel", check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def _identity_args(self) -> List[str]:
        args = []
        if self.author_name:
            args += ["-c", f"user.name={self.author_name}"]
        if self.author_email:
            args += ["-c", f"user.email={self.author_email}"]
        return args
