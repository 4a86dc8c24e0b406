"""Error taxonomy for repository guard runs.

Failures never cross a repository or backup-set boundary: the engine catches
``RepositoryFailure`` per repository and ``ArtifactFailure`` per backup set.
Only ``FatalConfigurationError`` aborts a whole run.
"""


class GuardError(Exception):
    """Base class for all repository guard errors."""


class FatalConfigurationError(GuardError, ValueError):
    """Configuration makes the whole run impossible."""


class RepositoryFailure(GuardError):
    """A git operation failed for one repository."""

    def __init__(self, message: str, repository: str = None):
        super().__init__(message)
        self.repository = repository


class NotARepositoryError(RepositoryFailure):
    """The given path is not a git working tree."""


class GitCommandError(RepositoryFailure):
    """A git command exited with a non-zero status."""

    def __init__(self, args, returncode: int, stderr: str = "", repository: str = None):
        command = " ".join(args)
        detail = stderr.strip().splitlines()[-1] if stderr and stderr.strip() else "no output"
        super().__init__(f"git {command} failed ({returncode}): {detail}", repository)
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr


class GitTimeoutError(RepositoryFailure):
    """A git command did not finish within its timeout."""


class DegradedOperation(GuardError):
    """The operation could only complete in a reduced form (e.g. push skipped)."""


class ArtifactFailure(GuardError):
    """Archive creation, verification or restore failed for one backup set."""


class BackupEncryptionError(ArtifactFailure):
    """Encryption or decryption of an archive failed."""


class ArchiveKeyError(ArtifactFailure):
    """The archive key file exists but cannot be used."""
