"""Tests for the git command wrapper."""

import hashlib
import subprocess

import pytest

from repo_guard.core import git as git_module
from repo_guard.core.errors import FatalConfigurationError, GitCommandError, GitTimeoutError
from repo_guard.core.git import GitRunner
from repo_guard.utils.checksums import file_sha256


class TestGitRunner:
    def test_output_and_lines(self, repo_factory):
        repo = repo_factory("plain")
        runner = GitRunner()
        assert runner.output(str(repo), "rev-parse", "--abbrev-ref", "HEAD") == "main"
        assert runner.lines(str(repo), "ls-files") == ["README.md"]

    def test_failure_raises_with_context(self, repo_factory):
        repo = repo_factory("failing")
        with pytest.raises(GitCommandError) as excinfo:
            GitRunner().run(str(repo), "checkout", "no-such-branch")
        assert excinfo.value.repository == str(repo)
        assert excinfo.value.returncode != 0
        assert "git checkout no-such-branch failed" in str(excinfo.value)

    def test_unchecked_failure_returns_process(self, repo_factory):
        repo = repo_factory("unchecked")
        assert GitRunner().run(str(repo), "checkout", "nope", check=False).returncode != 0
        assert not GitRunner().succeeds(str(repo), "rev-parse", "--verify", "-q", "refs/heads/nope")

    def test_toplevel(self, repo_factory, tmp_path):
        repo = repo_factory("top")
        (repo / "sub").mkdir()
        runner = GitRunner()
        assert runner.toplevel(str(repo / "sub")) == str(repo)
        outside = tmp_path / "outside"
        outside.mkdir()
        assert runner.toplevel(str(outside)) is None

    def test_missing_binary_is_fatal(self, tmp_path):
        runner = GitRunner(git_binary="git-binary-that-does-not-exist")
        assert not runner.is_available()
        with pytest.raises(FatalConfigurationError):
            runner.run(str(tmp_path), "status")

    def test_timeout(self, tmp_path, monkeypatch):
        def slow(*args, **kwargs):
            raise subprocess.TimeoutExpired(args[0], kwargs.get("timeout"))

        monkeypatch.setattr(git_module.subprocess, "run", slow)
        with pytest.raises(GitTimeoutError, match="timed out after 5s"):
            GitRunner(network_timeout_seconds=5).run(str(tmp_path), "push", network=True)

    def test_network_calls_never_prompt(self, tmp_path, monkeypatch):
        seen = {}

        def capture(command, **kwargs):
            seen.update(kwargs)
            return subprocess.CompletedProcess(command, 0, "", "")

        monkeypatch.setattr(git_module.subprocess, "run", capture)
        GitRunner().run(str(tmp_path), "push", network=True)
        assert seen["env"]["GIT_TERMINAL_PROMPT"] == "0"
        assert seen["timeout"] == 60

    def test_configured_identity(self, tmp_path, monkeypatch):
        commands = []

        def capture(command, **kwargs):
            commands.append(command)
            return subprocess.CompletedProcess(command, 0, "", "")

        monkeypatch.setattr(git_module.subprocess, "run", capture)
        GitRunner(author_name="Guard Bot", author_email="guard@example.com").run(str(tmp_path), "commit")
        assert commands[0] == ["git", "-c", "user.name=Guard Bot", "-c", "user.email=guard@example.com", "commit"]


def test_file_sha256(tmp_path):
    path = tmp_path / "data.bin"
    data = b"abc" * 500000
    path.write_bytes(data)
    assert file_sha256(path) == hashlib.sha256(data).hexdigest()
