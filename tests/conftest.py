"""Shared fixtures: throwaway git repositories in an isolated git environment."""

import os
import shutil
import subprocess
from pathlib import Path

import pytest


def git(repo, *args) -> str:
    """Run git in ``repo`` and return stripped stdout."""
    proc = subprocess.run(["git", *args], cwd=str(repo), check=True, capture_output=True, text=True)
    return proc.stdout.strip()


def commit_file(repo, rel_path: str, content: str = "content\n", message: str = "update") -> None:
    path = Path(repo) / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    git(repo, "add", rel_path)
    git(repo, "commit", "-q", "-m", message)


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path_factory, monkeypatch):
    """Keep the user's git config and home directory out of every test."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    return home


@pytest.fixture
def projects_dir(tmp_path):
    d = tmp_path / "projects"
    d.mkdir()
    return d


@pytest.fixture
def repo_factory(projects_dir):
    """Create a repository with one initial commit on ``branch``."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")

    def make(name: str = "repo", branch: str = "main", root: Path = None) -> Path:
        path = (root or projects_dir) / name
        path.mkdir(parents=True)
        git(path, "init", "-q")
        git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
        commit_file(path, "README.md", f"# {name}\n", "initial commit")
        return Path(os.path.realpath(path))

    return make


@pytest.fixture
def remote_factory(tmp_path, repo_factory):
    """Create a repository whose ``branch`` tracks a bare ``origin``."""

    def make(name: str = "tracked", branch: str = "main") -> Path:
        repo = repo_factory(name, branch)
        bare = tmp_path / "remotes" / f"{name}.git"
        bare.parent.mkdir(parents=True, exist_ok=True)
        git(tmp_path, "init", "-q", "--bare", str(bare))
        git(repo, "remote", "add", "origin", str(bare))
        git(repo, "push", "-q", "-u", "origin", branch)
        return repo

    return make
