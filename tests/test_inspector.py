"""Tests for repository state snapshots."""

import dataclasses
import json
from datetime import datetime, timedelta

import pytest

from conftest import commit_file, git
from repo_guard.core.errors import NotARepositoryError
from repo_guard.core.git import GitRunner
from repo_guard.core.inspector import RepositoryStateInspector


@pytest.fixture
def inspector():
    return RepositoryStateInspector(GitRunner())


class TestInspect:
    def test_clean_repository(self, repo_factory, inspector):
        repo = repo_factory("clean")
        snapshot = inspector.inspect(str(repo), record=False)

        assert snapshot.name == "clean"
        assert snapshot.branch == "main"
        assert not snapshot.dirty
        assert (snapshot.untracked, snapshot.staged, snapshot.modified) == (0, 0, 0)
        assert snapshot.stashes == 0
        assert snapshot.last_commit.endswith("initial commit")
        assert snapshot.days_inactive == 0

    def test_counts_changes(self, repo_factory, inspector):
        repo = repo_factory("dirty")
        (repo / "README.md").write_text("changed\n")
        (repo / "new.txt").write_text("new\n")
        (repo / "staged.txt").write_text("staged\n")
        git(repo, "add", "staged.txt")

        snapshot = inspector.inspect(str(repo), record=False)

        assert snapshot.dirty
        assert snapshot.untracked == 1
        assert snapshot.staged == 1
        assert snapshot.modified == 1

    def test_no_upstream_is_distinct_from_level(self, repo_factory, remote_factory, inspector):
        local = inspector.inspect(str(repo_factory("local")), record=False)
        tracked = inspector.inspect(str(remote_factory("tracked")), record=False)

        assert local.ahead is None and local.behind is None
        assert not local.has_upstream
        assert not local.has_remote
        assert tracked.ahead == 0 and tracked.behind == 0
        assert tracked.has_remote

    def test_ahead_of_upstream(self, remote_factory, inspector):
        repo = remote_factory("ahead")
        commit_file(repo, "a.txt", "a\n")
        commit_file(repo, "b.txt", "b\n")
        assert inspector.inspect(str(repo), record=False).ahead == 2

    def test_detached_head(self, repo_factory, inspector):
        repo = repo_factory("detached")
        git(repo, "checkout", "-q", "--detach")
        snapshot = inspector.inspect(str(repo), record=False)
        assert snapshot.branch == "HEAD"
        assert snapshot.detached

    def test_inactivity_uses_reference_time(self, repo_factory, inspector):
        repo = repo_factory("old")
        snapshot = inspector.inspect(str(repo), record=False, now=datetime.now() + timedelta(days=45))
        assert snapshot.days_inactive == 45

    def test_plain_directory_is_rejected(self, tmp_path, inspector):
        with pytest.raises(NotARepositoryError):
            inspector.inspect(str(tmp_path))

    def test_subdirectory_is_rejected(self, repo_factory, inspector):
        repo = repo_factory("parent")
        (repo / "sub").mkdir()
        with pytest.raises(NotARepositoryError):
            inspector.inspect(str(repo / "sub"))

    def test_snapshot_is_immutable(self, repo_factory, inspector):
        snapshot = inspector.inspect(str(repo_factory("frozen")), record=False)
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.dirty = True


class TestStatusRecords:
    def test_record_written(self, repo_factory, tmp_path):
        status_dir = tmp_path / "status"
        inspector = RepositoryStateInspector(GitRunner(), status_dir=str(status_dir))
        inspector.inspect(str(repo_factory("recorded")))

        records = list(status_dir.glob("repo-status-recorded-*.json"))
        assert len(records) == 1
        data = json.loads(records[0].read_text())
        assert data["branch"] == "main"
        assert data["ahead"] is None

    def test_record_disabled(self, repo_factory, tmp_path):
        status_dir = tmp_path / "status"
        inspector = RepositoryStateInspector(GitRunner(), status_dir=str(status_dir))
        inspector.inspect(str(repo_factory("quiet")), record=False)
        assert not status_dir.exists()

    def test_unwritable_target_keeps_snapshot(self, repo_factory, tmp_path, caplog):
        blocker = tmp_path / "status"
        blocker.write_text("not a directory\n")
        inspector = RepositoryStateInspector(GitRunner(), status_dir=str(blocker))

        snapshot = inspector.inspect(str(repo_factory("unrecorded")))

        assert snapshot.name == "unrecorded"
        assert snapshot.branch == "main"
        assert inspector.write_status_record(snapshot) is None
        assert "Could not write status record for unrecorded" in caplog.text
        assert blocker.read_text() == "not a directory\n"


def test_repository_without_commits(projects_dir, inspector, repo_factory):
    repo_factory("placeholder")
    empty = projects_dir / "empty"
    empty.mkdir()
    git(empty, "init", "-q")
    snapshot = inspector.inspect(str(empty), record=False)
    assert snapshot.last_commit is None
    assert snapshot.to_dict()["last_commit"] == "none"
    assert snapshot.ahead is None
    assert not snapshot.dirty
