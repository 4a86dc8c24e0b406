"""Tests for checksum manifests and drift detection."""

import os
import time

import pytest

from repo_guard.core.git import GitRunner
from repo_guard.security.file_set import RepositoryFileSet
from repo_guard.security.integrity_monitor import IntegrityMonitor


@pytest.fixture
def monitor(tmp_path):
    return IntegrityMonitor(RepositoryFileSet(GitRunner()), str(tmp_path / "integrity"))


@pytest.fixture
def repo(repo_factory):
    repo = repo_factory("watched")
    (repo / "a.txt").write_text("alpha\n")
    (repo / "b.txt").write_text("beta\n")
    return repo


def touch_after_manifest(monitor, repo, path):
    later = monitor.manifest_path(str(repo)).stat().st_mtime + 10
    os.utime(path, (later, later))


class TestIntegrityMonitor:
    def test_first_run_is_baseline(self, monitor, repo):
        report = monitor.check(str(repo))
        assert report.baseline
        assert not report.has_changes
        assert report.file_count == 3

        manifest = monitor.manifest_path(str(repo)).read_text().splitlines()
        assert [line.split("  ", 1)[1] for line in manifest] == ["README.md", "a.txt", "b.txt"]
        assert all(len(line.split("  ", 1)[0]) == 64 for line in manifest)

    def test_unchanged_tree_reports_nothing(self, monitor, repo):
        monitor.check(str(repo))
        report = monitor.check(str(repo))
        assert not report.baseline
        assert not report.has_changes

    def test_one_modified_one_deleted_one_new(self, monitor, repo):
        monitor.check(str(repo))
        (repo / "a.txt").write_text("alpha changed\n")
        (repo / "b.txt").unlink()
        (repo / "c.txt").write_text("gamma\n")
        touch_after_manifest(monitor, repo, repo / "c.txt")

        report = monitor.check(str(repo))

        assert report.modified == ["a.txt"]
        assert report.deleted == ["b.txt"]
        assert report.new == ["c.txt"]

    def test_changes_are_reported_once(self, monitor, repo):
        monitor.check(str(repo))
        (repo / "a.txt").write_text("alpha changed\n")
        assert monitor.check(str(repo)).modified == ["a.txt"]
        assert not monitor.check(str(repo)).has_changes

    def test_unlisted_file_older_than_manifest_is_not_new(self, monitor, repo):
        monitor.check(str(repo))
        (repo / "old.txt").write_text("restored from elsewhere\n")
        past = time.time() - 86400
        os.utime(repo / "old.txt", (past, past))
        assert monitor.check(str(repo)).new == []

    def test_same_name_repositories_get_distinct_manifests(self, monitor, repo_factory, tmp_path):
        first = repo_factory("twin", root=tmp_path / "one")
        second = repo_factory("twin", root=tmp_path / "two")
        assert monitor.manifest_path(str(first)) != monitor.manifest_path(str(second))
        assert monitor.manifest_path(str(first)).name.startswith("twin-")

    def test_excluded_files_are_not_tracked(self, monitor, repo):
        (repo / "debug.log").write_text("noise\n")
        monitor.check(str(repo))
        assert "debug.log" not in monitor.manifest_path(str(repo)).read_text()

    def test_undecodable_manifest_starts_new_baseline(self, monitor, repo, caplog):
        monitor.check(str(repo))
        manifest = monitor.manifest_path(str(repo))
        manifest.write_bytes(b"\xff\xfe not a manifest\n")

        report = monitor.check(str(repo))

        assert report.baseline
        assert not report.has_changes
        assert "Unreadable integrity manifest" in caplog.text
        assert len(manifest.read_text().splitlines()) == 3
