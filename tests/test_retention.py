"""Tests for branch keep-count and tiered archive retention."""

import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest

from repo_guard.core.models import BackupBranch, RetentionPolicy
from repo_guard.core.retention import RetentionPruner


NOW = datetime(2025, 6, 1, 12, 0, 0)


@dataclass(frozen=True)
class Artifact:
    name: str
    created_at: datetime


@dataclass(frozen=True)
class RatedArtifact:
    name: str
    created_at: datetime
    valid: bool


def aged(days, hours=0):
    return Artifact(f"set-{days}d{hours}h", NOW - timedelta(days=days, hours=hours))


def branch(day):
    return BackupBranch.parse(f"backup/202501{day:02d}_120000_main")


class TestBackupBranchNames:
    def test_parse_round_trip(self):
        name = BackupBranch.make_name("main", datetime(2025, 1, 2, 3, 4, 5))
        parsed = BackupBranch.parse(name)
        assert name == "backup/20250102_030405_main"
        assert parsed.source_branch == "main"
        assert parsed.created_at == datetime(2025, 1, 2, 3, 4, 5)

    def test_source_branch_may_contain_slashes(self):
        assert BackupBranch.parse("backup/20250102_030405_feature/x").source_branch == "feature/x"

    @pytest.mark.parametrize("name", ["backup/manual", "backup/2025_main", "backup/20251399_000000_main"])
    def test_unparseable_names_have_no_timestamp(self, name):
        assert BackupBranch.parse(name).created_at is None


class TestSelectExcessBranches:
    def test_oldest_are_selected_first(self):
        pruner = RetentionPruner(RetentionPolicy(keep_count=2))
        excess = pruner.select_excess_branches([branch(3), branch(1), branch(4), branch(2)])
        assert [b.name for b in excess] == [branch(1).name, branch(2).name]

    def test_result_does_not_depend_on_listing_order(self):
        pruner = RetentionPruner(RetentionPolicy(keep_count=3))
        branches = [branch(d) for d in range(1, 6)]
        for ordering in itertools.permutations(branches):
            excess = pruner.select_excess_branches(list(ordering))
            kept = set(branches) - set(excess)
            assert len(kept) == 3
            assert {b.created_at.day for b in kept} == {3, 4, 5}

    def test_unparseable_branches_are_never_selected(self):
        pruner = RetentionPruner(RetentionPolicy(keep_count=0))
        manual = BackupBranch.parse("backup/manual")
        excess = pruner.select_excess_branches([manual, branch(1)])
        assert excess == [branch(1)]

    def test_within_keep_count(self):
        pruner = RetentionPruner(RetentionPolicy(keep_count=10))
        assert pruner.select_excess_branches([branch(1), branch(2)]) == []


class TestPlanArchives:
    @pytest.fixture
    def pruner(self):
        return RetentionPruner(RetentionPolicy(daily=7, weekly=4, monthly=12))

    def test_daily_window_keeps_everything(self, pruner):
        artifacts = [aged(d) for d in range(0, 8)]
        keep, delete = pruner.plan_archives(artifacts, NOW)
        assert delete == []
        assert len(keep) == 8

    def test_weekly_window_keeps_whole_weeks(self, pruner):
        keep, delete = pruner.plan_archives([aged(10), aged(14), aged(21), aged(25), aged(28)], NOW)
        assert {a.name for a in keep} == {aged(14).name, aged(21).name, aged(28).name}
        assert {a.name for a in delete} == {aged(10).name, aged(25).name}

    def test_monthly_window_keeps_newest_per_bucket(self, pruner):
        keep, delete = pruner.plan_archives([aged(50), aged(40), aged(45), aged(70)], NOW)
        assert {a.name for a in keep} == {aged(40).name, aged(70).name}
        assert {a.name for a in delete} == {aged(45).name, aged(50).name}

    def test_invalid_archive_never_displaces_valid_one(self, pruner):
        good = RatedArtifact("good", NOW - timedelta(days=40), valid=True)
        broken = RatedArtifact("broken", NOW - timedelta(days=35), valid=False)

        keep, delete = pruner.plan_archives([broken, good], NOW)

        assert keep == [good]
        assert delete == [broken]

    def test_invalid_archive_kept_when_alone_in_bucket(self, pruner):
        broken = RatedArtifact("broken", NOW - timedelta(days=35), valid=False)
        keep, delete = pruner.plan_archives([broken], NOW)
        assert keep == [broken]
        assert delete == []

    def test_beyond_monthly_window_is_deleted(self, pruner):
        keep, delete = pruner.plan_archives([aged(361), aged(400)], NOW)
        assert keep == []
        assert len(delete) == 2

    def test_future_timestamps_are_kept(self, pruner):
        keep, delete = pruner.plan_archives([Artifact("future", NOW + timedelta(days=3))], NOW)
        assert [a.name for a in keep] == ["future"]

    def test_plan_is_idempotent(self, pruner):
        artifacts = [aged(d, h) for d in range(0, 400, 3) for h in (0, 5)]
        keep, _ = pruner.plan_archives(artifacts, NOW)
        keep_again, delete_again = pruner.plan_archives(keep, NOW)
        assert delete_again == []
        assert keep_again == keep

    def test_lists_are_oldest_first(self, pruner):
        keep, delete = pruner.plan_archives([aged(1), aged(5), aged(3), aged(9), aged(11)], NOW)
        assert keep == sorted(keep, key=lambda a: a.created_at)
        assert delete == sorted(delete, key=lambda a: a.created_at)


def test_age_in_days():
    assert RetentionPruner.age_in_days(NOW - timedelta(days=2, hours=23), NOW) == 2
    assert RetentionPruner.age_in_days(NOW + timedelta(days=1), NOW) == 0
