"""Tests for the prune driver."""

import pytest
from botocore.exceptions import ClientError

from conftest import NOW, FakeS3, utc
from gfsprune.config import build_target
from gfsprune.prune import PruneReport, collect_partition, print_summary, run_prune

OLD_KEYS = ["db/2024-04-02.sql.gz", "db/2024-04-25.sql.gz"]
KEPT_KEYS = ["db/2024-04-21.sql.gz", "db/2024-05-10.sql.gz"]


@pytest.fixture
def target():
    return build_target(
        {
            "name": "db",
            "bucket": "bkt",
            "prefix": "db/",
            "pattern": "*.sql.gz",
            "page_size": 2,
            "retention": {"daily_days": 14, "weekly_weeks": 4, "weekly_day": "sunday"},
        }
    )


class TestCollectPartition:
    """Tests for paging through a bucket into a partition."""

    def test_partition_across_pages(self, backup_objects, target) -> None:
        s3 = FakeS3(backup_objects)
        windows, partition = collect_partition(s3, target, NOW)
        assert windows.anchor == utc(2024, 5, 12)
        assert sorted(o.name for o in partition.to_delete) == OLD_KEYS
        assert sorted(o.name for o in partition.to_retain) == KEPT_KEYS
        assert s3.list_calls == [None, "2", "4"]

    def test_pattern_excludes_objects_from_both_sets(self, backup_objects, target) -> None:
        _, partition = collect_partition(FakeS3(backup_objects), target, NOW)
        every = {o.name for o in partition.to_delete + partition.to_retain}
        assert "db/notes.txt" not in every


class TestRunPrune:
    """Tests for the simulate and delete paths."""

    def test_deletes_expired_backups(self, backup_objects, target, capsys) -> None:
        s3 = FakeS3(backup_objects)
        report = run_prune(s3, target, now=NOW)
        assert s3.deleted == OLD_KEYS
        assert set(s3.objects) == set(KEPT_KEYS) | {"db/notes.txt"}
        assert report.deleted == OLD_KEYS
        assert report.deleted_bytes == 6000
        assert report.retained == 2
        assert report.retained_bytes == 4000
        assert report.ok
        out = capsys.readouterr().out
        assert "Delete: s3://bkt/db/2024-04-02.sql.gz" in out
        assert "deleted 2 object(s) / 5.9 KB" in out

    def test_dry_run_mutates_nothing(self, backup_objects, target, capsys) -> None:
        s3 = FakeS3(backup_objects)
        report = run_prune(s3, target, dry_run=True, now=NOW)
        assert s3.deleted == []
        assert s3.released == []
        assert report.dry_run
        assert sorted(report.deleted) == OLD_KEYS
        out = capsys.readouterr().out
        assert "[dry-run] delete s3://bkt/db/2024-04-25.sql.gz" in out
        assert "[dry-run] keep s3://bkt/db/2024-04-21.sql.gz" in out
        assert "[weekly]" in out
        assert "[daily]" in out
        assert "would delete 2 object(s)" in out

    def test_failed_delete_does_not_stop_the_run(self, backup_objects, target, capsys) -> None:
        s3 = FakeS3(backup_objects, fail_delete=[OLD_KEYS[0]])
        report = run_prune(s3, target, now=NOW)
        assert s3.deleted == [OLD_KEYS[1]]
        assert [name for name, _ in report.failed] == [OLD_KEYS[0]]
        assert not report.ok
        out = capsys.readouterr().out
        assert f"Failed to delete s3://bkt/{OLD_KEYS[0]}" in out
        assert "1 failure(s)" in out

    def test_listing_failure_is_fatal(self, target) -> None:
        s3 = FakeS3(fail_list=True)
        with pytest.raises(ClientError):
            run_prune(s3, target, now=NOW)
        assert s3.deleted == []

    def test_legal_hold_released_before_delete(self, backup_objects, target) -> None:
        s3 = FakeS3(backup_objects, legal_holds=[OLD_KEYS[1]])
        report = run_prune(s3, target, now=NOW)
        assert s3.released == [OLD_KEYS[1]]
        assert s3.deleted == OLD_KEYS
        assert report.ok

    def test_locked_object_fails_when_breaking_disabled(self, backup_objects) -> None:
        target = build_target(
            {"name": "db", "bucket": "bkt", "prefix": "db/", "pattern": "*.sql.gz",
             "break_locks": False}
        )
        s3 = FakeS3(backup_objects, legal_holds=[OLD_KEYS[1]])
        report = run_prune(s3, target, now=NOW)
        assert s3.released == []
        assert s3.deleted == [OLD_KEYS[0]]
        assert [name for name, _ in report.failed] == [OLD_KEYS[1]]

    def test_yearly_span_past_year_one(self, backup_objects, capsys) -> None:
        target = build_target(
            {
                "name": "db",
                "bucket": "bkt",
                "prefix": "db/",
                "pattern": "*.sql.gz",
                "retention": {
                    "daily_days": 14, "weekly_weeks": 4, "yearly_years": 5000,
                    "yearly_month": 4, "monthly_day": 2,
                },
            }
        )
        s3 = FakeS3(backup_objects)
        report = run_prune(s3, target, now=NOW)
        assert s3.deleted == ["db/2024-04-25.sql.gz"]
        assert report.retained == 3
        assert "yearly>" in capsys.readouterr().out

    def test_empty_bucket(self, target, capsys) -> None:
        report = run_prune(FakeS3(), target, now=NOW)
        assert report.deleted == []
        assert report.retained == 0
        assert "keep 0 object(s) / 0 B" in capsys.readouterr().out


def test_print_summary(capsys) -> None:
    print_summary(PruneReport(target="x", dry_run=True, retained=3, retained_bytes=2048))
    assert capsys.readouterr().out.strip() == (
        "Retention: keep 3 object(s) / 2.0 KB; would delete 0 object(s) / 0 B"
    )
