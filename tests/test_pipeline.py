"""Tests for the dump-then-sync pipeline."""

import logging

from doc_backup.pipeline import BackupPipeline

from conftest import FakeDumpProvider, FakeSyncProvider


def make_pipeline(dump, sync):
    return BackupPipeline(dump, sync, source="/srv/archives", destination="remote:backups")


class TestBackupPipeline:
    def test_success_runs_dump_then_sync(self, dump_provider, sync_provider):
        result = make_pipeline(dump_provider, sync_provider).run()

        assert result.success is True
        assert result.status == "success"
        assert dump_provider.calls == 1
        assert sync_provider.calls == [("/srv/archives", "remote:backups")]
        assert result.artifact.filename == "factoid_dump_1.tar.gz"
        assert result.sync_job.job_id == 1
        assert result.errors == []
        assert result.completed_at >= result.started_at

    def test_dump_failure_skips_sync(self, sync_provider, caplog):
        dump = FakeDumpProvider(fail=True)

        with caplog.at_level(logging.ERROR):
            result = make_pipeline(dump, sync_provider).run()

        assert result.status == "dump_failed"
        assert result.artifact is None
        assert sync_provider.calls == []
        assert "boom" in result.errors[0]
        record = caplog.records[-1]
        assert record.error_type == "DumpError"
        assert record.fatal is True

    def test_sync_failure_is_contained(self, dump_provider, caplog):
        sync = FakeSyncProvider(fail=True)

        with caplog.at_level(logging.ERROR):
            result = make_pipeline(dump_provider, sync).run()

        assert result.status == "sync_failed"
        assert result.success is False
        assert result.artifact is not None
        assert result.sync_job is None
        record = caplog.records[-1]
        assert record.error_type == "SyncError"
        assert record.fatal is False
        assert record.status_code == 500

    def test_unexpected_errors_never_escape(self, sync_provider):
        class ExplodingDump:
            def produce_dump(self):
                raise KeyError("missing")

        result = make_pipeline(ExplodingDump(), sync_provider).run()

        assert result.status == "dump_failed"
        assert sync_provider.calls == []

    def test_unexpected_sync_error_is_soft(self, dump_provider):
        class ExplodingSync:
            def submit_sync(self, source, destination):
                raise RuntimeError("socket closed")

        result = make_pipeline(dump_provider, ExplodingSync()).run()

        assert result.status == "sync_failed"
        assert "socket closed" in result.errors[0]

    def test_to_dict(self, dump_provider, sync_provider):
        payload = make_pipeline(dump_provider, sync_provider).run().to_dict()

        assert payload["status"] == "success"
        assert payload["location"] == "/archives/factoid_dump_1.tar.gz"
        assert payload["job_id"] == 1
        assert payload["errors"] == []
