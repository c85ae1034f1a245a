"""
Tests for the file and job registries and the storage backend they sit on.
"""

import sqlite3
from datetime import timedelta

import pytest

from pdf_toolkit_backend.errors import NotFound, StorageIOError, ValidationError
from pdf_toolkit_backend.models import JobStatus
from pdf_toolkit_backend.utils import utcnow


class TestStorage:
    """Tests for LocalStorage."""

    def test_save_and_read_bytes(self, svc):
        location = svc.storage.save_bytes(b"hello")
        assert svc.storage.exists(location)
        assert svc.storage.read(location) == b"hello"
        assert svc.storage.size(location) == 5

    def test_save_path_copies(self, svc, tmp_path):
        source = tmp_path / "source.bin"
        source.write_bytes(b"payload")

        location = svc.storage.save_path(source)
        source.unlink()
        assert svc.storage.read(location) == b"payload"

    def test_read_missing(self, svc):
        with pytest.raises(FileNotFoundError):
            svc.storage.read("0" * 32)

    def test_delete_is_tolerant(self, svc):
        location = svc.storage.save_bytes(b"x")
        assert svc.storage.delete(location) is True
        assert svc.storage.delete(location) is False
        assert not svc.storage.exists(location)

    @pytest.mark.parametrize("location", ["../escape", "a/b", "..", ""])
    def test_rejects_path_like_locations(self, svc, location):
        with pytest.raises(ValidationError):
            svc.storage.path_for(location)


class TestFileRegistry:
    """Tests for FileRegistry."""

    def test_register_assigns_fresh_ids_and_expiry(self, svc):
        record = svc.files.register("a.pdf", b"%PDF-1.4 data")

        assert record.id != record.storage_location
        assert "a.pdf" not in record.storage_location
        assert record.size == len(b"%PDF-1.4 data")
        assert record.mime == "application/pdf"
        assert record.status.value == "available"
        assert record.expires_at - record.uploaded_at == timedelta(hours=24)

        stored = svc.files.get(record.id)
        assert stored == record

    def test_register_path(self, svc, tmp_path):
        source = tmp_path / "upload.tmp"
        source.write_bytes(b"abc")

        record = svc.files.register_path("notes.txt", source)
        assert record.size == 3
        assert record.mime == "text/plain"
        assert svc.storage.read(record.storage_location) == b"abc"

    def test_unknown_extension_defaults_mime(self, svc):
        record = svc.files.register("blob.zzzunknown", b"x")
        assert record.mime == "application/octet-stream"

    def test_require_missing(self, svc):
        with pytest.raises(NotFound):
            svc.files.require("missing")

    def test_delete_removes_bytes_and_record(self, svc):
        record = svc.files.register("a.pdf", b"x")

        assert svc.files.delete(record.id) is True
        assert svc.files.get(record.id) is None
        assert not svc.storage.exists(record.storage_location)
        assert svc.files.delete(record.id) is False

    def test_delete_tolerates_missing_blob(self, svc):
        record = svc.files.register("a.pdf", b"x")
        svc.storage.delete(record.storage_location)

        assert svc.files.delete(record.id) is True
        assert svc.files.get(record.id) is None

    def test_delete_clears_job_output_reference(self, svc):
        record = svc.files.register("out.pdf", b"x")
        job = svc.jobs.create("merge", ["in"], {})
        svc.jobs.mark_processing(job.id)
        svc.jobs.mark_done(job.id, record.id)

        svc.files.delete(record.id)

        stored = svc.jobs.get(job.id)
        assert stored.status == JobStatus.DONE
        assert stored.output_file_id is None

    def test_expire_older_than(self, svc):
        record = svc.files.register("a.pdf", b"x")

        assert svc.files.expire_older_than(record.expires_at) == []
        assert svc.files.get(record.id) is not None

        expired = svc.files.expire_older_than(record.expires_at + timedelta(seconds=1))
        assert expired == [record.id]
        assert svc.files.get(record.id) is None
        assert not svc.storage.exists(record.storage_location)

    def test_failed_metadata_write_leaves_no_blob(self, svc):
        kept = svc.files.register("kept.pdf", b"x")
        conn = sqlite3.connect(str(svc.files.database.db_path))
        conn.execute("DROP TABLE files")
        conn.commit()
        conn.close()

        with pytest.raises(StorageIOError):
            svc.files.register("a.pdf", b"y")
        assert [path.name for path in svc.storage.root.iterdir()] == [kept.storage_location]

    def test_custom_ttl(self, make_services):
        svc = make_services(retention={"file_ttl_hours": 1})
        record = svc.files.register("a.pdf", b"x")
        assert record.expires_at - record.uploaded_at == timedelta(hours=1)


class TestJobRegistry:
    """Tests for JobRegistry and its state machine."""

    def test_create_is_queued(self, svc):
        job = svc.jobs.create("split", ["f1"], {"x": 1})

        stored = svc.jobs.get(job.id)
        assert stored.status == JobStatus.QUEUED
        assert stored.input_files == ["f1"]
        assert stored.params == {"x": 1}
        assert stored.completed_at is None

    def test_terminal_states_are_final(self, svc):
        job = svc.jobs.create("merge", ["f1"], {})
        assert svc.jobs.mark_processing(job.id)
        assert svc.jobs.mark_failed(job.id, "boom")

        assert svc.jobs.mark_done(job.id, "out") is False
        assert svc.jobs.mark_processing(job.id) is False

        stored = svc.jobs.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.status.is_terminal
        assert stored.error == "boom"
        assert stored.output_file_id is None
        assert stored.completed_at is not None

    def test_input_order_is_preserved(self, svc):
        ids = ["c", "a", "b"]
        job = svc.jobs.create("merge", ids, {})
        assert svc.jobs.get(job.id).input_files == ids

    def test_list_newest_first(self, svc):
        first = svc.jobs.create("merge", ["a"], {})
        second = svc.jobs.create("merge", ["b"], {})
        assert [job.id for job in svc.jobs.list_jobs()][:2] == [second.id, first.id]

    def test_prune_created_before(self, svc):
        job = svc.jobs.create("merge", ["a"], {})

        assert svc.jobs.prune_created_before(job.created_at) == 0
        assert svc.jobs.prune_created_before(utcnow() + timedelta(seconds=1)) == 1
        assert svc.jobs.get(job.id) is None
