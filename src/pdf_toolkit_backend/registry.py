"""
File and job registries.

The registries own record metadata; bytes belong to the storage backend and
are referenced only through ``storage_location``. All writes go through a
per-registry lock and a single-row database upsert or delete.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .database import RegistryDatabase
from .errors import NotFound, StorageIOError
from .models import FileInfo, FileStatus, JobInfo, JobStatus
from .storage import LocalStorage
from .utils import guess_mime, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FILE_TTL = timedelta(hours=24)


@dataclass
class FileRecord:
    """
    Internal representation of one stored blob.

    Attributes:
        id: Public file identifier (hex UUID)
        name: Original filename, used for the download name
        size: Byte length at creation time
        mime: Content type
        storage_location: Opaque storage reference, distinct from ``id``
        uploaded_at: Creation timestamp (UTC)
        expires_at: ``uploaded_at`` plus the file TTL
        status: Always ``available`` for now
    """

    id: str
    name: str
    size: int
    mime: str
    storage_location: str
    uploaded_at: datetime
    expires_at: datetime
    status: FileStatus = FileStatus.AVAILABLE

    def to_info(self) -> FileInfo:
        return FileInfo(
            id=self.id,
            name=self.name,
            size=self.size,
            mime=self.mime,
            uploaded_at=self.uploaded_at,
            expires_at=self.expires_at,
            status=self.status,
        )

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FileRecord":
        return cls(**{**row, "status": FileStatus(row["status"])})


@dataclass
class JobRecord:
    """
    Internal representation of one requested transformation.

    ``input_files`` order is significant for merge and rotate; the other
    pipelines only read the first entry.
    """

    id: str
    type: str
    input_files: List[str]
    params: Dict[str, Any]
    status: JobStatus
    created_at: datetime
    output_file_id: Optional[str] = None
    error: Optional[str] = None
    tool: Optional[str] = None
    completed_at: Optional[datetime] = None

    def to_info(self) -> JobInfo:
        return JobInfo(
            id=self.id,
            type=self.type,
            input_files=list(self.input_files),
            params=dict(self.params),
            status=self.status,
            output_file_id=self.output_file_id,
            error=self.error,
            tool=self.tool,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobRecord":
        return cls(**{**row, "status": JobStatus(row["status"])})


class FileRegistry:
    """
    Durable mapping from file id to metadata, backed by ``LocalStorage``.

    Thread Safety:
        Mutations are serialized by a lock; reads go straight to the database.
    """

    def __init__(
        self,
        database: RegistryDatabase,
        storage: LocalStorage,
        ttl: timedelta = DEFAULT_FILE_TTL,
    ) -> None:
        self.database = database
        self.storage = storage
        self.ttl = ttl
        self._lock = Lock()

    def _new_record(self, name: str, size: int, mime: Optional[str], location: str) -> FileRecord:
        uploaded_at = utcnow()
        return FileRecord(
            id=uuid4().hex,
            name=name,
            size=size,
            mime=guess_mime(name, mime),
            storage_location=location,
            uploaded_at=uploaded_at,
            expires_at=uploaded_at + self.ttl,
        )

    def _persist_new(self, record: FileRecord) -> FileRecord:
        try:
            with self._lock:
                self.database.save_file(record.to_row())
        except StorageIOError:
            # Metadata never made it in; drop the orphan blob.
            self._remove_blob(record)
            raise
        logger.info(f"Registered file {record.id} ({record.name}, {record.size} bytes)")
        return record

    def register(self, name: str, data: bytes, mime: Optional[str] = None) -> FileRecord:
        location = self.storage.save_bytes(data)
        return self._persist_new(self._new_record(name, len(data), mime, location))

    def register_path(self, name: str, source: Path, mime: Optional[str] = None) -> FileRecord:
        location = self.storage.save_path(source)
        size = self.storage.size(location)
        return self._persist_new(self._new_record(name, size, mime, location))

    def get(self, file_id: str) -> Optional[FileRecord]:
        row = self.database.get_file(file_id)
        return FileRecord.from_row(row) if row else None

    def require(self, file_id: str) -> FileRecord:
        record = self.get(file_id)
        if record is None:
            raise NotFound(f"File not found: {file_id}")
        return record

    def path_for(self, record: FileRecord) -> Path:
        return self.storage.path_for(record.storage_location)

    def is_readable(self, record: FileRecord) -> bool:
        return self.storage.exists(record.storage_location)

    def _remove_blob(self, record: FileRecord) -> None:
        try:
            self.storage.delete(record.storage_location)
        except OSError as exc:
            logger.error(f"Failed to delete blob for file {record.id}: {exc}")

    def delete(self, file_id: str) -> bool:
        """
        Delete a file's bytes and metadata.

        Job records whose output pointed at the file keep existing with
        ``output_file_id`` cleared.

        Returns:
            True if a record existed, False if there was nothing to delete
        """
        with self._lock:
            record = self.get(file_id)
            if record is None:
                return False
            self._remove_blob(record)
            self.database.delete_file(file_id)
        logger.info(f"Deleted file {file_id}")
        return True

    def expire_older_than(self, now: datetime) -> List[str]:
        """Remove every record whose ``expires_at`` is before ``now``."""
        expired: List[str] = []
        with self._lock:
            for row in self.database.list_expired_files(now):
                record = FileRecord.from_row(row)
                if self.database.delete_file(record.id, expired_before=now):
                    self._remove_blob(record)
                    expired.append(record.id)
        if expired:
            logger.info(f"Expired {len(expired)} file(s)")
        return expired


class JobRegistry:
    """Durable job records with a one-way state machine."""

    def __init__(self, database: RegistryDatabase) -> None:
        self.database = database
        self._lock = Lock()

    def create(self, job_type: str, input_files: List[str], params: Dict[str, Any]) -> JobRecord:
        record = JobRecord(
            id=uuid4().hex,
            type=job_type,
            input_files=list(input_files),
            params=dict(params),
            status=JobStatus.QUEUED,
            created_at=utcnow(),
        )
        with self._lock:
            self.database.save_job(record.to_row())
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        row = self.database.get_job(job_id)
        return JobRecord.from_row(row) if row else None

    def require(self, job_id: str) -> JobRecord:
        record = self.get(job_id)
        if record is None:
            raise NotFound(f"Job not found: {job_id}")
        return record

    def list_jobs(self) -> List[JobRecord]:
        return [JobRecord.from_row(row) for row in self.database.list_jobs()]

    def _transition(self, job_id: str, status: JobStatus, **fields: Any) -> bool:
        with self._lock:
            changed = self.database.update_job_status(job_id, status.value, **fields)
        if not changed:
            logger.warning(f"Job {job_id} not moved to {status.value}: missing or already terminal")
        return changed

    def mark_processing(self, job_id: str) -> bool:
        return self._transition(job_id, JobStatus.PROCESSING)

    def mark_done(self, job_id: str, output_file_id: str, tool: Optional[str] = None) -> bool:
        return self._transition(
            job_id, JobStatus.DONE, output_file_id=output_file_id, tool=tool, completed_at=utcnow()
        )

    def mark_failed(self, job_id: str, error: str) -> bool:
        return self._transition(job_id, JobStatus.FAILED, error=error, completed_at=utcnow())

    def prune_created_before(self, cutoff: datetime) -> int:
        with self._lock:
            pruned = self.database.delete_jobs_created_before(cutoff)
        if pruned:
            logger.info(f"Pruned {pruned} job record(s) created before {cutoff.isoformat()}")
        return pruned
