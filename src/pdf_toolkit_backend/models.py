from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FileStatus(str, Enum):
    AVAILABLE = "available"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


class JobType(str, Enum):
    MERGE = "merge"
    SPLIT = "split"
    ROTATE = "rotate"
    COMPRESS = "compress"
    CONVERT = "convert"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileInfo(CamelModel):
    """Public projection of a file record; the storage location is never exposed."""

    id: str
    name: str
    size: int
    mime: str
    uploaded_at: datetime
    expires_at: datetime
    status: FileStatus


class JobInfo(CamelModel):
    id: str
    type: str
    input_files: List[str]
    params: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus
    output_file_id: Optional[str] = None
    error: Optional[str] = None
    tool: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class UploadResponse(BaseModel):
    files: List[FileInfo]


class JobCreateRequest(CamelModel):
    type: str = Field(min_length=1)
    input_files: List[str] = Field(min_length=1)
    params: Optional[Dict[str, Any]] = None


class JobCreateResponse(CamelModel):
    job_id: str
    status: JobStatus
    download_url: Optional[str] = None
    error: Optional[str] = None
    tool: Optional[str] = None


class ConvertResponse(CamelModel):
    converted: bool
    download_url: str
    tool: Optional[str] = None


class DeleteResponse(BaseModel):
    deleted: str


class Capabilities(CamelModel):
    office: Optional[str] = None
    compression: Optional[str] = None
    convert_targets: List[str]
