"""
Job pipelines: merge, split, rotate, compress and convert.

Every pipeline takes the resolved input records and the job params and
returns a PipelineResult: the FileRecord registered as the job's output, plus
the external tool that produced it when one ran. Intermediate files are
written to a per-run scratch directory that is removed afterwards.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from . import documents
from .converters import ConverterAdapter
from .errors import ConversionFailed, ConverterUnavailable, PipelineFailure, ValidationError
from .models import JobType
from .registry import FileRecord, FileRegistry
from .utils import ensure_directory, millis, pdf_basename, sanitize_filename, split_extension

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
ZIP_MIME = "application/zip"
DEFAULT_ROTATION = 90
DEFAULT_CONVERT_TARGETS = ("pdf", "docx", "pptx", "xlsx")


@dataclass
class PipelineContext:
    files: FileRegistry
    converter: ConverterAdapter
    scratch_root: Path
    convert_targets: Sequence[str] = field(default=DEFAULT_CONVERT_TARGETS)

    @contextmanager
    def scratch(self) -> Iterator[Path]:
        ensure_directory(self.scratch_root)
        with tempfile.TemporaryDirectory(dir=self.scratch_root) as tmp:
            yield Path(tmp)

    def path(self, record: FileRecord) -> Path:
        return self.files.path_for(record)


@dataclass
class PipelineResult:
    output: FileRecord
    tool: Optional[str] = None


Pipeline = Callable[[PipelineContext, List[FileRecord], Dict[str, Any]], PipelineResult]


def resolve_inputs(ctx: PipelineContext, file_ids: Sequence[str]) -> List[FileRecord]:
    """
    Look up every input before any work starts.

    Raises:
        PipelineFailure: Naming the first id without a record or a readable blob
    """
    records = []
    for file_id in file_ids:
        record = ctx.files.get(file_id)
        if record is None or not ctx.files.is_readable(record):
            raise PipelineFailure(f"Input file not found: {file_id}")
        records.append(record)
    return records


def merge(ctx: PipelineContext, inputs: List[FileRecord], params: Dict[str, Any]) -> PipelineResult:
    data = documents.merge_documents([ctx.path(record) for record in inputs])
    return PipelineResult(ctx.files.register(f"merged-{millis()}.pdf", data, PDF_MIME))


def split(ctx: PipelineContext, inputs: List[FileRecord], params: Dict[str, Any]) -> PipelineResult:
    source = inputs[0]
    basename = pdf_basename(source.name)
    pages = documents.split_document(ctx.path(source))

    page_records = [
        ctx.files.register(f"{basename}-page-{number}.pdf", data, PDF_MIME)
        for number, data in enumerate(pages, start=1)
    ]
    logger.info(f"Split {source.id} into {len(page_records)} page(s)")

    with ctx.scratch() as tmp:
        archive = documents.bundle_zip(
            ((record.name, ctx.path(record)) for record in page_records),
            tmp / "pages.zip",
        )
        return PipelineResult(ctx.files.register_path(f"{basename}-pages.zip", archive, ZIP_MIME))


def rotate(ctx: PipelineContext, inputs: List[FileRecord], params: Dict[str, Any]) -> PipelineResult:
    angle = params.get("angle")
    angle = documents.normalize_angle(DEFAULT_ROTATION if angle is None else angle)
    data = documents.rotate_documents([ctx.path(record) for record in inputs], angle)
    return PipelineResult(ctx.files.register(f"rotated-{millis()}.pdf", data, PDF_MIME))


def compress(ctx: PipelineContext, inputs: List[FileRecord], params: Dict[str, Any]) -> PipelineResult:
    source = inputs[0]
    name = f"compressed-{source.name}"
    with ctx.scratch() as tmp:
        try:
            result = ctx.converter.compress_document(ctx.path(source), tmp / "compressed.pdf")
        except (ConverterUnavailable, ConversionFailed) as exc:
            logger.warning(f"Compression of {source.id} fell back to re-serialisation: {exc}")
            return PipelineResult(ctx.files.register(name, documents.resave_document(ctx.path(source)), PDF_MIME))
        return PipelineResult(ctx.files.register_path(name, result.path, PDF_MIME), result.tool)


def validate_target(target: Any, allowed: Sequence[str]) -> str:
    if not target:
        raise ValidationError("Missing target format")
    target = str(target).lower().lstrip(".")
    if target not in allowed:
        raise ValidationError(f"Unsupported target format: {target}")
    return target


def convert_file(
    ctx: PipelineContext,
    source_path: Path,
    original_name: str,
    target: str,
) -> Tuple[FileRecord, str]:
    """
    Convert one file with the office converter and register the result.

    The source is copied under a sanitized copy of its original name so the
    converter's output name is predictable.

    Returns:
        The registered output record and the tool that produced it
    """
    target = validate_target(target, ctx.convert_targets)
    stem, suffix = split_extension(original_name)
    with ctx.scratch() as tmp:
        in_dir = ensure_directory(tmp / "in")
        out_dir = ensure_directory(tmp / "out")
        staged = in_dir / sanitize_filename(f"{stem}{suffix or '.tmp'}")
        shutil.copyfile(source_path, staged)
        result = ctx.converter.convert_document(staged, target, out_dir)
        record = ctx.files.register_path(f"{stem or 'document'}.{target}", result.path)
    return record, result.tool


def convert(ctx: PipelineContext, inputs: List[FileRecord], params: Dict[str, Any]) -> PipelineResult:
    source = inputs[0]
    record, tool = convert_file(ctx, ctx.path(source), source.name, params.get("target"))
    return PipelineResult(record, tool)


PIPELINES: Dict[str, Pipeline] = {
    JobType.MERGE.value: merge,
    JobType.SPLIT.value: split,
    JobType.ROTATE.value: rotate,
    JobType.COMPRESS.value: compress,
    JobType.CONVERT.value: convert,
}
