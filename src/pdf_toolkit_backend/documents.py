"""
Thin wrappers around pypdf and zipfile used by the job pipelines.

Page-level parsing and writing is entirely pypdf's business; these helpers
only decide which pages go where.
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from pypdf import PdfReader, PdfWriter

from .errors import ValidationError


def _to_bytes(writer: PdfWriter) -> bytes:
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def page_count(path: Path) -> int:
    return len(PdfReader(str(path)).pages)


def concatenate(paths: Sequence[Path]) -> PdfWriter:
    """Append every page of every document, in order, to a new writer."""
    writer = PdfWriter()
    for path in paths:
        reader = PdfReader(str(path))
        for page in reader.pages:
            writer.add_page(page)
    return writer


def merge_documents(paths: Sequence[Path]) -> bytes:
    return _to_bytes(concatenate(paths))


def split_document(path: Path) -> List[bytes]:
    """Return one single-page document per page of ``path``, in page order."""
    reader = PdfReader(str(path))
    pages: List[bytes] = []
    for page in reader.pages:
        writer = PdfWriter()
        writer.add_page(page)
        pages.append(_to_bytes(writer))
    return pages


def normalize_angle(angle: object) -> int:
    """
    Validate a rotation angle and reduce it modulo 360.

    Raises:
        ValidationError: If the angle is not an integer multiple of 90
    """
    value = angle
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            pass
    elif isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value % 90:
        raise ValidationError(f"Rotation angle must be a multiple of 90, got {angle!r}")
    return value % 360


def rotate_documents(paths: Sequence[Path], angle: int) -> bytes:
    """Concatenate ``paths`` and rotate every page clockwise by ``angle``."""
    writer = concatenate(paths)
    if angle % 360:
        for page in writer.pages:
            page.rotate(angle)
    return _to_bytes(writer)


def resave_document(path: Path) -> bytes:
    """Round-trip a document through pypdf without changing its pages."""
    return _to_bytes(PdfWriter(clone_from=str(path)))


def bundle_zip(entries: Iterable[Tuple[str, Path]], destination: Path) -> Path:
    """Write ``(archive name, source path)`` pairs into a deflated zip archive."""
    with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for name, source in entries:
            archive.write(source, arcname=name)
    return destination
